import pytest

from ride_dispatch.geo.distance import haversine_distance_km, haversine_distance_m


@pytest.mark.unit
class TestHaversine:
    def test_same_point_is_zero(self):
        assert haversine_distance_m(27.49, 77.67, 27.49, 77.67) == 0

    def test_mathura_to_delhi(self):
        # Roughly 132 km as the crow flies
        assert haversine_distance_km(27.49, 77.67, 28.61, 77.21) == pytest.approx(132, abs=10)

    def test_symmetric(self):
        there = haversine_distance_m(27.49, 77.67, 27.50, 77.68)
        back = haversine_distance_m(27.50, 77.68, 27.49, 77.67)
        assert there == pytest.approx(back)

    def test_km_wraps_meters(self):
        assert haversine_distance_km(0, 0, 0, 1) == pytest.approx(
            haversine_distance_m(0, 0, 0, 1) / 1000
        )
