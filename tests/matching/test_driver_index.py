"""Tests for the H3 driver index."""

import pytest

from ride_dispatch.matching.driver_geospatial_index import DriverGeospatialIndex
from ride_dispatch.ride import VehicleCategory

MATHURA = (27.49, 77.67)


@pytest.fixture
def index():
    return DriverGeospatialIndex(h3_resolution=9)


@pytest.mark.unit
class TestDriverGeospatialIndex:
    def test_nearest_first(self, index):
        index.add_driver("far", 27.50, 77.68, VehicleCategory.MINI)
        index.add_driver("near", 27.491, 77.671, VehicleCategory.MINI)

        results = index.find_nearest_drivers(*MATHURA, radius_km=5.0)
        assert [driver_id for driver_id, _ in results] == ["near", "far"]
        assert results[0][1] < results[1][1]

    def test_radius_excludes_distant_drivers(self, index):
        index.add_driver("delhi", 28.61, 77.21, VehicleCategory.MINI)
        assert index.find_nearest_drivers(*MATHURA, radius_km=5.0) == []

    def test_category_filter(self, index):
        index.add_driver("bike", 27.491, 77.671, VehicleCategory.BIKE)
        index.add_driver("auto", 27.492, 77.672, VehicleCategory.AUTO)

        results = index.find_nearest_drivers(*MATHURA, category=VehicleCategory.AUTO)
        assert [driver_id for driver_id, _ in results] == ["auto"]

    def test_move_across_cells(self, index):
        index.add_driver("d1", 27.49, 77.67, VehicleCategory.MINI)
        index.update_driver_location("d1", 27.60, 77.80)

        assert index.find_nearest_drivers(*MATHURA, radius_km=2.0) == []
        assert [d for d, _ in index.find_nearest_drivers(27.60, 77.80, radius_km=1.0)] == ["d1"]

    def test_update_unknown_driver_is_ignored(self, index):
        index.update_driver_location("ghost", 27.49, 77.67)
        assert not index.contains("ghost")

    def test_readd_replaces_previous_entry(self, index):
        index.add_driver("d1", 27.49, 77.67, VehicleCategory.MINI)
        index.add_driver("d1", 27.60, 77.80, VehicleCategory.PRIME)

        assert len(index) == 1
        assert index.find_nearest_drivers(*MATHURA, radius_km=2.0) == []
        near_new = index.find_nearest_drivers(27.60, 77.80, category=VehicleCategory.PRIME)
        assert [d for d, _ in near_new] == ["d1"]

    def test_remove_and_clear(self, index):
        index.add_driver("d1", 27.49, 77.67, VehicleCategory.MINI)
        index.add_driver("d2", 27.49, 77.67, VehicleCategory.MINI)

        index.remove_driver("d1")
        index.remove_driver("d1")
        assert not index.contains("d1")
        assert len(index) == 1

        index.clear()
        assert len(index) == 0
        assert index.find_nearest_drivers(*MATHURA) == []
