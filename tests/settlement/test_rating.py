from decimal import Decimal

import pytest

from ride_dispatch.settlement import aggregate_rating
from ride_dispatch.utils.rounding import round_half_up


@pytest.mark.unit
class TestAggregateRating:
    def test_first_rating_replaces_default(self):
        assert aggregate_rating(5.0, 0, 3) == (3.0, 1)

    def test_rolling_average(self):
        assert aggregate_rating(4.0, 1, 2) == (3.0, 2)

    def test_rounds_half_up_to_one_decimal(self):
        # (4.5 * 3 + 5) / 4 = 4.625
        assert aggregate_rating(4.5, 3, 5) == (4.6, 4)
        # (4.0 * 3 + 3) / 4 = 3.75
        assert aggregate_rating(4.0, 3, 3) == (3.8, 4)

    def test_negative_count_rejected(self):
        with pytest.raises(ValueError):
            aggregate_rating(4.0, -1, 3)


@pytest.mark.unit
class TestRoundHalfUp:
    def test_halves_round_away_from_zero(self):
        assert round_half_up(2.5) == Decimal("3")
        assert round_half_up(0.25, 1) == Decimal("0.3")
