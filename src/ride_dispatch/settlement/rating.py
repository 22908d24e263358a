from decimal import Decimal

from ..utils.rounding import round_half_up


def aggregate_rating(current: float, prior_count: int, rating: int) -> tuple[float, int]:
    """Fold one rating into a rolling average.

    ``prior_count`` is how many ratings ``current`` already averages. The
    result is rounded half-up to one decimal place.
    """
    if prior_count < 0:
        raise ValueError("Rating count must be non-negative")
    new_count = prior_count + 1
    total = Decimal(str(current)) * prior_count + rating
    new_average = round_half_up(total / new_count, 1)
    return float(new_average), new_count
