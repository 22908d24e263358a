from decimal import ROUND_HALF_UP, Decimal


def round_half_up(value: float | Decimal, places: int = 0) -> Decimal:
    """Round like a till does: halves go away from zero, not to even."""
    quantum = Decimal(1).scaleb(-places)
    return Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP)
