import math

from pydantic import BaseModel, Field

from ..ride import VehicleCategory
from ..settings import DEFAULT_CATEGORY_RATES, CategoryRate
from ..utils.rounding import round_half_up


class FareBreakdown(BaseModel):
    """Detailed breakdown of fare components."""

    category: VehicleCategory
    base_fee: float = Field(ge=0)
    distance_charge: float = Field(ge=0)
    time_charge: float = Field(ge=0)
    surge_multiplier: float = Field(ge=1.0)
    subtotal: float = Field(ge=0)
    total_fare: int = Field(gt=0)


class FareCalculator:
    """Prices a trip per vehicle category from routed distance and duration."""

    def __init__(self, rates: dict[VehicleCategory, CategoryRate] | None = None):
        self._rates = rates or dict(DEFAULT_CATEGORY_RATES)

    @property
    def categories(self) -> list[VehicleCategory]:
        return list(self._rates)

    def calculate(
        self,
        category: VehicleCategory,
        distance_km: float,
        duration_min: float,
        surge_multiplier: float = 1.0,
    ) -> FareBreakdown:
        """Calculate the fare for one category.

        total = round((base + km * per_km + min * per_min) * surge), rounded
        half-up to whole rupees and never below one rupee.
        """
        if distance_km < 0:
            raise ValueError("Distance must be non-negative")
        if duration_min < 0:
            raise ValueError("Duration must be non-negative")
        if surge_multiplier < 1.0:
            raise ValueError("Surge multiplier must be >= 1.0")

        rate = self._rates[category]
        distance_charge = distance_km * rate.per_km
        time_charge = duration_min * rate.per_min
        subtotal = rate.base + distance_charge + time_charge
        total_fare = max(int(round_half_up(subtotal * surge_multiplier)), 1)

        return FareBreakdown(
            category=category,
            base_fee=rate.base,
            distance_charge=distance_charge,
            time_charge=time_charge,
            surge_multiplier=surge_multiplier,
            subtotal=subtotal,
            total_fare=total_fare,
        )


def eta_minutes(duration_seconds: float) -> int:
    """Whole minutes, rounded up, at least one."""
    return max(1, math.ceil(duration_seconds / 60.0))
