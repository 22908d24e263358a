from ..ride import VehicleCategory

MAX_SURGE = 2.5


class SurgeCalculator:
    """Demand/supply multiplier per vehicle category.

    Demand is the number of SEARCHING requests in the category, supply the
    number of online drivers serving it.
    """

    def multiplier(self, pending: int, available: int) -> float:
        if available == 0:
            return MAX_SURGE if pending > 0 else 1.0
        return self._calculate_multiplier(pending / available)

    def multipliers(
        self,
        pending: dict[VehicleCategory, int],
        available: dict[VehicleCategory, int],
    ) -> dict[VehicleCategory, float]:
        return {
            category: self.multiplier(pending.get(category, 0), available.get(category, 0))
            for category in VehicleCategory
        }

    def _calculate_multiplier(self, ratio: float) -> float:
        if ratio <= 1.0:
            return 1.0
        elif ratio <= 2.0:
            return 1.0 + (ratio - 1.0) * 0.5
        elif ratio <= 3.0:
            return 1.5 + (ratio - 2.0) * 1.0
        else:
            return MAX_SURGE
