from .engine import RatingResult, SettlementEngine
from .rating import aggregate_rating

__all__ = ["RatingResult", "SettlementEngine", "aggregate_rating"]
