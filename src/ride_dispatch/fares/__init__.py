from .calculator import FareBreakdown, FareCalculator
from .negotiation import FareEstimate, FareNegotiationEngine, FareSource
from .surge import SurgeCalculator

__all__ = [
    "FareBreakdown",
    "FareCalculator",
    "FareEstimate",
    "FareNegotiationEngine",
    "FareSource",
    "SurgeCalculator",
]
