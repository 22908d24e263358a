from .ride_store import RideStore
from .unit_of_work import UnitOfWork

__all__ = ["RideStore", "UnitOfWork"]
