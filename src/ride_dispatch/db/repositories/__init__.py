"""Repository layer for database CRUD operations."""

from .account_repository import AccountRepository
from .ride_event_repository import RideEventRepository
from .ride_repository import RideRepository
from .wallet_repository import WalletRepository

__all__ = [
    "AccountRepository",
    "RideEventRepository",
    "RideRepository",
    "WalletRepository",
]
