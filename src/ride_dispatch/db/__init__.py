"""Database persistence module for ride dispatch state."""

from .database import init_database
from .schema import AccountRow, Base, RideEventRow, RideRow, WalletTransactionRow
from .transaction import transaction

__all__ = [
    "AccountRow",
    "Base",
    "RideEventRow",
    "RideRow",
    "WalletTransactionRow",
    "init_database",
    "transaction",
]
