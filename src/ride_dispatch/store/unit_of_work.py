"""Repositories bound to one store transaction."""

from sqlalchemy.orm import Session

from ..db.repositories import (
    AccountRepository,
    RideEventRepository,
    RideRepository,
    WalletRepository,
)
from ..db.utils import utc_now


class UnitOfWork:
    """Everything an operation may touch inside a single transaction."""

    def __init__(self, session: Session):
        self.session = session
        self.rides = RideRepository(session)
        self.accounts = AccountRepository(session)
        self.wallet = WalletRepository(session)
        self.events = RideEventRepository(session)
        # One clock reading per transaction keeps related timestamps equal
        self.now = utc_now()
