"""Transaction boundaries for store operations.

Every write the dispatch core makes goes through ``transaction``: the ride
transition, the wallet credit and the ledger row of a settlement either all
commit or all roll back.
"""

from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy.orm import Session

RIDE_CHANGES_KEY = "ride_changes"


@contextmanager
def transaction(session: Session) -> Generator[Session]:
    """Commit on success, roll back on any exception.

    Example:
        with transaction(session):
            rides.compare_and_set(current, completed)
            accounts.credit_wallet(driver_id, fare, ride_id=ride.id)
        # Automatic commit if no exception, rollback otherwise

    Change records queued on the session during a rolled-back transaction
    are discarded so nothing is published for a write that never happened.
    """
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        session.info.pop(RIDE_CHANGES_KEY, None)
        raise


def pending_ride_changes(session: Session) -> list:
    """Pop the ride change records queued by repositories on this session."""
    return session.info.pop(RIDE_CHANGES_KEY, [])
