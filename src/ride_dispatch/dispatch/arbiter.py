"""Acceptance arbitration: exactly one driver wins each request."""

import logging
from enum import Enum

from ..account import Account, Role
from ..core.exceptions import ConflictError, PermissionDeniedError
from ..dispatch_logging import log_ride_context
from ..metrics.prometheus_exporter import record_accept
from ..notifications import NotificationDispatch, NotificationKind
from ..ride import RideRequest, RideStatus
from ..store import RideStore, UnitOfWork

logger = logging.getLogger(__name__)


class AcceptOutcome(str, Enum):
    WON = "WON"
    LOST = "LOST"


class AcceptanceArbiter:
    """Resolves concurrent accepts with one conditional update.

    Losing the race is an ordinary outcome, not an error: the caller gets
    LOST and the request is left untouched.
    """

    def __init__(self, store: RideStore, notifications: NotificationDispatch | None = None):
        self._store = store
        self._notifications = notifications

    async def accept(self, request_id: str, driver_id: str) -> AcceptOutcome:
        def _accept(uow: UnitOfWork) -> RideRequest | None:
            ride = uow.rides.require(request_id)
            driver = uow.accounts.require(driver_id)
            self._check_driver(driver, ride)

            if ride.status != RideStatus.SEARCHING:
                # Taken or closed, including by this same driver
                return None

            active = uow.rides.find_active_for_driver(driver_id)
            if active is not None:
                raise ConflictError(
                    "Driver already has an active trip",
                    details={"ride_id": active.id, "status": active.status.value},
                )
            return uow.rides.claim(request_id, driver_id, uow.now)

        claimed = await self._store.run(_accept, "accept")

        with log_ride_context(request_id, driver_id=driver_id):
            if claimed is None:
                record_accept(AcceptOutcome.LOST.value)
                logger.info("Accept lost: request already taken or no longer searching")
                return AcceptOutcome.LOST

            record_accept(AcceptOutcome.WON.value)
            logger.info("Accept won")
            if self._notifications is not None:
                self._notifications.notify(
                    claimed.rider_id,
                    NotificationKind.RIDE_ACCEPTED,
                    claimed.id,
                    claimed.version,
                    driver_id=driver_id,
                )
            return AcceptOutcome.WON

    def _check_driver(self, driver: Account, ride: RideRequest) -> None:
        if not driver.has_role(Role.DRIVER):
            raise PermissionDeniedError(
                f"Account {driver.id} is not a driver", details={"account_id": driver.id}
            )
        if not driver.is_eligible_driver:
            raise PermissionDeniedError(
                f"Driver {driver.id} is not approved to take rides",
                details={
                    "account_id": driver.id,
                    "is_approved": driver.is_approved,
                    "is_kyc_completed": driver.is_kyc_completed,
                    "is_active": driver.is_active,
                },
            )
        if not driver.serves(ride.vehicle_type):
            raise PermissionDeniedError(
                f"Driver {driver.id} does not serve {ride.vehicle_type.value} requests",
                details={"account_id": driver.id, "vehicle_type": ride.vehicle_type.value},
            )
        if driver.id == ride.rider_id:
            raise PermissionDeniedError("A driver cannot accept their own ride request")
