"""Atomic fare settlement and rating aggregation."""

import logging

from pydantic import BaseModel

from ..core.exceptions import (
    ConflictError,
    GuardViolationError,
    PermissionDeniedError,
    ValidationError,
)
from ..db.repositories.wallet_repository import TransactionType
from ..dispatch_logging import log_ride_context
from ..metrics.prometheus_exporter import record_rating, record_settlement
from ..notifications import NotificationDispatch, NotificationKind
from ..ride import CompletedRide, PaymentPendingRide, RideStatus, StartedRide
from ..store import RideStore, UnitOfWork
from .rating import aggregate_rating

logger = logging.getLogger(__name__)


class RatingResult(BaseModel):
    ride_id: str
    driver_id: str
    rating: int
    driver_rating: float
    driver_rating_count: int


class SettlementEngine:
    """The only writer of wallet balances, trip counts and driver ratings.

    Each operation is one store transaction: the ride transition and every
    account mutation commit together or not at all.
    """

    def __init__(self, store: RideStore, notifications: NotificationDispatch | None = None):
        self._store = store
        self._notifications = notifications

    def apply(
        self,
        uow: UnitOfWork,
        ride: StartedRide | PaymentPendingRide,
        payment_reference: str | None = None,
    ) -> CompletedRide:
        """Complete and pay out ``ride`` inside the caller's open transaction."""
        completed = ride.complete(uow.now, payment_reference)
        stored = uow.rides.compare_and_set(ride, completed)
        if stored is None:
            raise ConflictError(
                "Ride changed before it could be settled", details={"ride_id": ride.id}
            )

        uow.accounts.record_completed_trip(ride.driver_id, ride.estimated_fare)
        uow.wallet.append(
            ride.driver_id,
            ride.estimated_fare,
            TransactionType.CREDIT,
            description=f"Ride earnings for {ride.id}",
            ride_id=ride.id,
        )
        return stored  # type: ignore[return-value]

    async def settle(self, ride_id: str, payment_reference: str) -> CompletedRide:
        """Settle a ride held in PAYMENT_PENDING once payment is captured."""
        if not payment_reference:
            raise ValidationError("A payment reference is required to settle")

        def _settle(uow: UnitOfWork) -> CompletedRide:
            ride = uow.rides.require(ride_id)
            if ride.status == RideStatus.COMPLETED:
                raise GuardViolationError(
                    "Ride is already settled", details={"ride_id": ride_id}
                )
            if not isinstance(ride, PaymentPendingRide):
                raise GuardViolationError(
                    f"Ride is {ride.status.value}, not awaiting payment",
                    details={"ride_id": ride_id, "status": ride.status.value},
                )
            return self.apply(uow, ride, payment_reference)

        try:
            completed = await self._store.run(_settle, "settle")
        except GuardViolationError:
            record_settlement("rejected")
            raise

        self.announce(completed)
        return completed

    def announce(self, completed: CompletedRide) -> None:
        record_settlement("settled", completed.estimated_fare)
        with log_ride_context(completed.id, driver_id=completed.driver_id):
            logger.info(f"Settled {completed.estimated_fare} to driver wallet")
        if self._notifications is not None:
            for account_id in (completed.rider_id, completed.driver_id):
                self._notifications.notify(
                    account_id,
                    NotificationKind.TRIP_COMPLETED,
                    completed.id,
                    completed.version,
                    fare=completed.estimated_fare,
                )

    async def submit_rating(
        self, ride_id: str, rider_id: str, rating: int, comment: str | None = None
    ) -> RatingResult:
        """Record the rider's rating and fold it into the driver's average."""
        if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
            raise ValidationError(
                "Rating must be a whole number from 1 to 5", details={"rating": rating}
            )

        def _rate(uow: UnitOfWork) -> RatingResult:
            ride = uow.rides.require(ride_id)
            if ride.rider_id != rider_id:
                raise PermissionDeniedError(
                    "Only the ride's rider can rate it", details={"ride_id": ride_id}
                )
            if not isinstance(ride, CompletedRide):
                raise GuardViolationError(
                    f"Ride is {ride.status.value}; only completed rides can be rated",
                    details={"ride_id": ride_id, "status": ride.status.value},
                )
            if ride.is_rated:
                raise GuardViolationError("Ride is already rated", details={"ride_id": ride_id})

            # Read average and count under the row lock so concurrent ratings serialize
            driver = uow.accounts.lock(ride.driver_id)
            new_average, new_count = aggregate_rating(driver.rating, driver.rating_count, rating)

            if uow.rides.compare_and_set(ride, ride.rate(rating, comment, uow.now)) is None:
                raise ConflictError("Ride changed while rating", details={"ride_id": ride_id})
            uow.accounts.update_rating(ride.driver_id, new_average, new_count)

            return RatingResult(
                ride_id=ride_id,
                driver_id=ride.driver_id,
                rating=rating,
                driver_rating=new_average,
                driver_rating_count=new_count,
            )

        result = await self._store.run(_rate, "submit_rating")
        record_rating(rating)
        with log_ride_context(ride_id, driver_id=result.driver_id):
            logger.info(
                f"Rating {rating} recorded; driver now {result.driver_rating} "
                f"over {result.driver_rating_count} ratings"
            )
        return result
