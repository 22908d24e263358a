"""Guarded ride lifecycle transitions.

Every operation reads the ride, validates the edge and the actor, builds the
next status variant and writes it with a compare-and-set on version, all in
one store transaction. Illegal edges, wrong actors and wrong codes raise and
leave the stored ride untouched.
"""

import logging
from datetime import timedelta

from pydantic import BaseModel

from ..account import Role
from ..core.exceptions import (
    ConflictError,
    GuardViolationError,
    PermissionDeniedError,
    ValidationError,
)
from ..db.utils import utc_now
from ..dispatch_logging import log_ride_context
from ..metrics.prometheus_exporter import record_transition
from ..notifications import NotificationDispatch, NotificationKind
from ..ride import (
    ACTIVE_STATUSES,
    ArrivedRide,
    CancelledBy,
    CancelledRide,
    CompletedRide,
    Coordinates,
    PaymentMethod,
    PaymentPendingRide,
    RideRequest,
    RideStatus,
    SearchingRide,
    StartedRide,
    ensure_transition,
)
from ..settlement import SettlementEngine
from ..store import RideStore, UnitOfWork

logger = logging.getLogger(__name__)

DEFAULT_RIDER_CANCEL_REASON = "Cancelled by rider"
EXPIRED_REASON = "No driver accepted"

_NOTIFY_ON: dict[RideStatus, NotificationKind] = {
    RideStatus.ARRIVED: NotificationKind.DRIVER_ARRIVED,
    RideStatus.STARTED: NotificationKind.TRIP_STARTED,
    RideStatus.PAYMENT_PENDING: NotificationKind.PAYMENT_PENDING,
    RideStatus.CANCELLED: NotificationKind.RIDE_CANCELLED,
}


class PickupUpdate(BaseModel):
    applied: bool
    ride: RideRequest


def _require_assigned_driver(ride: RideRequest, actor_id: str) -> None:
    if getattr(ride, "driver_id", None) != actor_id:
        raise PermissionDeniedError(
            "Only the assigned driver can do this",
            details={"ride_id": ride.id, "actor_id": actor_id},
        )


def _require_rider(ride: RideRequest, actor_id: str) -> None:
    if ride.rider_id != actor_id:
        raise PermissionDeniedError(
            "Only the ride's rider can do this",
            details={"ride_id": ride.id, "actor_id": actor_id},
        )


def _require_payment_operator(uow: UnitOfWork, actor_id: str) -> None:
    operator = uow.accounts.get(actor_id)
    if operator is None or not operator.has_role(Role.ADMIN) or not operator.is_active:
        raise PermissionDeniedError(
            "Only the payments operator can confirm a payment",
            details={"actor_id": actor_id},
        )


def _write(uow: UnitOfWork, current: RideRequest, updated: RideRequest) -> RideRequest:
    stored = uow.rides.compare_and_set(current, updated)
    if stored is None:
        raise ConflictError(
            "Ride was modified concurrently; re-read and retry",
            details={"ride_id": current.id, "version": current.version},
        )
    return stored


class RideStateMachine:
    def __init__(
        self,
        store: RideStore,
        settlement: SettlementEngine,
        notifications: NotificationDispatch | None = None,
        capture_payment_methods: set[PaymentMethod] | None = None,
        search_timeout_seconds: int = 300,
    ):
        self._store = store
        self._settlement = settlement
        self._notifications = notifications
        self._capture_methods = (
            capture_payment_methods
            if capture_payment_methods is not None
            else {PaymentMethod.UPI, PaymentMethod.CARD}
        )
        self._search_timeout = timedelta(seconds=search_timeout_seconds)

    async def mark_arrived(self, ride_id: str, actor_id: str) -> ArrivedRide:
        def _arrive(uow: UnitOfWork) -> RideRequest:
            ride = uow.rides.require(ride_id)
            ensure_transition(ride.status, RideStatus.ARRIVED)
            _require_assigned_driver(ride, actor_id)
            return _write(uow, ride, ride.arrive(uow.now))  # type: ignore[union-attr]

        return await self._run(ride_id, _arrive, "mark_arrived")  # type: ignore[return-value]

    async def start_trip(self, ride_id: str, actor_id: str, code: str) -> StartedRide:
        """ARRIVED -> STARTED, only with the rider's one-time code."""

        def _start(uow: UnitOfWork) -> RideRequest:
            ride = uow.rides.require(ride_id)
            ensure_transition(ride.status, RideStatus.STARTED)
            _require_assigned_driver(ride, actor_id)
            return _write(uow, ride, ride.start(code, uow.now))  # type: ignore[union-attr]

        try:
            return await self._run(ride_id, _start, "start_trip")  # type: ignore[return-value]
        except GuardViolationError as e:
            with log_ride_context(ride_id, driver_id=actor_id):
                logger.warning(f"Trip start refused: {e.message}")
            raise

    async def complete_trip(
        self, ride_id: str, actor_id: str
    ) -> CompletedRide | PaymentPendingRide:
        """End the trip: settle now, or hold for payment capture."""

        def _complete(uow: UnitOfWork) -> RideRequest:
            ride = uow.rides.require(ride_id)
            if not isinstance(ride, StartedRide):
                raise GuardViolationError(
                    f"Cannot complete a ride in {ride.status.value}",
                    details={"ride_id": ride_id, "status": ride.status.value},
                )
            _require_assigned_driver(ride, actor_id)
            if ride.payment_method in self._capture_methods:
                return _write(uow, ride, ride.hold_for_payment(uow.now))
            return self._settlement.apply(uow, ride)

        ride = await self._run(ride_id, _complete, "complete_trip")
        if isinstance(ride, CompletedRide):
            self._settlement.announce(ride)
        return ride  # type: ignore[return-value]

    async def confirm_payment(
        self, ride_id: str, actor_id: str, payment_reference: str
    ) -> CompletedRide:
        """Called by the payment collaborator once it has captured the fare.

        Only an active ADMIN account (the payments operator) may confirm;
        riders and drivers cannot settle their own rides.
        """
        await self._store.run(
            lambda uow: _require_payment_operator(uow, actor_id), "authorize_payment"
        )
        completed = await self._settlement.settle(ride_id, payment_reference)
        record_transition(completed.status.value)
        return completed

    async def cancel(
        self,
        ride_id: str,
        actor_id: str,
        reason: str | None = None,
        expected_status: RideStatus | None = None,
    ) -> CancelledRide:
        """Cancel on behalf of the rider or the assigned driver.

        While SEARCHING the rider cancels freely. Once a driver has accepted,
        either party may cancel but must give a reason. From STARTED on the
        ride can no longer be cancelled. ``expected_status`` makes the call
        fail instead of acting on a ride that moved on since the caller looked.
        """

        def _cancel(uow: UnitOfWork) -> RideRequest:
            ride = uow.rides.require(ride_id)
            if expected_status is not None and ride.status != expected_status:
                raise ConflictError(
                    f"Ride is {ride.status.value}, expected {expected_status.value}",
                    details={"ride_id": ride_id, "status": ride.status.value},
                )
            ensure_transition(ride.status, RideStatus.CANCELLED)

            if isinstance(ride, SearchingRide):
                _require_rider(ride, actor_id)
                by = CancelledBy.RIDER
                final_reason = (reason or "").strip() or DEFAULT_RIDER_CANCEL_REASON
            else:
                if actor_id == ride.rider_id:
                    by = CancelledBy.RIDER
                elif actor_id == getattr(ride, "driver_id", None):
                    by = CancelledBy.DRIVER
                else:
                    raise PermissionDeniedError(
                        "Only the rider or the assigned driver can cancel",
                        details={"ride_id": ride_id, "actor_id": actor_id},
                    )
                final_reason = (reason or "").strip()
                if not final_reason:
                    raise ValidationError(
                        "A reason is required to cancel after a driver has accepted",
                        details={"ride_id": ride_id},
                    )
            return _write(uow, ride, ride.cancel(by, final_reason, uow.now))  # type: ignore[union-attr]

        return await self._run(ride_id, _cancel, "cancel")  # type: ignore[return-value]

    async def decline(self, ride_id: str, driver_id: str, reason: str | None = None) -> SearchingRide:
        """Hide a SEARCHING request from this driver. Repeating it is a no-op."""

        def _decline(uow: UnitOfWork) -> SearchingRide:
            ride = uow.rides.require(ride_id)
            if not isinstance(ride, SearchingRide):
                raise GuardViolationError(
                    f"Cannot decline a ride in {ride.status.value}",
                    details={"ride_id": ride_id, "status": ride.status.value},
                )
            driver = uow.accounts.require(driver_id)
            if not driver.has_role(Role.DRIVER):
                raise PermissionDeniedError(f"Account {driver_id} is not a driver")
            if driver_id in ride.declined_drivers:
                return ride

            updated = ride.model_copy(
                update={"declined_drivers": [*ride.declined_drivers, driver_id]}
            )
            stored = _write(uow, ride, updated)
            uow.events.append(ride_id, "declined", driver_id, reason=reason)
            return stored  # type: ignore[return-value]

        ride = await self._store.run(_decline, "decline")
        with log_ride_context(ride_id, driver_id=driver_id):
            logger.info("Request declined")
        return ride

    async def update_pickup(
        self,
        ride_id: str,
        rider_id: str,
        location: Coordinates,
        address: str | None,
        sequence: int,
    ) -> PickupUpdate:
        """Move the pickup point before the trip starts.

        Updates carrying a sequence number at or below the stored one are
        stale and ignored.
        """

        def _update(uow: UnitOfWork) -> PickupUpdate:
            ride = uow.rides.require(ride_id)
            _require_rider(ride, rider_id)
            if ride.status not in (RideStatus.SEARCHING, RideStatus.ACCEPTED):
                raise GuardViolationError(
                    f"Pickup cannot change once the ride is {ride.status.value}",
                    details={"ride_id": ride_id, "status": ride.status.value},
                )
            if sequence <= ride.location_sequence:
                return PickupUpdate(applied=False, ride=ride)

            normalized = location.normalized()
            updated = ride.model_copy(
                update={
                    "pickup_location": normalized,
                    "pickup_address": address if address is not None else ride.pickup_address,
                    "location_sequence": sequence,
                }
            )
            stored = _write(uow, ride, updated)
            uow.events.append(
                ride_id, "pickup_updated", rider_id, sequence=sequence, **normalized.model_dump()
            )
            return PickupUpdate(applied=True, ride=stored)

        result = await self._store.run(_update, "update_pickup")
        if not result.applied:
            with log_ride_context(ride_id, rider_id=rider_id):
                logger.debug(f"Ignoring stale pickup update (sequence {sequence})")
        return result

    async def raise_sos(self, ride_id: str, actor_id: str, location: Coordinates) -> None:
        def _sos(uow: UnitOfWork) -> RideRequest:
            ride = uow.rides.require(ride_id)
            if not ride.involves(actor_id):
                raise PermissionDeniedError("Only the ride's rider or driver can raise SOS")
            if ride.status not in ACTIVE_STATUSES:
                raise GuardViolationError(
                    f"SOS is only available on an active trip, ride is {ride.status.value}"
                )
            uow.events.append(ride_id, "sos", actor_id, **location.model_dump())
            return ride

        ride = await self._store.run(_sos, "raise_sos")
        if self._notifications is not None:
            self._notifications.raise_sos(ride.id, ride.version, actor_id, location)

    async def expire_stale_requests(self) -> list[str]:
        """Cancel SEARCHING requests nobody accepted within the search timeout."""
        cutoff = utc_now() - self._search_timeout

        def _expire(uow: UnitOfWork) -> list[CancelledRide]:
            expired = []
            for ride in uow.rides.list_stale_searching(cutoff):
                stored = uow.rides.compare_and_set(
                    ride, ride.cancel(CancelledBy.SYSTEM, EXPIRED_REASON, uow.now)
                )
                if stored is not None:
                    expired.append(stored)
            return expired  # type: ignore[return-value]

        expired = await self._store.run(_expire, "expire_stale_requests")
        for ride in expired:
            self._after_transition(ride)
        if expired:
            logger.info(f"Expired {len(expired)} unaccepted requests")
        return [ride.id for ride in expired]

    async def _run(self, ride_id: str, operation, name: str) -> RideRequest:
        ride = await self._store.run(operation, name)
        self._after_transition(ride)
        return ride

    def _after_transition(self, ride: RideRequest) -> None:
        record_transition(ride.status.value)
        with log_ride_context(ride.id, rider_id=ride.rider_id):
            logger.info(f"Ride now {ride.status.value}")

        kind = _NOTIFY_ON.get(ride.status)
        if kind is None or self._notifications is None:
            return
        for account_id in (ride.rider_id, getattr(ride, "driver_id", None)):
            if account_id:
                self._notifications.notify(account_id, kind, ride.id, ride.version)
