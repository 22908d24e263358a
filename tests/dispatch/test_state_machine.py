"""Tests for guarded ride lifecycle transitions."""

from datetime import timedelta

import pytest

from ride_dispatch.core.exceptions import (
    ConflictError,
    GuardViolationError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from ride_dispatch.db.utils import utc_now
from ride_dispatch.notifications import NotificationKind
from ride_dispatch.notifications.dispatch import OPERATIONS_ACCOUNT
from ride_dispatch.ride import (
    ArrivedRide,
    CancelledBy,
    CancelledRide,
    CompletedRide,
    Coordinates,
    PaymentMethod,
    PaymentPendingRide,
    RideStatus,
    StartedRide,
)
from tests.factories import ride_in_status, searching_ride


def sent(mock_notifier, kind):
    return [
        call.args[0]
        for call in mock_notifier.send.await_args_list
        if call.args[0].kind == kind
    ]


@pytest.mark.unit
class TestArriveAndStart:
    @pytest.mark.asyncio
    async def test_assigned_driver_arrives(self, core, rider, driver, mock_notifier):
        ride = await ride_in_status(core, rider.id, driver.id, RideStatus.ACCEPTED)
        arrived = await core.state_machine.mark_arrived(ride.id, driver.id)

        assert isinstance(arrived, ArrivedRide)
        await core.notifications.drain()
        notified = {n.account_id for n in sent(mock_notifier, NotificationKind.DRIVER_ARRIVED)}
        assert notified == {rider.id, driver.id}

    @pytest.mark.asyncio
    async def test_other_driver_cannot_arrive(self, core, rider, driver, account_factory, seed_account):
        other = seed_account(account_factory.driver())
        ride = await ride_in_status(core, rider.id, driver.id, RideStatus.ACCEPTED)

        with pytest.raises(PermissionDeniedError):
            await core.state_machine.mark_arrived(ride.id, other.id)

    @pytest.mark.asyncio
    async def test_cannot_arrive_while_searching(self, core, rider, driver):
        ride = await ride_in_status(core, rider.id, driver.id, RideStatus.SEARCHING)
        with pytest.raises(GuardViolationError):
            await core.state_machine.mark_arrived(ride.id, driver.id)

    @pytest.mark.asyncio
    @pytest.mark.critical
    async def test_wrong_code_leaves_ride_arrived(self, core, rider, driver):
        ride = await ride_in_status(core, rider.id, driver.id, RideStatus.ARRIVED)
        wrong = "000000" if ride.otp != "000000" else "111111"

        with pytest.raises(GuardViolationError, match="Trip code"):
            await core.state_machine.start_trip(ride.id, driver.id, wrong)

        stored = await core.broadcaster.active_snapshot(rider.id)
        assert stored.status == RideStatus.ARRIVED
        assert stored.version == ride.version

    @pytest.mark.asyncio
    async def test_correct_code_starts_trip(self, core, rider, driver):
        ride = await ride_in_status(core, rider.id, driver.id, RideStatus.ARRIVED)
        started = await core.state_machine.start_trip(ride.id, driver.id, ride.otp)
        assert isinstance(started, StartedRide)
        assert started.started_at >= started.arrived_at

    @pytest.mark.asyncio
    async def test_unknown_ride(self, core, driver):
        with pytest.raises(NotFoundError):
            await core.state_machine.mark_arrived("ride_missing", driver.id)


@pytest.mark.unit
@pytest.mark.critical
class TestComplete:
    @pytest.mark.asyncio
    async def test_cash_completes_immediately(self, core, rider, driver):
        ride = await ride_in_status(core, rider.id, driver.id, RideStatus.STARTED)
        completed = await core.state_machine.complete_trip(ride.id, driver.id)
        assert isinstance(completed, CompletedRide)

    @pytest.mark.asyncio
    async def test_repeat_completion_does_not_credit_twice(self, core, rider, driver):
        ride = await ride_in_status(core, rider.id, driver.id, RideStatus.STARTED, amount=250)
        await core.state_machine.complete_trip(ride.id, driver.id)

        with pytest.raises(GuardViolationError, match="COMPLETED"):
            await core.state_machine.complete_trip(ride.id, driver.id)

        account = await core.accounts.get(driver.id)
        assert account.wallet_balance == 250
        assert account.total_rides == 1
        assert len(await core.accounts.wallet_transactions(driver.id)) == 1

    @pytest.mark.asyncio
    async def test_upi_waits_for_payment(self, core, rider, driver):
        ride = await ride_in_status(
            core, rider.id, driver.id, RideStatus.STARTED, payment_method=PaymentMethod.UPI
        )
        pending = await core.state_machine.complete_trip(ride.id, driver.id)
        assert isinstance(pending, PaymentPendingRide)

        account = await core.accounts.get(driver.id)
        assert account.wallet_balance == 0

    @pytest.mark.asyncio
    async def test_cannot_complete_before_start(self, core, rider, driver):
        ride = await ride_in_status(core, rider.id, driver.id, RideStatus.ARRIVED)
        with pytest.raises(GuardViolationError):
            await core.state_machine.complete_trip(ride.id, driver.id)

    @pytest.mark.asyncio
    async def test_rider_cannot_complete(self, core, rider, driver):
        ride = await ride_in_status(core, rider.id, driver.id, RideStatus.STARTED)
        with pytest.raises(PermissionDeniedError):
            await core.state_machine.complete_trip(ride.id, rider.id)


@pytest.mark.unit
class TestCancel:
    @pytest.mark.asyncio
    async def test_rider_cancels_search_without_reason(self, core, rider, driver):
        ride = await ride_in_status(core, rider.id, driver.id, RideStatus.SEARCHING)
        cancelled = await core.state_machine.cancel(ride.id, rider.id)

        assert isinstance(cancelled, CancelledRide)
        assert cancelled.cancelled_by == CancelledBy.RIDER
        assert cancelled.cancellation_reason == "Cancelled by rider"

    @pytest.mark.asyncio
    async def test_driver_cannot_cancel_unaccepted_request(self, core, rider, driver):
        ride = await ride_in_status(core, rider.id, driver.id, RideStatus.SEARCHING)
        with pytest.raises(PermissionDeniedError):
            await core.state_machine.cancel(ride.id, driver.id, "Too far")

    @pytest.mark.asyncio
    async def test_reason_required_after_accept(self, core, rider, driver):
        ride = await ride_in_status(core, rider.id, driver.id, RideStatus.ACCEPTED)
        with pytest.raises(ValidationError, match="reason"):
            await core.state_machine.cancel(ride.id, rider.id, "   ")

    @pytest.mark.asyncio
    async def test_driver_cancels_after_accept(self, core, rider, driver, mock_notifier):
        ride = await ride_in_status(core, rider.id, driver.id, RideStatus.ARRIVED)
        cancelled = await core.state_machine.cancel(ride.id, driver.id, "Rider not at pickup")

        assert cancelled.cancelled_by == CancelledBy.DRIVER
        assert cancelled.driver_id == driver.id
        await core.notifications.drain()
        assert rider.id in {n.account_id for n in sent(mock_notifier, NotificationKind.RIDE_CANCELLED)}

    @pytest.mark.asyncio
    async def test_cannot_cancel_started_trip(self, core, rider, driver):
        ride = await ride_in_status(core, rider.id, driver.id, RideStatus.STARTED)
        with pytest.raises(GuardViolationError):
            await core.state_machine.cancel(ride.id, rider.id, "Changed plans")

    @pytest.mark.asyncio
    async def test_outsider_cannot_cancel(self, core, rider, driver, account_factory, seed_account):
        outsider = seed_account(account_factory.rider())
        ride = await ride_in_status(core, rider.id, driver.id, RideStatus.ACCEPTED)
        with pytest.raises(PermissionDeniedError):
            await core.state_machine.cancel(ride.id, outsider.id, "Because")

    @pytest.mark.asyncio
    async def test_expected_status_mismatch_conflicts(self, core, rider, driver):
        ride = await ride_in_status(core, rider.id, driver.id, RideStatus.ACCEPTED)
        with pytest.raises(ConflictError, match="expected SEARCHING"):
            await core.state_machine.cancel(
                ride.id, rider.id, "Changed plans", expected_status=RideStatus.SEARCHING
            )

    @pytest.mark.asyncio
    async def test_cancelled_ride_is_terminal(self, core, rider, driver):
        ride = await ride_in_status(core, rider.id, driver.id, RideStatus.SEARCHING)
        await core.state_machine.cancel(ride.id, rider.id)
        with pytest.raises(GuardViolationError, match="terminal"):
            await core.state_machine.cancel(ride.id, rider.id)


@pytest.mark.unit
class TestDecline:
    @pytest.mark.asyncio
    async def test_decline_is_idempotent(self, core, rider, driver):
        ride = await ride_in_status(core, rider.id, driver.id, RideStatus.SEARCHING)

        first = await core.state_machine.decline(ride.id, driver.id, "Too far")
        second = await core.state_machine.decline(ride.id, driver.id)

        assert first.declined_drivers == [driver.id]
        assert second.version == first.version

    @pytest.mark.asyncio
    async def test_cannot_decline_accepted_ride(self, core, rider, driver):
        ride = await ride_in_status(core, rider.id, driver.id, RideStatus.ACCEPTED)
        with pytest.raises(GuardViolationError):
            await core.state_machine.decline(ride.id, driver.id)

    @pytest.mark.asyncio
    async def test_rider_account_cannot_decline(self, core, rider, driver, account_factory, seed_account):
        other_rider = seed_account(account_factory.rider())
        ride = await ride_in_status(core, rider.id, driver.id, RideStatus.SEARCHING)
        with pytest.raises(PermissionDeniedError):
            await core.state_machine.decline(ride.id, other_rider.id)


@pytest.mark.unit
class TestPickupUpdate:
    NEW_PICKUP = Coordinates(lat=27.4912345678, lng=77.6712345678)

    @pytest.mark.asyncio
    async def test_newer_sequence_applies_normalized(self, core, rider, driver):
        ride = await ride_in_status(core, rider.id, driver.id, RideStatus.ACCEPTED)
        result = await core.state_machine.update_pickup(
            ride.id, rider.id, self.NEW_PICKUP, "Gate 2", sequence=1
        )
        assert result.applied
        assert result.ride.pickup_location == Coordinates(lat=27.491235, lng=77.671235)
        assert result.ride.pickup_address == "Gate 2"

    @pytest.mark.asyncio
    async def test_stale_sequence_ignored(self, core, rider, driver):
        ride = await ride_in_status(core, rider.id, driver.id, RideStatus.SEARCHING)
        await core.state_machine.update_pickup(ride.id, rider.id, self.NEW_PICKUP, None, sequence=5)

        stale = await core.state_machine.update_pickup(
            ride.id, rider.id, Coordinates(lat=1.0, lng=1.0), None, sequence=5
        )
        assert not stale.applied
        assert stale.ride.location_sequence == 5
        assert stale.ride.pickup_location.lat == pytest.approx(27.491235)

    @pytest.mark.asyncio
    async def test_pickup_fixed_once_driver_arrives(self, core, rider, driver):
        ride = await ride_in_status(core, rider.id, driver.id, RideStatus.ARRIVED)
        with pytest.raises(GuardViolationError):
            await core.state_machine.update_pickup(ride.id, rider.id, self.NEW_PICKUP, None, 1)

    @pytest.mark.asyncio
    async def test_only_rider_moves_pickup(self, core, rider, driver):
        ride = await ride_in_status(core, rider.id, driver.id, RideStatus.ACCEPTED)
        with pytest.raises(PermissionDeniedError):
            await core.state_machine.update_pickup(ride.id, driver.id, self.NEW_PICKUP, None, 1)


@pytest.mark.unit
class TestSos:
    @pytest.mark.asyncio
    async def test_sos_reaches_operations(self, core, rider, driver, mock_notifier):
        ride = await ride_in_status(core, rider.id, driver.id, RideStatus.STARTED)
        await core.state_machine.raise_sos(ride.id, rider.id, Coordinates(lat=27.495, lng=77.675))
        await core.notifications.drain()

        alerts = sent(mock_notifier, NotificationKind.SOS)
        assert len(alerts) == 1
        assert alerts[0].account_id == OPERATIONS_ACCOUNT
        assert alerts[0].payload["raised_by"] == rider.id

    @pytest.mark.asyncio
    async def test_sos_requires_active_trip(self, core, rider, driver):
        ride = await ride_in_status(core, rider.id, driver.id, RideStatus.SEARCHING)
        with pytest.raises(GuardViolationError):
            await core.state_machine.raise_sos(ride.id, rider.id, Coordinates(lat=0, lng=0))

    @pytest.mark.asyncio
    async def test_outsider_cannot_raise_sos(self, core, rider, driver, account_factory, seed_account):
        outsider = seed_account(account_factory.rider())
        ride = await ride_in_status(core, rider.id, driver.id, RideStatus.STARTED)
        with pytest.raises(PermissionDeniedError):
            await core.state_machine.raise_sos(ride.id, outsider.id, Coordinates(lat=0, lng=0))


@pytest.mark.unit
class TestExpiry:
    @pytest.mark.asyncio
    async def test_stale_requests_cancelled_by_system(
        self, core, rider, seed_ride, account_factory, seed_account
    ):
        stale = seed_ride(searching_ride(rider.id, created_at=utc_now() - timedelta(minutes=10)))
        fresh_rider = seed_account(account_factory.rider())
        fresh = seed_ride(searching_ride(fresh_rider.id))

        expired = await core.state_machine.expire_stale_requests()

        assert expired == [stale.id]
        cancelled = await core.broadcaster.active_snapshot(rider.id)
        assert cancelled is None
        history = await core.store.run(lambda uow: uow.rides.get(stale.id))
        assert history.cancelled_by == CancelledBy.SYSTEM
        assert (await core.store.run(lambda uow: uow.rides.get(fresh.id))).status == RideStatus.SEARCHING

    @pytest.mark.asyncio
    async def test_nothing_to_expire(self, core):
        assert await core.state_machine.expire_stale_requests() == []
