"""Tests for guarded ride writes."""

from datetime import datetime, timedelta

import pytest

from ride_dispatch.core.exceptions import NotFoundError
from ride_dispatch.db.repositories import RideRepository
from ride_dispatch.db.transaction import pending_ride_changes, transaction
from ride_dispatch.ride import (
    AcceptedRide,
    CancelledBy,
    CancelledRide,
    RideStatus,
    SearchingRide,
    VehicleCategory,
)
from tests.factories import searching_ride

T0 = datetime(2026, 3, 1, 9, 0, 0)


@pytest.fixture
def run(session_factory):
    """Run a function against a RideRepository in its own transaction."""

    def _run(fn):
        with session_factory() as session, transaction(session):
            return fn(RideRepository(session))

    return _run


@pytest.mark.unit
class TestRideRoundTrip:
    def test_searching_ride_reads_back_equal(self, run, seed_ride, rider):
        ride = seed_ride(searching_ride(rider.id, created_at=T0))
        loaded = run(lambda repo: repo.get(ride.id))
        assert isinstance(loaded, SearchingRide)
        assert loaded == ride

    def test_missing_ride_is_none(self, run):
        assert run(lambda repo: repo.get("ride_nope")) is None

    def test_reload_of_missing_ride_raises_not_found(self, run):
        with pytest.raises(NotFoundError, match="ride_gone"):
            run(lambda repo: repo._reload("ride_gone", RideStatus.SEARCHING))

    def test_create_queues_change(self, session_factory, rider):
        with session_factory() as session, transaction(session):
            ride = searching_ride(rider.id)
            RideRepository(session).create(ride)
            changes = pending_ride_changes(session)
        assert len(changes) == 1
        assert changes[0].ride_id == ride.id
        assert changes[0].previous_status is None


@pytest.mark.unit
@pytest.mark.critical
class TestClaim:
    def test_first_claim_wins(self, run, seed_ride, rider, driver, account_factory, seed_account):
        other = seed_account(account_factory.driver())
        ride = seed_ride(searching_ride(rider.id))

        first = run(lambda repo: repo.claim(ride.id, driver.id, T0))
        second = run(lambda repo: repo.claim(ride.id, other.id, T0))

        assert isinstance(first, AcceptedRide)
        assert first.driver_id == driver.id
        assert first.version == 1
        assert second is None

    def test_targeted_request_rejects_other_driver(
        self, run, seed_ride, rider, driver, account_factory, seed_account
    ):
        other = seed_account(account_factory.driver())
        ride = seed_ride(searching_ride(rider.id, target_driver_id=driver.id))

        assert run(lambda repo: repo.claim(ride.id, other.id, T0)) is None
        assert run(lambda repo: repo.claim(ride.id, driver.id, T0)) is not None

    def test_claim_after_cancel_fails(self, run, seed_ride, rider, driver):
        ride = seed_ride(searching_ride(rider.id))
        run(lambda repo: repo.compare_and_set(ride, ride.cancel(CancelledBy.RIDER, "x", T0)))
        assert run(lambda repo: repo.claim(ride.id, driver.id, T0)) is None


@pytest.mark.unit
@pytest.mark.critical
class TestCompareAndSet:
    def test_applies_and_bumps_version(self, run, seed_ride, rider):
        ride = seed_ride(searching_ride(rider.id))
        stored = run(
            lambda repo: repo.compare_and_set(ride, ride.cancel(CancelledBy.RIDER, "Changed plans", T0))
        )
        assert isinstance(stored, CancelledRide)
        assert stored.version == 1
        assert stored.cancellation_reason == "Changed plans"

    def test_stale_version_is_rejected(self, run, seed_ride, rider):
        ride = seed_ride(searching_ride(rider.id))
        moved = ride.model_copy(update={"declined_drivers": ["acct_x"]})
        assert run(lambda repo: repo.compare_and_set(ride, moved)) is not None

        # Still SEARCHING, but the version moved on
        stale = run(lambda repo: repo.compare_and_set(ride, ride.cancel(CancelledBy.RIDER, "x", T0)))
        assert stale is None
        assert run(lambda repo: repo.get(ride.id)).status == RideStatus.SEARCHING

    def test_trip_code_is_never_rewritten(self, run, seed_ride, rider):
        ride = seed_ride(searching_ride(rider.id, otp="111111"))
        run(lambda repo: repo.compare_and_set(ride, ride.model_copy(update={"otp": "999999"})))
        assert run(lambda repo: repo.get(ride.id)).otp == "111111"


@pytest.mark.unit
class TestQueries:
    def test_list_searching_oldest_first_by_category(self, run, seed_ride, rider, account_factory, seed_account):
        other_rider = seed_account(account_factory.rider())
        late = seed_ride(searching_ride(rider.id, created_at=T0 + timedelta(minutes=1)))
        early = seed_ride(searching_ride(other_rider.id, created_at=T0))
        third = seed_account(account_factory.rider())
        seed_ride(searching_ride(third.id, vehicle_type=VehicleCategory.AUTO))

        minis = run(lambda repo: repo.list_searching(VehicleCategory.MINI))
        assert [r.id for r in minis] == [early.id, late.id]
        assert len(run(lambda repo: repo.list_searching())) == 3

    def test_list_stale_searching(self, run, seed_ride, rider, account_factory, seed_account):
        old = seed_ride(searching_ride(rider.id, created_at=T0))
        other = seed_account(account_factory.rider())
        seed_ride(searching_ride(other.id, created_at=T0 + timedelta(hours=1)))

        stale = run(lambda repo: repo.list_stale_searching(T0 + timedelta(minutes=5)))
        assert [r.id for r in stale] == [old.id]

    def test_active_and_open_lookups(self, run, seed_ride, rider, driver):
        ride = seed_ride(searching_ride(rider.id))
        assert run(lambda repo: repo.find_open_for_rider(rider.id)).id == ride.id
        assert run(lambda repo: repo.find_active_for(rider.id)) is None

        run(lambda repo: repo.claim(ride.id, driver.id, T0))

        assert run(lambda repo: repo.find_active_for(rider.id)).id == ride.id
        assert run(lambda repo: repo.find_active_for(driver.id)).id == ride.id
        assert run(lambda repo: repo.find_active_for_driver(driver.id)).id == ride.id

    def test_count_searching_by_category(self, run, seed_ride, rider, account_factory, seed_account):
        seed_ride(searching_ride(rider.id))
        other = seed_account(account_factory.rider())
        seed_ride(searching_ride(other.id, vehicle_type=VehicleCategory.BIKE))

        counts = run(lambda repo: repo.count_searching_by_category())
        assert counts == {VehicleCategory.MINI: 1, VehicleCategory.BIKE: 1}
