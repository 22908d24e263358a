"""Tests for RideStore timeouts: a write either commits and is published, or fails."""

import asyncio
import threading
import time
from unittest.mock import AsyncMock, Mock

import pytest
from sqlalchemy import text

from ride_dispatch.core.exceptions import UnavailableError
from ride_dispatch.db.transaction import transaction
from ride_dispatch.dispatch import AcceptanceArbiter, AcceptOutcome
from ride_dispatch.ride import RideStatus
from ride_dispatch.store import RideStore
from ride_dispatch.store.ride_store import AttemptState, CommitFence
from tests.factories import searching_ride


@pytest.fixture
def spy_feed():
    feed = Mock()
    feed.publish = AsyncMock()
    return feed


def hold_write_lock(session_factory, taken: threading.Event, seconds: float) -> None:
    """Keep the SQLite write lock (BEGIN IMMEDIATE) for ``seconds``."""
    with session_factory() as session, transaction(session):
        session.execute(text("SELECT 1"))
        taken.set()
        time.sleep(seconds)


@pytest.mark.unit
class TestCommitFence:
    def test_commit_first_blocks_abandon(self):
        fence = CommitFence()
        assert fence.enter_commit() is True
        assert fence.abandon() is False
        assert fence.state == AttemptState.COMMITTING

    def test_abandon_first_blocks_commit(self):
        fence = CommitFence()
        assert fence.abandon() is True
        assert fence.enter_commit() is False
        assert fence.state == AttemptState.ABANDONED


@pytest.mark.critical
class TestOperationTimeout:
    @pytest.mark.asyncio
    async def test_timed_out_accept_is_rolled_back(
        self, session_factory, spy_feed, seed_ride, rider, driver
    ):
        store = RideStore(session_factory, spy_feed, operation_timeout=0.2)
        arbiter = AcceptanceArbiter(store)
        ride = seed_ride(searching_ride(rider.id))

        taken = threading.Event()
        holder = asyncio.create_task(
            asyncio.to_thread(hold_write_lock, session_factory, taken, 0.8)
        )
        await asyncio.to_thread(taken.wait, 5)

        with pytest.raises(UnavailableError, match="timed out"):
            await arbiter.accept(ride.id, driver.id)

        await holder
        # Let the abandoned worker take the lock and roll back
        await asyncio.sleep(0.5)

        reader = RideStore(session_factory, spy_feed, operation_timeout=10.0)
        stored = await reader.run(lambda uow: uow.rides.get(ride.id))
        assert stored.status == RideStatus.SEARCHING
        assert stored.version == 0
        spy_feed.publish.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_retry_after_timeout_wins(
        self, session_factory, spy_feed, seed_ride, rider, driver
    ):
        store = RideStore(session_factory, spy_feed, operation_timeout=0.2)
        ride = seed_ride(searching_ride(rider.id))

        taken = threading.Event()
        holder = asyncio.create_task(
            asyncio.to_thread(hold_write_lock, session_factory, taken, 0.5)
        )
        await asyncio.to_thread(taken.wait, 5)
        with pytest.raises(UnavailableError):
            await AcceptanceArbiter(store).accept(ride.id, driver.id)
        await holder
        await asyncio.sleep(0.3)

        patient = RideStore(session_factory, spy_feed, operation_timeout=10.0)
        outcome = await AcceptanceArbiter(patient).accept(ride.id, driver.id)

        assert outcome == AcceptOutcome.WON
        published = [call.args[0] for call in spy_feed.publish.await_args_list]
        assert [c.status for c in published] == [RideStatus.ACCEPTED]
