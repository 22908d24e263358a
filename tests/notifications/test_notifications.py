"""Tests for notification dispatch and deduplication."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, Mock

import pytest

from ride_dispatch.notifications import (
    LoggingNotifier,
    Notification,
    NotificationDeduplicator,
    NotificationDispatch,
    NotificationKind,
    RedisNotificationDeduplicator,
)
from ride_dispatch.notifications.dispatch import OPERATIONS_ACCOUNT
from ride_dispatch.ride import Coordinates


@pytest.fixture
def notifier():
    notifier = Mock()
    notifier.send = AsyncMock()
    return notifier


@pytest.mark.unit
class TestNotificationDispatch:
    @pytest.mark.asyncio
    async def test_delivers_in_background(self, notifier):
        dispatch = NotificationDispatch(notifier)
        dispatch.notify("acct_r", NotificationKind.RIDE_ACCEPTED, "ride_1", 1, driver_id="acct_d")
        await dispatch.drain()

        notification = notifier.send.await_args.args[0]
        assert notification.account_id == "acct_r"
        assert notification.payload == {"driver_id": "acct_d"}

    @pytest.mark.asyncio
    async def test_same_version_delivered_once(self, notifier):
        dispatch = NotificationDispatch(notifier)
        for _ in range(3):
            dispatch.notify("acct_r", NotificationKind.DRIVER_ARRIVED, "ride_1", 2)
        dispatch.notify("acct_r", NotificationKind.DRIVER_ARRIVED, "ride_1", 3)
        await dispatch.drain()

        assert notifier.send.await_count == 2

    @pytest.mark.asyncio
    async def test_caller_does_not_wait_for_delivery(self):
        release = asyncio.Event()

        class SlowNotifier:
            async def send(self, notification):
                await release.wait()

        dispatch = NotificationDispatch(SlowNotifier())
        dispatch.notify("acct_r", NotificationKind.TRIP_STARTED, "ride_1", 3)
        release.set()
        await asyncio.wait_for(dispatch.drain(), 1)

    @pytest.mark.asyncio
    async def test_failed_delivery_is_contained(self, notifier, caplog):
        notifier.send.side_effect = ConnectionError("push provider down")
        dispatch = NotificationDispatch(notifier)

        dispatch.notify("acct_r", NotificationKind.TRIP_COMPLETED, "ride_1", 5)
        await dispatch.drain()
        await asyncio.sleep(0)

        assert "Background task" in caplog.text

    @pytest.mark.asyncio
    async def test_sos_goes_to_operations(self, notifier):
        dispatch = NotificationDispatch(notifier)
        dispatch.raise_sos("ride_1", 4, "acct_r", Coordinates(lat=27.49, lng=77.67))
        await dispatch.drain()

        notification = notifier.send.await_args.args[0]
        assert notification.account_id == OPERATIONS_ACCOUNT
        assert notification.kind == NotificationKind.SOS
        assert notification.payload["location"] == {"lat": 27.49, "lng": 77.67}


@pytest.mark.unit
class TestNotificationDeduplicator:
    @pytest.mark.asyncio
    async def test_second_sighting_is_duplicate(self):
        dedup = NotificationDeduplicator()
        assert await dedup.is_duplicate("k") is False
        assert await dedup.is_duplicate("k") is True

    @pytest.mark.asyncio
    async def test_expired_key_is_fresh_again(self):
        dedup = NotificationDeduplicator(ttl=timedelta(seconds=0))
        await dedup.is_duplicate("k")
        assert await dedup.is_duplicate("k") is False

    @pytest.mark.asyncio
    async def test_bounded_size(self):
        dedup = NotificationDeduplicator(max_entries=10)
        for i in range(25):
            await dedup.is_duplicate(f"k{i}")
        assert len(dedup._seen) <= 10


@pytest.mark.unit
class TestRedisNotificationDeduplicator:
    @pytest.mark.asyncio
    async def test_uses_set_nx_with_ttl(self):
        client = Mock()
        client.set = AsyncMock(side_effect=[True, None])
        dedup = RedisNotificationDeduplicator(client, ttl=timedelta(minutes=2))

        assert await dedup.is_duplicate("ride_1:acct_r:SOS:4") is False
        assert await dedup.is_duplicate("ride_1:acct_r:SOS:4") is True
        client.set.assert_awaited_with(
            "notification:sent:ride_1:acct_r:SOS:4", "1", nx=True, ex=120
        )


@pytest.mark.unit
class TestLoggingNotifier:
    @pytest.mark.asyncio
    async def test_sos_logged_as_warning(self, caplog):
        notification = Notification(
            account_id=OPERATIONS_ACCOUNT, kind=NotificationKind.SOS, ride_id="ride_1", version=1
        )
        with caplog.at_level("INFO"):
            await LoggingNotifier().send(notification)
        assert caplog.records[-1].levelname == "WARNING"
        assert notification.dedup_key == "ride_1:operations:SOS:1"
