"""Fire-and-forget notification dispatch for riders, drivers and operations."""

import asyncio
import logging
import time
from datetime import timedelta
from enum import Enum
from typing import Any, Protocol

import redis.asyncio as redis
from pydantic import BaseModel, Field

from ..db.utils import utc_now
from ..metrics.prometheus_exporter import record_notification
from ..ride import Coordinates
from ..utils.async_helpers import spawn_background

logger = logging.getLogger(__name__)

OPERATIONS_ACCOUNT = "operations"


class NotificationKind(str, Enum):
    TARGETED_BID = "TARGETED_BID"
    RIDE_ACCEPTED = "RIDE_ACCEPTED"
    DRIVER_ARRIVED = "DRIVER_ARRIVED"
    TRIP_STARTED = "TRIP_STARTED"
    PAYMENT_PENDING = "PAYMENT_PENDING"
    TRIP_COMPLETED = "TRIP_COMPLETED"
    RIDE_CANCELLED = "RIDE_CANCELLED"
    SOS = "SOS"


class Notification(BaseModel):
    account_id: str
    kind: NotificationKind
    ride_id: str
    version: int
    payload: dict[str, Any] = Field(default_factory=dict)
    timestamp: str = Field(default_factory=lambda: utc_now().isoformat())

    @property
    def dedup_key(self) -> str:
        return f"{self.ride_id}:{self.account_id}:{self.kind.value}:{self.version}"


class Notifier(Protocol):
    async def send(self, notification: Notification) -> None: ...


class LoggingNotifier:
    """Notifier for deployments without a push provider: writes to the log."""

    async def send(self, notification: Notification) -> None:
        level = logging.WARNING if notification.kind == NotificationKind.SOS else logging.INFO
        logger.log(
            level,
            f"Notify {notification.account_id}: {notification.kind.value} "
            f"for ride {notification.ride_id}",
        )


class NotificationDeduplicator:
    """In-process TTL dedup keyed by ride, account, kind and version."""

    def __init__(self, ttl: timedelta = timedelta(minutes=5), max_entries: int = 10_000):
        self._ttl_seconds = ttl.total_seconds()
        self._max_entries = max_entries
        self._seen: dict[str, float] = {}

    async def is_duplicate(self, key: str) -> bool:
        now = time.monotonic()
        expires_at = self._seen.get(key)
        if expires_at is not None and expires_at > now:
            return True
        if len(self._seen) >= self._max_entries:
            self._prune(now)
        self._seen[key] = now + self._ttl_seconds
        return False

    def _prune(self, now: float) -> None:
        self._seen = {k: exp for k, exp in self._seen.items() if exp > now}
        if len(self._seen) >= self._max_entries:
            # Still full of live keys: drop the oldest half
            ordered = sorted(self._seen.items(), key=lambda item: item[1])
            self._seen = dict(ordered[len(ordered) // 2 :])


class RedisNotificationDeduplicator:
    """Shared dedup across API nodes using Redis SET NX with TTL."""

    def __init__(
        self,
        redis_client: "redis.Redis",
        ttl: timedelta = timedelta(minutes=5),
        key_prefix: str = "notification:sent:",
    ):
        self._redis = redis_client
        self._ttl_seconds = int(ttl.total_seconds())
        self._key_prefix = key_prefix

    async def is_duplicate(self, key: str) -> bool:
        was_set = await self._redis.set(
            f"{self._key_prefix}{key}", "1", nx=True, ex=self._ttl_seconds
        )
        return not was_set


class Deduplicator(Protocol):
    async def is_duplicate(self, key: str) -> bool: ...


class NotificationDispatch:
    """Schedules notification delivery without making callers wait for it."""

    def __init__(self, notifier: Notifier, deduplicator: Deduplicator | None = None):
        self._notifier = notifier
        self._dedup = deduplicator or NotificationDeduplicator()
        self._tasks: set[asyncio.Task[Any]] = set()

    def notify(
        self,
        account_id: str,
        kind: NotificationKind,
        ride_id: str,
        version: int,
        **payload: Any,
    ) -> None:
        notification = Notification(
            account_id=account_id, kind=kind, ride_id=ride_id, version=version, payload=payload
        )
        spawn_background(
            self._deliver(notification), self._tasks, name=f"notify-{notification.dedup_key}"
        )

    def raise_sos(self, ride_id: str, version: int, account_id: str, location: Coordinates) -> None:
        logger.warning(f"SOS raised on ride {ride_id} by {account_id}")
        self.notify(
            OPERATIONS_ACCOUNT,
            NotificationKind.SOS,
            ride_id,
            version,
            raised_by=account_id,
            location=location.model_dump(),
        )

    async def drain(self) -> None:
        """Wait for in-flight deliveries (shutdown and tests)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _deliver(self, notification: Notification) -> None:
        if await self._dedup.is_duplicate(notification.dedup_key):
            record_notification(notification.kind.value, deduplicated=True)
            logger.debug(f"Skipping duplicate notification: {notification.dedup_key}")
            return
        record_notification(notification.kind.value, deduplicated=False)
        await self._notifier.send(notification)
