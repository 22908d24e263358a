"""Change feeds: post-commit ride change notifications.

Delivery is at-least-once and carries no payload beyond what a watcher needs
to decide whether to re-query the store. A subscriber that falls behind or
loses its connection gets an UnavailableError and is expected to resubscribe
and reconcile from a fresh query.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Any, Protocol

import redis.asyncio as redis
from opentelemetry import trace
from pydantic import ValidationError as PydanticValidationError

from ..core.correlation import get_current_correlation_id
from ..core.exceptions import UnavailableError
from ..metrics.prometheus_exporter import record_feed_error
from .channels import ALL_CHANNELS, CHANNEL_RIDE_UPDATES, RideChange

logger = logging.getLogger(__name__)

_tracer = trace.get_tracer(__name__)


class ChangeFeed(Protocol):
    async def publish(self, change: RideChange) -> None: ...

    def subscribe(self) -> AbstractAsyncContextManager[AsyncIterator[RideChange]]: ...

    async def close(self) -> None: ...


class _LocalSubscription:
    """Queue-backed subscription for the in-process feed."""

    _CLOSED = object()

    def __init__(self, max_pending: int):
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=max_pending)
        self._overflowed = False

    def offer(self, change: RideChange) -> None:
        if self._overflowed:
            return
        try:
            self._queue.put_nowait(change)
        except asyncio.QueueFull:
            self._overflowed = True

    def close(self) -> None:
        self._drain()
        self._queue.put_nowait(self._CLOSED)

    def _drain(self) -> None:
        while not self._queue.empty():
            self._queue.get_nowait()

    def __aiter__(self) -> "_LocalSubscription":
        return self

    async def __anext__(self) -> RideChange:
        if self._overflowed:
            raise UnavailableError("Change subscriber fell behind")
        item = await self._queue.get()
        if item is self._CLOSED:
            raise StopAsyncIteration
        if self._overflowed:
            raise UnavailableError("Change subscriber fell behind")
        return item


class LocalChangeFeed:
    """In-process fan-out for single-node deployments and tests."""

    def __init__(self, max_pending: int = 1000):
        self._max_pending = max_pending
        self._subscriptions: set[_LocalSubscription] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    async def publish(self, change: RideChange) -> None:
        for subscription in list(self._subscriptions):
            subscription.offer(change)

    @asynccontextmanager
    async def subscribe(self) -> AsyncIterator[AsyncIterator[RideChange]]:
        subscription = _LocalSubscription(self._max_pending)
        self._subscriptions.add(subscription)
        try:
            yield subscription
        finally:
            self._subscriptions.discard(subscription)

    async def close(self) -> None:
        for subscription in list(self._subscriptions):
            subscription.close()
        self._subscriptions.clear()


class RedisChangeFeed:
    """Redis pub/sub change feed shared by every API node."""

    def __init__(self, client: "redis.Redis", channel: str = CHANNEL_RIDE_UPDATES):
        if channel not in ALL_CHANNELS:
            raise ValueError(
                f"Channel '{channel}' is not a valid channel. Valid channels: {ALL_CHANNELS}"
            )
        self._client = client
        self._channel = channel

    async def publish(self, change: RideChange) -> None:
        """Publish after commit. A failed publish is logged, not raised.

        The write it describes is already durable; watchers recover the
        missed change when they reconcile on reconnect.
        """
        with _tracer.start_as_current_span("redis.publish") as span:
            span.set_attribute("db.system", "redis")
            span.set_attribute("db.redis.channel", self._channel)

            correlation_id = get_current_correlation_id()
            if correlation_id:
                span.set_attribute("correlation_id", correlation_id)

            try:
                await self._client.publish(self._channel, change.model_dump_json())
            except (redis.ConnectionError, redis.TimeoutError) as e:
                span.record_exception(e)
                record_feed_error("publish")
                logger.error(f"Failed to publish change for ride {change.ride_id}: {e}")

    @asynccontextmanager
    async def subscribe(self) -> AsyncIterator[AsyncIterator[RideChange]]:
        pubsub = self._client.pubsub(ignore_subscribe_messages=True)
        try:
            await pubsub.subscribe(self._channel)
        except (redis.ConnectionError, redis.TimeoutError) as e:
            await pubsub.aclose()
            record_feed_error("subscribe")
            raise UnavailableError(f"Cannot subscribe to {self._channel}: {e}") from e

        logger.debug(f"Subscribed to Redis channel: {self._channel}")
        try:
            yield self._listen(pubsub)
        finally:
            await pubsub.aclose()

    async def _listen(self, pubsub: Any) -> AsyncIterator[RideChange]:
        try:
            async for message in pubsub.listen():
                if message["type"] != "message":
                    continue
                try:
                    yield RideChange.model_validate_json(message["data"])
                except PydanticValidationError:
                    logger.warning(f"Invalid change message from Redis: {message['data']}")
        except (redis.ConnectionError, redis.TimeoutError) as e:
            record_feed_error("listen")
            raise UnavailableError(f"Redis disconnected: {e}") from e

    async def close(self) -> None:
        await self._client.aclose()
