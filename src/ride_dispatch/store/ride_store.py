"""Async facade over the SQL ride store."""

import asyncio
import logging
import threading
import time
from collections.abc import Callable
from enum import Enum
from typing import Any, TypeVar

from opentelemetry import trace
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.orm import sessionmaker

from ..core.correlation import get_current_correlation_id, with_correlation
from ..core.exceptions import UnavailableError
from ..db.transaction import pending_ride_changes, transaction
from ..metrics.prometheus_exporter import observe_latency, record_store_error
from ..pubsub.channels import RideChange
from ..pubsub.feed import ChangeFeed
from .unit_of_work import UnitOfWork

T = TypeVar("T")
logger = logging.getLogger(__name__)

_tracer = trace.get_tracer(__name__)


class AttemptState(str, Enum):
    RUNNING = "running"
    COMMITTING = "committing"
    ABANDONED = "abandoned"


class AbandonedOperationError(Exception):
    """Raised inside the worker thread when the caller gave up before commit."""


class CommitFence:
    """Decides, exactly once, whether a worker commits or the caller gives up.

    The worker calls ``enter_commit`` right before COMMIT; the caller calls
    ``abandon`` when its timeout fires. Whichever gets there first wins, so a
    transaction is never committed behind the back of a caller that was told
    the store is unavailable.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._state = AttemptState.RUNNING

    @property
    def state(self) -> AttemptState:
        return self._state

    def enter_commit(self) -> bool:
        with self._lock:
            if self._state == AttemptState.ABANDONED:
                return False
            self._state = AttemptState.COMMITTING
            return True

    def abandon(self) -> bool:
        with self._lock:
            if self._state == AttemptState.COMMITTING:
                return False
            self._state = AttemptState.ABANDONED
            return True


class RideStore:
    """Runs store operations as single transactions off the event loop.

    Each call gets its own session and transaction in a worker thread and is
    bounded by ``operation_timeout``; a timeout or a lost connection surfaces
    as UnavailableError and the transaction is rolled back. A worker that had
    already started committing when the timeout fired is awaited instead, so
    the caller sees the real outcome. Ride changes recorded by the
    repositories are published to the change feed only after commit.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Any],
        feed: ChangeFeed,
        operation_timeout: float = 10.0,
    ):
        self._session_factory = session_factory
        self._feed = feed
        self._timeout = operation_timeout
        self._late_publishes: set[asyncio.Task[None]] = set()

    @property
    def feed(self) -> ChangeFeed:
        return self._feed

    async def run(self, operation: Callable[[UnitOfWork], T], name: str = "operation") -> T:
        """Execute ``operation`` in one transaction and publish its changes."""
        with (
            with_correlation(get_current_correlation_id()) as correlation_id,
            _tracer.start_as_current_span(f"store.{name}") as span,
        ):
            span.set_attribute("db.operation", name)
            span.set_attribute("correlation_id", correlation_id)

            fence = CommitFence()
            worker = asyncio.ensure_future(asyncio.to_thread(self._run_sync, operation, fence))
            start_time = time.perf_counter()
            try:
                result, changes = await asyncio.wait_for(
                    asyncio.shield(worker), timeout=self._timeout
                )
            except TimeoutError as e:
                if fence.abandon():
                    worker.add_done_callback(_log_abandoned)
                    span.record_exception(e)
                    record_store_error("timeout")
                    raise UnavailableError(
                        f"Store operation {name} timed out after {self._timeout}s",
                        details={"operation": name},
                    ) from e
                logger.warning(f"Store operation {name} overran its timeout while committing")
                result, changes = await worker
            except asyncio.CancelledError:
                if not fence.abandon():
                    worker.add_done_callback(self._publish_late)
                else:
                    worker.add_done_callback(_log_abandoned)
                raise
            finally:
                observe_latency("store", (time.perf_counter() - start_time) * 1000, name)

            for change in changes:
                await self._feed.publish(change)
        return result

    def _run_sync(
        self, operation: Callable[[UnitOfWork], T], fence: CommitFence
    ) -> tuple[T, list[RideChange]]:
        try:
            with self._session_factory() as session, transaction(session):
                result = operation(UnitOfWork(session))
                changes = pending_ride_changes(session)
                if not fence.enter_commit():
                    raise AbandonedOperationError("Caller gave up before commit")
            return result, changes
        except (OperationalError, InterfaceError) as e:
            record_store_error("connection")
            logger.error(f"Store unavailable: {e}")
            raise UnavailableError(f"Store unavailable: {e.orig}") from e

    def _publish_late(self, worker: "asyncio.Future[tuple[Any, list[RideChange]]]") -> None:
        """Publish changes of a commit whose caller was cancelled mid-commit."""
        if worker.cancelled() or worker.exception() is not None:
            return
        _, changes = worker.result()

        async def _publish() -> None:
            for change in changes:
                await self._feed.publish(change)

        task = asyncio.get_running_loop().create_task(_publish())
        self._late_publishes.add(task)
        task.add_done_callback(self._late_publishes.discard)


def _log_abandoned(worker: "asyncio.Future[Any]") -> None:
    if worker.cancelled():
        return
    exc = worker.exception()
    if isinstance(exc, AbandonedOperationError):
        logger.info("Timed-out store operation rolled back")
    elif exc is not None:
        logger.warning(f"Timed-out store operation failed: {exc}")
