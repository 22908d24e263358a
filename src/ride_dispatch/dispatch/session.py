"""Caller-owned container for watch subscriptions."""

import asyncio
import logging
from collections.abc import AsyncGenerator, AsyncIterator, Awaitable, Callable
from typing import Any

from ..ride import RideRequest, SearchingRide
from .broadcaster import DispatchBroadcaster, PendingFilter

logger = logging.getLogger(__name__)


class DispatchSession:
    """Owns every stream it opens and tears them all down on close.

    One session per client connection (a driver's app, a websocket). Use it
    as an async context manager:

        async with DispatchSession(broadcaster) as session:
            async for rides in session.pending(PendingFilter(...)):
                ...
    """

    def __init__(self, broadcaster: DispatchBroadcaster):
        self._broadcaster = broadcaster
        self._streams: list[AsyncGenerator[Any, None]] = []
        self._tasks: set[asyncio.Task[None]] = set()
        self._closed = False

    async def __aenter__(self) -> "DispatchSession":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    def pending(self, flt: PendingFilter) -> AsyncIterator[list[SearchingRide]]:
        return self._open(self._broadcaster.watch_pending(flt))

    def active(self, account_id: str) -> AsyncIterator[RideRequest | None]:
        return self._open(self._broadcaster.watch_active(account_id))

    def on_pending(
        self, flt: PendingFilter, callback: Callable[[list[SearchingRide]], Awaitable[None]]
    ) -> asyncio.Task[None]:
        """Deliver each pending snapshot to ``callback`` from a background task."""
        return self._spawn(self.pending(flt), callback, f"pending-{flt.driver_id}")

    def on_active(
        self, account_id: str, callback: Callable[[RideRequest | None], Awaitable[None]]
    ) -> asyncio.Task[None]:
        return self._spawn(self.active(account_id), callback, f"active-{account_id}")

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        for stream in self._streams:
            await stream.aclose()
        self._streams.clear()

    def _open(self, stream: AsyncGenerator[Any, None]) -> AsyncGenerator[Any, None]:
        if self._closed:
            raise RuntimeError("DispatchSession is closed")
        self._streams.append(stream)
        return stream

    def _spawn(
        self,
        stream: AsyncIterator[Any],
        callback: Callable[[Any], Awaitable[None]],
        name: str,
    ) -> asyncio.Task[None]:
        async def _pump() -> None:
            async for item in stream:
                await callback(item)

        task = asyncio.get_running_loop().create_task(_pump(), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._log_failure)
        return task

    @staticmethod
    def _log_failure(task: asyncio.Task[None]) -> None:
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Watch task {task.get_name()} failed", exc_info=task.exception())
