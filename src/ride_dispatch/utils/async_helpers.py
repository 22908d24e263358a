import asyncio
import logging
from collections.abc import Awaitable, Coroutine
from typing import Any, TypeVar

from ..core.exceptions import UnavailableError

T = TypeVar("T")
logger = logging.getLogger(__name__)


async def with_timeout(awaitable: Awaitable[T], seconds: float, what: str) -> T:
    """Await with an upper bound; running out of time is reported as UnavailableError."""
    try:
        return await asyncio.wait_for(awaitable, timeout=seconds)
    except TimeoutError as e:
        raise UnavailableError(f"{what} timed out after {seconds}s") from e


def spawn_background(
    coro: Coroutine[Any, Any, Any], tasks: set[asyncio.Task[Any]], name: str
) -> asyncio.Task[Any]:
    """Schedule a fire-and-forget coroutine on the running loop.

    The caller-owned ``tasks`` set keeps a strong reference until the task
    finishes; failures are logged since nobody awaits the result.
    """
    task = asyncio.get_running_loop().create_task(coro, name=name)
    tasks.add(task)

    def _done(t: asyncio.Task[Any]) -> None:
        tasks.discard(t)
        if not t.cancelled() and t.exception() is not None:
            logger.error("Background task %s failed", name, exc_info=t.exception())

    task.add_done_callback(_done)
    return task
