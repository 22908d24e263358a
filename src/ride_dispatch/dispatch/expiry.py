import asyncio
import contextlib
import logging

from ..core.exceptions import UnavailableError
from .state_machine import RideStateMachine

logger = logging.getLogger(__name__)


class RequestExpiryLoop:
    """Periodically cancels SEARCHING requests that nobody accepted."""

    def __init__(self, state_machine: RideStateMachine, interval_seconds: float = 30.0) -> None:
        self._state_machine = state_machine
        self._interval = interval_seconds
        self._task: asyncio.Task[None] | None = None

    async def start(self) -> None:
        self._task = asyncio.create_task(self._expiry_loop())

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task

    async def _expiry_loop(self) -> None:
        while True:
            try:
                await asyncio.sleep(self._interval)
                await self._state_machine.expire_stale_requests()
            except asyncio.CancelledError:
                break
            except UnavailableError as e:
                logger.warning(f"Skipping expiry sweep, store unavailable: {e}")
            except Exception:
                logger.exception("Error in request expiry loop")
