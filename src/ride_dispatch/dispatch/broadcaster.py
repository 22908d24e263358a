"""Live views of pending and active ride requests.

Every item a watcher yields is a fresh query against the store, so a
duplicate or late change notification can at worst cause a redundant,
identical snapshot (which is suppressed). After the change feed drops, the
watcher backs off, resubscribes and reconciles with a full re-query.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import TypeVar

from pydantic import BaseModel, Field

from ..account import Gender
from ..core.exceptions import UnavailableError
from ..core.retry import RetryConfig, backoff_delays
from ..geo.distance import haversine_distance_km
from ..metrics.prometheus_exporter import dispatch_watchers_active
from ..pubsub.channels import RideChange
from ..ride import Coordinates, RideRequest, RideStatus, SearchingRide, VehicleCategory
from ..store import RideStore, UnitOfWork

T = TypeVar("T")
logger = logging.getLogger(__name__)


class PendingFilter(BaseModel):
    """Which SEARCHING requests a driver should see, and in what order."""

    driver_id: str
    vehicle_type: VehicleCategory
    gender: Gender | None = None
    location: Coordinates | None = Field(
        default=None, description="Order by pickup distance from here; defaults to last fix"
    )
    radius_km: float | None = Field(default=None, gt=0)


class DispatchBroadcaster:
    """Read-only: never writes to the store."""

    def __init__(
        self,
        store: RideStore,
        reconnect: RetryConfig | None = None,
        default_radius_km: float | None = None,
    ):
        self._store = store
        self._default_radius_km = default_radius_km
        self._reconnect = reconnect or RetryConfig(base_delay=0.5, max_delay=30.0)

    async def pending_snapshot(self, flt: PendingFilter) -> list[SearchingRide]:
        """Current SEARCHING requests for the filter, nearest pickup first."""
        if flt.vehicle_type == VehicleCategory.PINK and flt.gender != Gender.FEMALE:
            return []

        def _query(uow: UnitOfWork) -> tuple[list[SearchingRide], Coordinates | None]:
            rides = uow.rides.list_searching(flt.vehicle_type)
            origin = flt.location
            if origin is None:
                driver = uow.accounts.get(flt.driver_id)
                origin = driver.current_location if driver else None
            return rides, origin

        rides, origin = await self._store.run(_query, "pending_snapshot")
        visible = [r for r in rides if r.is_visible_to(flt.driver_id)]
        if origin is None:
            return visible

        with_distance = [
            (self._pickup_distance_km(origin, r), r) for r in visible
        ]
        radius_km = flt.radius_km or self._default_radius_km
        if radius_km is not None:
            with_distance = [(d, r) for d, r in with_distance if d <= radius_km]
        # Stable sort keeps oldest-first among equal distances
        with_distance.sort(key=lambda pair: pair[0])
        return [r for _, r in with_distance]

    async def active_snapshot(self, account_id: str) -> RideRequest | None:
        return await self._store.run(
            lambda uow: uow.rides.find_active_for(account_id), "active_snapshot"
        )

    def watch_pending(self, flt: PendingFilter) -> AsyncIterator[list[SearchingRide]]:
        def relevant(change: RideChange) -> bool:
            return change.vehicle_type == flt.vehicle_type and (
                change.status == RideStatus.SEARCHING
                or change.previous_status == RideStatus.SEARCHING
            )

        return self._watch("pending", lambda: self.pending_snapshot(flt), relevant)

    def watch_active(self, account_id: str) -> AsyncIterator[RideRequest | None]:
        return self._watch(
            "active",
            lambda: self.active_snapshot(account_id),
            lambda change: change.concerns(account_id),
        )

    async def _watch(
        self,
        kind: str,
        snapshot: Callable[[], Awaitable[T]],
        relevant: Callable[[RideChange], bool],
    ) -> AsyncIterator[T]:
        delays = backoff_delays(self._reconnect)
        dispatch_watchers_active.labels(kind=kind).inc()
        try:
            while True:
                try:
                    async with self._store.feed.subscribe() as changes:
                        # Subscribe before querying so no change slips between the two
                        last = await snapshot()
                        delays = backoff_delays(self._reconnect)
                        yield last
                        async for change in changes:
                            if not relevant(change):
                                continue
                            current = await snapshot()
                            if current != last:
                                last = current
                                yield current
                    logger.debug(f"{kind} watch ended: change feed closed")
                    return
                except UnavailableError as e:
                    delay = next(delays)
                    logger.warning(f"{kind} watch lost its feed, reconnecting in {delay:.1f}s: {e}")
                    await asyncio.sleep(delay)
        finally:
            dispatch_watchers_active.labels(kind=kind).dec()

    @staticmethod
    def _pickup_distance_km(origin: Coordinates, ride: SearchingRide) -> float:
        return haversine_distance_km(
            origin.lat, origin.lng, ride.pickup_location.lat, ride.pickup_location.lng
        )
