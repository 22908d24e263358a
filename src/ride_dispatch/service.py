"""Wires the dispatch components together from settings."""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from sqlalchemy.orm import sessionmaker

from .accounts import AccountService
from .core.retry import RetryConfig
from .dispatch import (
    AcceptanceArbiter,
    DispatchBroadcaster,
    RequestExpiryLoop,
    RideStateMachine,
)
from .fares import FareCalculator, FareNegotiationEngine, SurgeCalculator
from .fares.negotiation import RoutingClient
from .matching.driver_geospatial_index import DriverGeospatialIndex
from .notifications import (
    LoggingNotifier,
    NotificationDeduplicator,
    NotificationDispatch,
)
from .notifications.dispatch import Deduplicator, Notifier
from .pubsub import ChangeFeed
from .settings import Settings
from .settlement import SettlementEngine
from .store import RideStore

logger = logging.getLogger(__name__)


@dataclass
class DispatchCore:
    store: RideStore
    notifications: NotificationDispatch
    fares: FareNegotiationEngine
    arbiter: AcceptanceArbiter
    settlement: SettlementEngine
    state_machine: RideStateMachine
    broadcaster: DispatchBroadcaster
    accounts: AccountService
    driver_index: DriverGeospatialIndex
    expiry_loop: RequestExpiryLoop

    async def close(self) -> None:
        await self.notifications.drain()
        await self.store.feed.close()


def build_core(
    settings: Settings,
    session_factory: sessionmaker[Any],
    feed: ChangeFeed,
    routing: RoutingClient,
    notifier: Notifier | None = None,
    deduplicator: Deduplicator | None = None,
) -> DispatchCore:
    """Build every component over one store, feed and routing client."""
    store = RideStore(
        session_factory, feed, operation_timeout=settings.store.operation_timeout_seconds
    )
    notifications = NotificationDispatch(
        notifier or LoggingNotifier(),
        deduplicator
        or NotificationDeduplicator(ttl=timedelta(seconds=settings.notifications.dedup_ttl_seconds)),
    )

    fares = FareNegotiationEngine(
        store,
        routing,
        calculator=FareCalculator(settings.fares.category_rates),
        surge=SurgeCalculator(),
        fallback_fares=settings.fares.fallback_fares,
        notifications=notifications,
        routing_timeout=settings.routing.timeout_seconds,
        retry_config=RetryConfig(
            max_attempts=settings.routing.max_retries,
            base_delay=settings.routing.retry_base_delay,
        ),
        max_bid_amount=settings.fares.max_bid_amount,
    )
    settlement = SettlementEngine(store, notifications)
    state_machine = RideStateMachine(
        store,
        settlement,
        notifications,
        capture_payment_methods=settings.fares.capture_payment_methods,
        search_timeout_seconds=settings.matching.search_timeout_seconds,
    )
    broadcaster = DispatchBroadcaster(
        store,
        reconnect=RetryConfig(
            base_delay=settings.matching.reconnect_base_delay,
            max_delay=settings.matching.reconnect_max_delay,
        ),
        default_radius_km=settings.matching.pending_radius_km,
    )
    driver_index = DriverGeospatialIndex(h3_resolution=settings.matching.h3_resolution)

    core = DispatchCore(
        store=store,
        notifications=notifications,
        fares=fares,
        arbiter=AcceptanceArbiter(store, notifications),
        settlement=settlement,
        state_machine=state_machine,
        broadcaster=broadcaster,
        accounts=AccountService(
            store, driver_index, nearby_radius_km=settings.matching.nearby_radius_km
        ),
        driver_index=driver_index,
        expiry_loop=RequestExpiryLoop(
            state_machine, interval_seconds=settings.matching.expiry_interval_seconds
        ),
    )
    logger.info("Dispatch core initialized")
    return core
