"""Fare estimation and one-shot rider bidding."""

import logging
from collections.abc import Callable
from enum import Enum
from typing import Protocol

from ..account import Gender, Role
from ..core.exceptions import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    UnavailableError,
    ValidationError,
)
from ..core.retry import RetryConfig, with_retry
from ..dispatch_logging import log_ride_context
from ..geo.osrm_client import NoRouteFoundError, RouteResponse
from ..metrics.prometheus_exporter import record_fare_estimate
from ..notifications import NotificationDispatch, NotificationKind
from ..ride import Coordinates, SearchingRide, TripDraft, VehicleCategory, WireModel
from ..settings import DEFAULT_FALLBACK_FARES, FallbackFare
from ..store import RideStore, UnitOfWork
from ..utils.async_helpers import with_timeout
from ..utils.ids import generate_trip_code, new_ride_id
from .calculator import FareCalculator, eta_minutes
from .surge import SurgeCalculator

logger = logging.getLogger(__name__)


class RoutingClient(Protocol):
    async def get_route(
        self, origin: tuple[float, float], destination: tuple[float, float]
    ) -> RouteResponse: ...


class FareSource(str, Enum):
    ROUTED = "ROUTED"
    FALLBACK = "FALLBACK"


class FareEstimate(WireModel):
    category: VehicleCategory
    amount: int
    eta_minutes: int
    surge_multiplier: float = 1.0
    source: FareSource = FareSource.ROUTED


class FareNegotiationEngine:
    """Quotes per-category fares and posts rider bids as SEARCHING requests.

    Bidding is one-shot: a driver takes the posted price or ignores it. To
    change the price the rider cancels and posts again.
    """

    def __init__(
        self,
        store: RideStore,
        routing: RoutingClient,
        calculator: FareCalculator | None = None,
        surge: SurgeCalculator | None = None,
        fallback_fares: dict[VehicleCategory, FallbackFare] | None = None,
        notifications: NotificationDispatch | None = None,
        routing_timeout: float = 3.0,
        retry_config: RetryConfig | None = None,
        max_bid_amount: int = 100_000,
        code_factory: Callable[[], str] = generate_trip_code,
    ):
        self._store = store
        self._routing = routing
        self._calculator = calculator or FareCalculator()
        self._surge = surge or SurgeCalculator()
        self._fallback_fares = fallback_fares or dict(DEFAULT_FALLBACK_FARES)
        self._notifications = notifications
        self._routing_timeout = routing_timeout
        self._retry = retry_config or RetryConfig(max_attempts=2, base_delay=0.2)
        self._max_bid_amount = max_bid_amount
        self._code_factory = code_factory

    async def estimate(
        self, pickup: Coordinates, drop: Coordinates
    ) -> dict[VehicleCategory, FareEstimate]:
        """One route lookup, then a price and ETA for every category.

        Never blocks on an unreachable route service: the configured
        fallback quotes are returned instead.
        """
        try:
            route = await with_retry(
                lambda: with_timeout(
                    self._routing.get_route(pickup.as_tuple(), drop.as_tuple()),
                    self._routing_timeout,
                    "Route lookup",
                ),
                config=self._retry,
                operation_name="route lookup",
            )
        except (UnavailableError, NoRouteFoundError) as e:
            logger.warning(f"Route estimate unavailable, quoting fallback fares: {e}")
            record_fare_estimate(FareSource.FALLBACK.value)
            return self._fallback_estimates()

        multipliers = await self._surge_multipliers()
        eta = eta_minutes(route.duration_seconds)
        estimates = {}
        for category in self._calculator.categories:
            breakdown = self._calculator.calculate(
                category, route.distance_km, route.duration_minutes, multipliers[category]
            )
            estimates[category] = FareEstimate(
                category=category,
                amount=breakdown.total_fare,
                eta_minutes=eta,
                surge_multiplier=breakdown.surge_multiplier,
            )
        record_fare_estimate(FareSource.ROUTED.value)
        return estimates

    async def propose_bid(
        self,
        rider_id: str,
        trip: TripDraft,
        amount: int,
        category: VehicleCategory,
        target_driver_id: str | None = None,
    ) -> SearchingRide:
        """Post the rider's price as a new SEARCHING request with a fresh trip code."""
        self._validate_amount(amount)
        ride_id = new_ride_id()
        code = self._code_factory()

        def _propose(uow: UnitOfWork) -> SearchingRide:
            rider = uow.accounts.require(rider_id)
            if not rider.has_role(Role.RIDER) or not rider.is_active:
                raise PermissionDeniedError(
                    f"Account {rider_id} cannot request rides", details={"account_id": rider_id}
                )
            if category == VehicleCategory.PINK and rider.gender != Gender.FEMALE:
                raise PermissionDeniedError("PINK rides are available to women riders only")

            if target_driver_id is not None:
                self._check_target(uow, rider_id, target_driver_id, category)

            open_ride = uow.rides.find_open_for_rider(rider_id)
            if open_ride is not None:
                raise ConflictError(
                    "Rider already has an open request",
                    details={"ride_id": open_ride.id, "status": open_ride.status.value},
                )

            ride = SearchingRide(
                id=ride_id,
                rider_id=rider_id,
                target_driver_id=target_driver_id,
                pickup_location=trip.pickup_location.normalized(),
                drop_location=trip.drop_location.normalized(),
                pickup_address=trip.pickup_address,
                drop_address=trip.drop_address,
                vehicle_type=category,
                estimated_fare=amount,
                otp=code,
                payment_method=trip.payment_method,
                preferences=trip.preferences,
                created_at=uow.now,
            )
            uow.rides.create(ride)
            return ride

        ride = await self._store.run(_propose, "propose_bid")
        with log_ride_context(ride.id, rider_id=rider_id):
            logger.info(f"Bid posted: {category.value} at {amount}")

        if target_driver_id is not None and self._notifications is not None:
            self._notifications.notify(
                target_driver_id,
                NotificationKind.TARGETED_BID,
                ride.id,
                ride.version,
                amount=amount,
                vehicle_type=category.value,
            )
        return ride

    def _validate_amount(self, amount: int) -> None:
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise ValidationError("Bid amount must be a whole number of rupees")
        if amount <= 0:
            raise ValidationError("Bid amount must be positive", details={"amount": amount})
        if amount > self._max_bid_amount:
            raise ValidationError(
                f"Bid amount exceeds the maximum of {self._max_bid_amount}",
                details={"amount": amount},
            )

    def _check_target(
        self,
        uow: UnitOfWork,
        rider_id: str,
        target_driver_id: str,
        category: VehicleCategory,
    ) -> None:
        if target_driver_id == rider_id:
            raise ValidationError("A rider cannot target their own driver account")
        driver = uow.accounts.get(target_driver_id)
        if driver is None:
            raise NotFoundError(
                f"Driver {target_driver_id} not found", details={"account_id": target_driver_id}
            )
        if not (driver.is_available_driver and driver.serves(category)):
            raise ValidationError(
                f"Driver {target_driver_id} cannot take a {category.value} request now",
                details={"account_id": target_driver_id},
            )

    async def _surge_multipliers(self) -> dict[VehicleCategory, float]:
        def _counts(
            uow: UnitOfWork,
        ) -> tuple[dict[VehicleCategory, int], dict[VehicleCategory, int]]:
            return uow.rides.count_searching_by_category(), uow.accounts.count_online_by_category()

        try:
            pending, available = await self._store.run(_counts, "surge_counts")
        except UnavailableError as e:
            logger.warning(f"Demand counts unavailable, pricing without surge: {e}")
            return {category: 1.0 for category in VehicleCategory}
        return self._surge.multipliers(pending, available)

    def _fallback_estimates(self) -> dict[VehicleCategory, FareEstimate]:
        return {
            category: FareEstimate(
                category=category,
                amount=fallback.amount,
                eta_minutes=fallback.eta_minutes,
                source=FareSource.FALLBACK,
            )
            for category, fallback in self._fallback_fares.items()
        }
