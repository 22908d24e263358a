"""Ride request lifecycle models.

A ride request is a tagged union keyed on ``status``: every status has its own
model carrying exactly the fields that are valid in that state. Transitions
build the next variant instead of mutating fields in place.
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel

from .core.exceptions import GuardViolationError


class RideStatus(str, Enum):
    """Ride request lifecycle states."""

    SEARCHING = "SEARCHING"
    ACCEPTED = "ACCEPTED"
    ARRIVED = "ARRIVED"
    STARTED = "STARTED"
    PAYMENT_PENDING = "PAYMENT_PENDING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class VehicleCategory(str, Enum):
    BIKE = "BIKE"
    AUTO = "AUTO"
    MINI = "MINI"
    PRIME = "PRIME"
    PINK = "PINK"  # women riders, women drivers


class PaymentMethod(str, Enum):
    UPI = "UPI"
    CARD = "CARD"
    CASH = "CASH"
    WALLET = "WALLET"


class CancelledBy(str, Enum):
    RIDER = "RIDER"
    DRIVER = "DRIVER"
    SYSTEM = "SYSTEM"


VALID_TRANSITIONS: dict[RideStatus, set[RideStatus]] = {
    RideStatus.SEARCHING: {RideStatus.ACCEPTED, RideStatus.CANCELLED},
    RideStatus.ACCEPTED: {RideStatus.ARRIVED, RideStatus.CANCELLED},
    RideStatus.ARRIVED: {RideStatus.STARTED, RideStatus.CANCELLED},
    RideStatus.STARTED: {RideStatus.PAYMENT_PENDING, RideStatus.COMPLETED},
    RideStatus.PAYMENT_PENDING: {RideStatus.COMPLETED},
    RideStatus.COMPLETED: set(),
    RideStatus.CANCELLED: set(),
}

ACTIVE_STATUSES = frozenset(
    {RideStatus.ACCEPTED, RideStatus.ARRIVED, RideStatus.STARTED, RideStatus.PAYMENT_PENDING}
)
TERMINAL_STATUSES = frozenset({RideStatus.COMPLETED, RideStatus.CANCELLED})
CANCELLABLE_STATUSES = frozenset({RideStatus.SEARCHING, RideStatus.ACCEPTED, RideStatus.ARRIVED})


def ensure_transition(current: RideStatus, target: RideStatus) -> None:
    """Raise GuardViolationError unless current -> target is a legal edge."""
    if current in TERMINAL_STATUSES:
        raise GuardViolationError(
            f"Cannot transition from terminal state {current.value}",
            details={"from": current.value, "to": target.value},
        )
    if target not in VALID_TRANSITIONS[current]:
        raise GuardViolationError(
            f"Invalid transition from {current.value} to {target.value}",
            details={"from": current.value, "to": target.value},
        )


class WireModel(BaseModel):
    """Base for models exchanged with rider and driver clients (camelCase on the wire)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Coordinates(WireModel):
    lat: float = Field(ge=-90.0, le=90.0)
    lng: float = Field(ge=-180.0, le=180.0)

    def as_tuple(self) -> tuple[float, float]:
        return (self.lat, self.lng)

    def normalized(self) -> "Coordinates":
        """Round to 6 decimal places (roughly 10 cm)."""
        return Coordinates(lat=round(self.lat, 6), lng=round(self.lng, 6))


class RidePreferences(WireModel):
    silent: bool = False
    ac: bool = True
    music: bool = False


class TripDraft(WireModel):
    """Rider-entered trip details for a bid, before a fare is attached."""

    pickup_location: Coordinates
    drop_location: Coordinates
    pickup_address: str = ""
    drop_address: str = ""
    payment_method: PaymentMethod = PaymentMethod.CASH
    preferences: RidePreferences = Field(default_factory=RidePreferences)


class _RideBase(WireModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True, extra="forbid"
    )

    id: str
    rider_id: str
    target_driver_id: str | None = None
    pickup_location: Coordinates
    drop_location: Coordinates
    pickup_address: str = ""
    drop_address: str = ""
    vehicle_type: VehicleCategory
    estimated_fare: int = Field(gt=0)
    otp: str = Field(pattern=r"^\d{6}$")
    payment_method: PaymentMethod = PaymentMethod.CASH
    preferences: RidePreferences = Field(default_factory=RidePreferences)
    declined_drivers: list[str] = Field(default_factory=list)
    location_sequence: int = 0
    version: int = 0
    created_at: datetime

    def _carry(self) -> dict:
        return self.model_dump(exclude={"status"})

    def involves(self, account_id: str) -> bool:
        return account_id in (self.rider_id, getattr(self, "driver_id", None))

    def public_view(self) -> dict:
        """Serialized form without the trip code, safe to show drivers."""
        return self.model_dump(mode="json", by_alias=True, exclude={"otp"})


class _Cancellable:
    def cancel(
        self, by: CancelledBy, reason: str, at: datetime
    ) -> "CancelledRide":
        """Cancel the ride with metadata."""
        return CancelledRide(
            **self._carry(),  # type: ignore[attr-defined]
            cancelled_by=by,
            cancellation_reason=reason,
            cancelled_at=at,
        )


class SearchingRide(_Cancellable, _RideBase):
    status: Literal[RideStatus.SEARCHING] = RideStatus.SEARCHING

    def accept(self, driver_id: str, at: datetime) -> "AcceptedRide":
        return AcceptedRide(**self._carry(), driver_id=driver_id, accepted_at=at)

    def is_visible_to(self, driver_id: str) -> bool:
        """Whether the request belongs in this driver's pending view."""
        if driver_id in self.declined_drivers or driver_id == self.rider_id:
            return False
        return self.target_driver_id is None or self.target_driver_id == driver_id


class AcceptedRide(_Cancellable, _RideBase):
    status: Literal[RideStatus.ACCEPTED] = RideStatus.ACCEPTED
    driver_id: str
    accepted_at: datetime

    def arrive(self, at: datetime) -> "ArrivedRide":
        return ArrivedRide(**self._carry(), arrived_at=at)


class ArrivedRide(_Cancellable, _RideBase):
    status: Literal[RideStatus.ARRIVED] = RideStatus.ARRIVED
    driver_id: str
    accepted_at: datetime
    arrived_at: datetime

    def start(self, code: str, at: datetime) -> "StartedRide":
        """Begin the trip once the rider's one-time code checks out."""
        if code != self.otp:
            raise GuardViolationError(
                "Trip code does not match", details={"ride_id": self.id}
            )
        return StartedRide(**self._carry(), started_at=at)


class StartedRide(_RideBase):
    status: Literal[RideStatus.STARTED] = RideStatus.STARTED
    driver_id: str
    accepted_at: datetime
    arrived_at: datetime
    started_at: datetime

    def hold_for_payment(self, at: datetime) -> "PaymentPendingRide":
        return PaymentPendingRide(**self._carry(), ended_at=at)

    def complete(self, at: datetime, payment_reference: str | None = None) -> "CompletedRide":
        return CompletedRide(
            **self._carry(), ended_at=at, completed_at=at, payment_reference=payment_reference
        )


class PaymentPendingRide(_RideBase):
    status: Literal[RideStatus.PAYMENT_PENDING] = RideStatus.PAYMENT_PENDING
    driver_id: str
    accepted_at: datetime
    arrived_at: datetime
    started_at: datetime
    ended_at: datetime

    def complete(self, at: datetime, payment_reference: str | None = None) -> "CompletedRide":
        return CompletedRide(**self._carry(), completed_at=at, payment_reference=payment_reference)


class CompletedRide(_RideBase):
    status: Literal[RideStatus.COMPLETED] = RideStatus.COMPLETED
    driver_id: str
    accepted_at: datetime
    arrived_at: datetime
    started_at: datetime
    ended_at: datetime
    completed_at: datetime
    payment_reference: str | None = None
    rider_rating: int | None = Field(default=None, ge=1, le=5)
    rider_comment: str | None = None
    rating_submitted_at: datetime | None = None

    @property
    def is_rated(self) -> bool:
        return self.rider_rating is not None

    def rate(self, rating: int, comment: str | None, at: datetime) -> "CompletedRide":
        return CompletedRide(
            **self.model_dump(
                exclude={"status", "rider_rating", "rider_comment", "rating_submitted_at"}
            ),
            rider_rating=rating,
            rider_comment=comment,
            rating_submitted_at=at,
        )


class CancelledRide(_RideBase):
    status: Literal[RideStatus.CANCELLED] = RideStatus.CANCELLED
    driver_id: str | None = None
    accepted_at: datetime | None = None
    arrived_at: datetime | None = None
    cancelled_by: CancelledBy
    cancellation_reason: str
    cancelled_at: datetime


RideRequest = Annotated[
    SearchingRide
    | AcceptedRide
    | ArrivedRide
    | StartedRide
    | PaymentPendingRide
    | CompletedRide
    | CancelledRide,
    Field(discriminator="status"),
]

RIDE_VARIANTS: dict[RideStatus, type[_RideBase]] = {
    RideStatus.SEARCHING: SearchingRide,
    RideStatus.ACCEPTED: AcceptedRide,
    RideStatus.ARRIVED: ArrivedRide,
    RideStatus.STARTED: StartedRide,
    RideStatus.PAYMENT_PENDING: PaymentPendingRide,
    RideStatus.COMPLETED: CompletedRide,
    RideStatus.CANCELLED: CancelledRide,
}

ride_adapter: TypeAdapter[RideRequest] = TypeAdapter(RideRequest)
