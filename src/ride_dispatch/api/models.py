"""Request and response bodies for the HTTP surface."""

from typing import Any, Literal

from pydantic import Field

from ..dispatch import AcceptOutcome
from ..fares import FareEstimate
from ..ride import (
    Coordinates,
    RideRequest,
    RideStatus,
    TripDraft,
    VehicleCategory,
    WireModel,
)


def ride_view(ride: RideRequest, viewer_id: str) -> dict[str, Any]:
    """Only the rider sees the trip code; everyone else gets the public view."""
    if ride.rider_id == viewer_id:
        return ride.model_dump(mode="json", by_alias=True)
    return ride.public_view()


class FareEstimateRequest(WireModel):
    pickup: Coordinates
    drop: Coordinates


class FareEstimateResponse(WireModel):
    estimates: list[FareEstimate]


class BidRequest(TripDraft):
    amount: int
    vehicle_type: VehicleCategory
    target_driver_id: str | None = None


class AcceptResponse(WireModel):
    ride_id: str
    outcome: AcceptOutcome


class StartTripRequest(WireModel):
    code: str = Field(min_length=1, max_length=6)


class CancelRequest(WireModel):
    reason: str | None = Field(default=None, max_length=500)
    expected_status: RideStatus | None = None


class DeclineRequest(WireModel):
    reason: str | None = Field(default=None, max_length=500)


class PickupUpdateRequest(WireModel):
    location: Coordinates
    address: str | None = None
    sequence: int = Field(ge=0)


class PickupUpdateResponse(WireModel):
    applied: bool
    ride: dict[str, Any]


class SosRequest(WireModel):
    location: Coordinates


class PaymentConfirmation(WireModel):
    payment_reference: str = Field(min_length=1, max_length=128)


class RatingRequest(WireModel):
    rating: int
    comment: str | None = Field(default=None, max_length=1000)


class AvailabilityRequest(WireModel):
    online: bool
    location: Coordinates | None = None


class LocationUpdateRequest(WireModel):
    location: Coordinates
    sequence: int = Field(ge=0)


class LocationUpdateResponse(WireModel):
    applied: bool


class ApprovalRequest(WireModel):
    approved: bool
    kyc_completed: bool | None = None
    reason: str | None = Field(default=None, max_length=500)


class ExpiryResponse(WireModel):
    expired: list[str]


class HealthResponse(WireModel):
    status: Literal["healthy", "degraded", "unhealthy"]
    store: Literal["healthy", "unhealthy"]
    change_feed: str
    message: str | None = None
