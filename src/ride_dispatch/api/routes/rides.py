from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query, Request

from ...dispatch import PendingFilter
from ...settlement import RatingResult
from ..auth import verify_api_key
from ..dependencies import (
    AccountIdDep,
    AccountsDep,
    ArbiterDep,
    BroadcasterDep,
    SettlementDep,
    StateMachineDep,
)
from ..models import (
    AcceptResponse,
    CancelRequest,
    DeclineRequest,
    PaymentConfirmation,
    PickupUpdateRequest,
    PickupUpdateResponse,
    RatingRequest,
    SosRequest,
    StartTripRequest,
    ride_view,
)
from ..rate_limit import accept_limit, limiter

router = APIRouter(dependencies=[Depends(verify_api_key)])


@router.get("/pending")
async def list_pending(
    broadcaster: BroadcasterDep,
    accounts: AccountsDep,
    account_id: AccountIdDep,
    radius_km: Annotated[float | None, Query(gt=0)] = None,
) -> list[dict[str, Any]]:
    """SEARCHING requests this driver may take, nearest pickup first."""
    driver = await accounts.get(account_id)
    if not driver.is_available_driver:
        return []
    flt = PendingFilter(
        driver_id=driver.id,
        vehicle_type=driver.vehicle_type,
        gender=driver.gender,
        radius_km=radius_km,
    )
    return [ride.public_view() for ride in await broadcaster.pending_snapshot(flt)]


@router.get("/active")
async def get_active(
    broadcaster: BroadcasterDep, account_id: AccountIdDep
) -> dict[str, Any] | None:
    ride = await broadcaster.active_snapshot(account_id)
    return ride_view(ride, account_id) if ride is not None else None


@router.post("/{ride_id}/accept", response_model=AcceptResponse)
@limiter.limit(accept_limit)
async def accept_ride(
    request: Request, ride_id: str, arbiter: ArbiterDep, account_id: AccountIdDep
) -> AcceptResponse:
    """Race for the request. Losing is a normal 200 with outcome LOST."""
    outcome = await arbiter.accept(ride_id, account_id)
    return AcceptResponse(ride_id=ride_id, outcome=outcome)


@router.post("/{ride_id}/decline")
async def decline_ride(
    ride_id: str,
    state_machine: StateMachineDep,
    account_id: AccountIdDep,
    body: DeclineRequest | None = None,
) -> dict[str, Any]:
    ride = await state_machine.decline(ride_id, account_id, body.reason if body else None)
    return ride_view(ride, account_id)


@router.post("/{ride_id}/arrived")
async def mark_arrived(
    ride_id: str, state_machine: StateMachineDep, account_id: AccountIdDep
) -> dict[str, Any]:
    ride = await state_machine.mark_arrived(ride_id, account_id)
    return ride_view(ride, account_id)


@router.post("/{ride_id}/start")
async def start_trip(
    ride_id: str, body: StartTripRequest, state_machine: StateMachineDep, account_id: AccountIdDep
) -> dict[str, Any]:
    ride = await state_machine.start_trip(ride_id, account_id, body.code)
    return ride_view(ride, account_id)


@router.post("/{ride_id}/complete")
async def complete_trip(
    ride_id: str, state_machine: StateMachineDep, account_id: AccountIdDep
) -> dict[str, Any]:
    ride = await state_machine.complete_trip(ride_id, account_id)
    return ride_view(ride, account_id)


@router.post("/{ride_id}/payment")
async def confirm_payment(
    ride_id: str,
    body: PaymentConfirmation,
    state_machine: StateMachineDep,
    account_id: AccountIdDep,
) -> dict[str, Any]:
    """Settle a ride held for payment. Restricted to the payments operator (ADMIN)."""
    ride = await state_machine.confirm_payment(ride_id, account_id, body.payment_reference)
    return ride_view(ride, account_id)


@router.post("/{ride_id}/cancel")
async def cancel_ride(
    ride_id: str,
    state_machine: StateMachineDep,
    account_id: AccountIdDep,
    body: CancelRequest | None = None,
) -> dict[str, Any]:
    body = body or CancelRequest()
    ride = await state_machine.cancel(
        ride_id, account_id, reason=body.reason, expected_status=body.expected_status
    )
    return ride_view(ride, account_id)


@router.post("/{ride_id}/pickup", response_model=PickupUpdateResponse)
async def update_pickup(
    ride_id: str,
    body: PickupUpdateRequest,
    state_machine: StateMachineDep,
    account_id: AccountIdDep,
) -> PickupUpdateResponse:
    result = await state_machine.update_pickup(
        ride_id, account_id, body.location, body.address, body.sequence
    )
    return PickupUpdateResponse(applied=result.applied, ride=ride_view(result.ride, account_id))


@router.post("/{ride_id}/sos", status_code=202)
async def raise_sos(
    ride_id: str, body: SosRequest, state_machine: StateMachineDep, account_id: AccountIdDep
) -> dict[str, str]:
    await state_machine.raise_sos(ride_id, account_id, body.location)
    return {"status": "raised"}


@router.post("/{ride_id}/rating", response_model=RatingResult)
async def rate_ride(
    ride_id: str, body: RatingRequest, settlement: SettlementDep, account_id: AccountIdDep
) -> RatingResult:
    return await settlement.submit_rating(ride_id, account_id, body.rating, body.comment)
