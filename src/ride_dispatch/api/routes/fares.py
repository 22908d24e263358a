from typing import Any

from fastapi import APIRouter, Depends, Request

from ..auth import verify_api_key
from ..dependencies import AccountIdDep, FaresDep
from ..models import BidRequest, FareEstimateRequest, FareEstimateResponse, ride_view
from ..rate_limit import create_ride_limit, limiter

router = APIRouter(dependencies=[Depends(verify_api_key)])


@router.post("/estimate", response_model=FareEstimateResponse)
async def estimate_fares(body: FareEstimateRequest, fares: FaresDep) -> FareEstimateResponse:
    """Quote every vehicle category for a pickup/drop pair."""
    estimates = await fares.estimate(body.pickup, body.drop)
    return FareEstimateResponse(estimates=list(estimates.values()))


@router.post("/bids", status_code=201)
@limiter.limit(create_ride_limit)
async def propose_bid(
    request: Request, body: BidRequest, fares: FaresDep, account_id: AccountIdDep
) -> dict[str, Any]:
    """Post the rider's offered fare as a new ride request.

    The response is the only place the rider receives the trip code.
    """
    ride = await fares.propose_bid(
        account_id,
        body,
        body.amount,
        body.vehicle_type,
        target_driver_id=body.target_driver_id,
    )
    return ride_view(ride, account_id)
