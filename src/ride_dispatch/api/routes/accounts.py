from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query

from ...account import Account
from ...accounts import NearbyDriver, Registration
from ...db.repositories.wallet_repository import WalletTransaction
from ...ride import Coordinates, VehicleCategory
from ..auth import verify_api_key
from ..dependencies import AccountIdDep, AccountsDep
from ..models import AvailabilityRequest, LocationUpdateRequest, LocationUpdateResponse, ride_view

router = APIRouter(dependencies=[Depends(verify_api_key)])


@router.post("", response_model=Account, status_code=201)
async def register(body: Registration, accounts: AccountsDep) -> Account:
    return await accounts.register(body)


@router.get("/me", response_model=Account)
async def get_me(accounts: AccountsDep, account_id: AccountIdDep) -> Account:
    return await accounts.get(account_id)


@router.post("/me/availability", response_model=Account)
async def set_availability(
    body: AvailabilityRequest, accounts: AccountsDep, account_id: AccountIdDep
) -> Account:
    return await accounts.set_online(account_id, body.online, body.location)


@router.post("/me/location", response_model=LocationUpdateResponse)
async def update_location(
    body: LocationUpdateRequest, accounts: AccountsDep, account_id: AccountIdDep
) -> LocationUpdateResponse:
    """Stale fixes (sequence not newer than the stored one) are acknowledged but ignored."""
    applied = await accounts.update_location(account_id, body.location, body.sequence)
    return LocationUpdateResponse(applied=applied)


@router.get("/me/wallet", response_model=list[WalletTransaction])
async def wallet_transactions(
    accounts: AccountsDep, account_id: AccountIdDep
) -> list[WalletTransaction]:
    return await accounts.wallet_transactions(account_id)


@router.get("/me/history")
async def ride_history(
    accounts: AccountsDep,
    account_id: AccountIdDep,
    as_driver: Annotated[bool, Query(alias="asDriver")] = False,
) -> list[dict[str, Any]]:
    rides = await accounts.ride_history(account_id, as_driver=as_driver)
    return [ride_view(ride, account_id) for ride in rides]


@router.get("/nearby-drivers", response_model=list[NearbyDriver])
async def nearby_drivers(
    accounts: AccountsDep,
    lat: Annotated[float, Query(ge=-90, le=90)],
    lng: Annotated[float, Query(ge=-180, le=180)],
    category: VehicleCategory | None = None,
    radius_km: Annotated[float | None, Query(alias="radiusKm", gt=0, le=50)] = None,
) -> list[NearbyDriver]:
    return accounts.nearby_drivers(Coordinates(lat=lat, lng=lng), category, radius_km)
