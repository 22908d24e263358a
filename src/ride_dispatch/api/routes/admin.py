from fastapi import APIRouter, Depends

from ...account import Account
from ..auth import verify_api_key
from ..dependencies import AccountIdDep, AccountsDep, StateMachineDep
from ..models import ApprovalRequest, ExpiryResponse

router = APIRouter(dependencies=[Depends(verify_api_key)])


@router.post("/drivers/{driver_id}/approval", response_model=Account)
async def set_driver_approval(
    driver_id: str, body: ApprovalRequest, accounts: AccountsDep, account_id: AccountIdDep
) -> Account:
    return await accounts.approve_driver(
        account_id,
        driver_id,
        body.approved,
        kyc_completed=body.kyc_completed,
        reason=body.reason,
    )


@router.post("/accounts/{target_id}/deactivate", response_model=Account)
async def deactivate_account(
    target_id: str, accounts: AccountsDep, account_id: AccountIdDep
) -> Account:
    return await accounts.deactivate(account_id, target_id)


@router.post("/requests/expire", response_model=ExpiryResponse)
async def expire_requests(
    state_machine: StateMachineDep, accounts: AccountsDep, account_id: AccountIdDep
) -> ExpiryResponse:
    """Run one expiry sweep now instead of waiting for the background loop."""
    await accounts.require_admin(account_id)
    return ExpiryResponse(expired=await state_machine.expire_stale_requests())
