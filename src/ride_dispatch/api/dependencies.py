"""FastAPI dependency injection providers."""

from typing import Annotated

from fastapi import Depends, Request

from ..accounts import AccountService
from ..dispatch import AcceptanceArbiter, DispatchBroadcaster, RideStateMachine
from ..fares import FareNegotiationEngine
from ..service import DispatchCore
from ..settlement import SettlementEngine
from .auth import get_account_id


def get_core(request: Request) -> DispatchCore:
    """Retrieve DispatchCore from app state."""
    return request.app.state.core


def get_fares(request: Request) -> FareNegotiationEngine:
    return request.app.state.core.fares


def get_arbiter(request: Request) -> AcceptanceArbiter:
    return request.app.state.core.arbiter


def get_state_machine(request: Request) -> RideStateMachine:
    return request.app.state.core.state_machine


def get_settlement(request: Request) -> SettlementEngine:
    return request.app.state.core.settlement


def get_broadcaster(request: Request) -> DispatchBroadcaster:
    return request.app.state.core.broadcaster


def get_accounts(request: Request) -> AccountService:
    return request.app.state.core.accounts


CoreDep = Annotated[DispatchCore, Depends(get_core)]
FaresDep = Annotated[FareNegotiationEngine, Depends(get_fares)]
ArbiterDep = Annotated[AcceptanceArbiter, Depends(get_arbiter)]
StateMachineDep = Annotated[RideStateMachine, Depends(get_state_machine)]
SettlementDep = Annotated[SettlementEngine, Depends(get_settlement)]
BroadcasterDep = Annotated[DispatchBroadcaster, Depends(get_broadcaster)]
AccountsDep = Annotated[AccountService, Depends(get_accounts)]
AccountIdDep = Annotated[str, Depends(get_account_id)]
