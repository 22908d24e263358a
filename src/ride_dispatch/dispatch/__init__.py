from .arbiter import AcceptanceArbiter, AcceptOutcome
from .broadcaster import DispatchBroadcaster, PendingFilter
from .expiry import RequestExpiryLoop
from .session import DispatchSession
from .state_machine import PickupUpdate, RideStateMachine

__all__ = [
    "AcceptOutcome",
    "AcceptanceArbiter",
    "DispatchBroadcaster",
    "DispatchSession",
    "PendingFilter",
    "PickupUpdate",
    "RequestExpiryLoop",
    "RideStateMachine",
]
