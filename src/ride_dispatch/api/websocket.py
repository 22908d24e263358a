"""WebSocket streams of pending requests (drivers) and the active ride (anyone)."""

import logging
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from fastapi.websockets import WebSocketState

from ..core.exceptions import DispatchError
from ..dispatch import DispatchSession, PendingFilter
from ..ride import RideRequest, SearchingRide
from .models import ride_view
from .rate_limit import ws_limiter

logger = logging.getLogger(__name__)

router = APIRouter()


def extract_api_key_and_protocol(websocket: WebSocket) -> tuple[str | None, str | None]:
    """Extract API key and full protocol from Sec-WebSocket-Protocol header.

    Expected format: apikey.<key>
    Returns: (api_key, full_protocol) - both needed for proper handshake
    """
    protocol_header = websocket.headers.get("sec-websocket-protocol")
    if protocol_header:
        protocols = [p.strip() for p in protocol_header.split(",")]
        for protocol in protocols:
            if protocol.startswith("apikey."):
                return protocol.split(".", 1)[1], protocol
    return None, None


class ConnectionManager:
    """Tracks open WebSocket connections."""

    def __init__(self) -> None:
        self.active_connections: set[WebSocket] = set()

    async def connect(self, websocket: WebSocket, subprotocol: str | None = None) -> None:
        await websocket.accept(subprotocol=subprotocol)
        self.active_connections.add(websocket)

    def disconnect(self, websocket: WebSocket) -> None:
        self.active_connections.discard(websocket)

    async def send_message(self, websocket: WebSocket, message: dict[str, Any]) -> None:
        if websocket.application_state == WebSocketState.CONNECTED:
            await websocket.send_json(message)


manager = ConnectionManager()


async def _authorize(websocket: WebSocket) -> str | None:
    """Returns the negotiated subprotocol, or None after closing the socket."""
    api_key, subprotocol = extract_api_key_and_protocol(websocket)
    settings = websocket.app.state.settings

    if not api_key or api_key != settings.api.key:
        await websocket.close(code=1008)
        return None

    account_id = websocket.query_params.get("accountId", "")
    if ws_limiter.is_limited(f"key:{api_key}:{account_id}"):
        await websocket.close(code=1008)
        return None
    return subprotocol


async def _hold_open(websocket: WebSocket) -> None:
    """Keep the connection until the client goes away."""
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        manager.disconnect(websocket)


@router.websocket("/ws/pending")
async def pending_stream(websocket: WebSocket) -> None:
    """Push the driver's pending list each time it changes."""
    subprotocol = await _authorize(websocket)
    if subprotocol is None:
        return

    core = websocket.app.state.core
    account_id = websocket.query_params.get("accountId")
    radius = websocket.query_params.get("radiusKm")
    try:
        if not account_id:
            raise DispatchError("accountId query parameter is required")
        driver = await core.accounts.get(account_id)
        if not driver.is_available_driver:
            raise DispatchError(f"Account {account_id} is not an online approved driver")
        flt = PendingFilter(
            driver_id=driver.id,
            vehicle_type=driver.vehicle_type,
            gender=driver.gender,
            radius_km=float(radius) if radius else None,
        )
    except (DispatchError, ValueError) as e:
        logger.info(f"Rejecting pending stream: {e}")
        await websocket.close(code=1008)
        return

    await manager.connect(websocket, subprotocol=subprotocol)

    async def send(rides: list[SearchingRide]) -> None:
        await manager.send_message(
            websocket, {"type": "pending", "data": [ride.public_view() for ride in rides]}
        )

    async with DispatchSession(core.broadcaster) as session:
        session.on_pending(flt, send)
        await _hold_open(websocket)


@router.websocket("/ws/active")
async def active_stream(websocket: WebSocket) -> None:
    """Push the caller's active ride, or null when there is none."""
    subprotocol = await _authorize(websocket)
    if subprotocol is None:
        return

    account_id = websocket.query_params.get("accountId")
    if not account_id:
        await websocket.close(code=1008)
        return

    await manager.connect(websocket, subprotocol=subprotocol)
    core = websocket.app.state.core

    async def send(ride: RideRequest | None) -> None:
        await manager.send_message(
            websocket,
            {"type": "active", "data": ride_view(ride, account_id) if ride is not None else None},
        )

    async with DispatchSession(core.broadcaster) as session:
        session.on_active(account_id, send)
        await _hold_open(websocket)
