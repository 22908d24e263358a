"""Rate limiting configuration using slowapi."""

import time
from collections import defaultdict

from opentelemetry import metrics
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from ..settings import APISettings

meter = metrics.get_meter("ride_dispatch")

rate_limit_hits = meter.create_counter(
    name="api_rate_limit_hits_total",
    description="Total API requests rejected by rate limiting",
    unit="1",
)

_limits: dict[str, str] = {
    "create_ride": APISettings.model_fields["create_ride_rate_limit"].default,
    "accept": APISettings.model_fields["accept_rate_limit"].default,
}


def get_api_key_or_ip(request: Request) -> str:
    """Rate limit by API key and caller account if present, otherwise by IP."""
    api_key = request.headers.get("X-API-Key")
    if api_key:
        account_id = request.headers.get("X-Account-Id", "")
        return f"key:{api_key}:{account_id}"
    return f"ip:{get_remote_address(request)}"


limiter = Limiter(key_func=get_api_key_or_ip)


def configure_limits(settings: APISettings) -> None:
    _limits["create_ride"] = settings.create_ride_rate_limit
    _limits["accept"] = settings.accept_rate_limit


def create_ride_limit() -> str:
    return _limits["create_ride"]


def accept_limit() -> str:
    return _limits["accept"]


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> Response:
    """429 with a Retry-After header derived from the limit window."""
    rate_limit_hits.add(
        1,
        {"endpoint": request.url.path, "method": request.method},
    )

    retry_after = str(exc.detail)

    view_rate_limit = getattr(request.state, "view_rate_limit", None)
    if view_rate_limit:
        window_map = {"second": 1, "minute": 60, "hour": 3600, "day": 86400}
        for unit, seconds in window_map.items():
            if unit in str(view_rate_limit):
                retry_after = str(seconds)
                break

    response = JSONResponse(
        status_code=429,
        content={"error": str(exc.detail)},
    )
    response.headers["retry-after"] = retry_after
    return response


class WebSocketRateLimiter:
    """Simple sliding-window rate limiter for WebSocket connections."""

    def __init__(self, max_connections: int, window_seconds: int) -> None:
        self.max_connections = max_connections
        self.window_seconds = window_seconds
        self._attempts: dict[str, list[float]] = defaultdict(list)

    def is_limited(self, key: str) -> bool:
        now = time.time()
        cutoff = now - self.window_seconds
        self._attempts[key] = [t for t in self._attempts[key] if t > cutoff]
        if len(self._attempts[key]) >= self.max_connections:
            return True
        self._attempts[key].append(now)
        return False

    def reset(self) -> None:
        self._attempts.clear()


ws_limiter = WebSocketRateLimiter(max_connections=30, window_seconds=60)
