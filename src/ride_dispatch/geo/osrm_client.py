"""Route estimation client backed by an OSRM HTTP server."""

import time

import httpx
from pydantic import BaseModel

from ..core.exceptions import RoutingUnavailableError, ValidationError
from ..metrics.prometheus_exporter import observe_latency, record_routing_error


class RouteResponse(BaseModel):
    distance_meters: float
    duration_seconds: float
    osrm_code: str

    @property
    def distance_km(self) -> float:
        return self.distance_meters / 1000.0

    @property
    def duration_minutes(self) -> float:
        return self.duration_seconds / 60.0


class NoRouteFoundError(ValidationError):
    """No route found between coordinates. Inherits from ValidationError (non-retryable)."""

    pass


class OSRMServiceError(RoutingUnavailableError):
    """OSRM server error (5xx) or network failure (retryable)."""

    pass


class OSRMTimeoutError(RoutingUnavailableError):
    """OSRM request timeout (retryable)."""

    pass


class OSRMClient:
    def __init__(self, base_url: str, timeout: float = 3.0, client: httpx.AsyncClient | None = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client

    async def get_route(
        self, origin: tuple[float, float], destination: tuple[float, float]
    ) -> RouteResponse:
        """Get driving distance and duration between two (lat, lng) points."""
        origin_lat, origin_lon = origin
        dest_lat, dest_lon = destination

        url = (
            f"{self.base_url}/route/v1/driving/"
            f"{origin_lon},{origin_lat};{dest_lon},{dest_lat}"
        )
        params = {"overview": "false"}

        start_time = time.perf_counter()
        try:
            if self._client is not None:
                response = await self._client.get(url, params=params, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.get(url, params=params)

            if response.status_code >= 500:
                record_routing_error(f"server_error_{response.status_code}")
                raise OSRMServiceError(f"OSRM server error: {response.status_code}")

            data = response.json()

            if data.get("code") in ("NoRoute", "NoSegment"):
                record_routing_error("no_route")
                raise NoRouteFoundError("No route found between coordinates")

            route = data["routes"][0]
            result = RouteResponse(
                distance_meters=float(route["distance"]),
                duration_seconds=float(route["duration"]),
                osrm_code=data["code"],
            )
            observe_latency("routing", (time.perf_counter() - start_time) * 1000)
            return result

        except httpx.TimeoutException as e:
            record_routing_error("timeout")
            raise OSRMTimeoutError(f"Request timed out after {self.timeout}s") from e
        except httpx.NetworkError as e:
            record_routing_error("network_error")
            raise OSRMServiceError(f"Network error: {e}") from e
        except (KeyError, IndexError, ValueError) as e:
            record_routing_error("bad_response")
            raise OSRMServiceError(f"Malformed OSRM response: {e}") from e
