"""FastAPI application factory for the dispatch API."""

import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from slowapi.errors import RateLimitExceeded
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from ..core.correlation import with_correlation
from ..service import DispatchCore
from ..settings import Settings, get_settings
from .auth import verify_api_key
from .errors import register_exception_handlers
from .rate_limit import configure_limits, limiter, rate_limit_exceeded_handler
from .routes import accounts, admin, fares, health, rides
from .websocket import manager as connection_manager
from .websocket import router as websocket_router

logger = logging.getLogger(__name__)

CORRELATION_HEADER = "X-Correlation-Id"


class CorrelationMiddleware(BaseHTTPMiddleware):
    """Run each request under the caller's correlation id, or a fresh one."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        with with_correlation(request.headers.get(CORRELATION_HEADER)) as correlation_id:
            response = await call_next(request)
        response.headers[CORRELATION_HEADER] = correlation_id
        return response


def create_app(
    core: DispatchCore,
    settings: Settings | None = None,
    run_background_tasks: bool = True,
) -> FastAPI:
    """Create FastAPI application with injected dependencies.

    Args:
        core: Wired dispatch components
        settings: Defaults to ``get_settings()``
        run_background_tasks: Start the request expiry loop with the app
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> Any:
        """Manage application startup and shutdown."""
        indexed = await core.accounts.load_index()
        logger.info(f"Driver index loaded with {indexed} online drivers")
        if run_background_tasks:
            await core.expiry_loop.start()
        yield
        if run_background_tasks:
            await core.expiry_loop.stop()
        await core.close()

    app = FastAPI(
        title="Ride Dispatch API",
        version="0.1.0",
        description="Ride requests, acceptance, trip lifecycle and settlement",
        lifespan=lifespan,
    )

    FastAPIInstrumentor.instrument_app(app)

    configure_limits(settings.api)
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)  # type: ignore[arg-type]
    register_exception_handlers(app)

    # Set immediately (not in lifespan) so they're available for testing
    app.state.core = core
    app.state.settings = settings
    app.state.connection_manager = connection_manager

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors.origins.split(","),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(CorrelationMiddleware)

    app.include_router(fares.router, prefix="/fares", tags=["fares"])
    app.include_router(rides.router, prefix="/rides", tags=["rides"])
    app.include_router(accounts.router, prefix="/accounts", tags=["accounts"])
    app.include_router(admin.router, prefix="/admin", tags=["admin"])
    app.include_router(health.router, tags=["health"])
    app.include_router(websocket_router)

    @app.get("/auth/validate")
    async def validate_api_key_endpoint(
        _: str = Depends(verify_api_key),
    ) -> dict[str, str]:
        """Returns 200 for a valid API key, 401 otherwise."""
        return {"status": "authenticated"}

    return app
