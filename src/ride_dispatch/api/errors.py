"""Translate dispatch exceptions into HTTP responses."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ..core.correlation import get_current_correlation_id
from ..core.exceptions import (
    ConflictError,
    DispatchError,
    NotFoundError,
    PermissionDeniedError,
    UnavailableError,
    ValidationError,
)
from ..metrics.prometheus_exporter import dispatch_errors_total

logger = logging.getLogger(__name__)

# Checked in order; GuardViolationError is a ConflictError
STATUS_CODES: list[tuple[type[DispatchError], int]] = [
    (ValidationError, 422),
    (NotFoundError, 404),
    (PermissionDeniedError, 403),
    (ConflictError, 409),
    (UnavailableError, 503),
]


def status_for(exc: DispatchError) -> int:
    for exc_type, status in STATUS_CODES:
        if isinstance(exc, exc_type):
            return status
    return 500


async def dispatch_error_handler(request: Request, exc: DispatchError) -> JSONResponse:
    status = status_for(exc)
    dispatch_errors_total.labels(component="api", error_type=type(exc).__name__).inc()
    if status >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected ({status}): {exc.message}")

    headers = {"Retry-After": "1"} if status == 503 else None
    return JSONResponse(
        status_code=status,
        content={
            "error": type(exc).__name__,
            "message": exc.message,
            "details": exc.details,
            "correlationId": get_current_correlation_id(),
        },
        headers=headers,
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(DispatchError, dispatch_error_handler)  # type: ignore[arg-type]
