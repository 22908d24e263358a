"""Correlation context for request tracing."""

import logging
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar

current_correlation_id: ContextVar[str | None] = ContextVar(
    "correlation_id", default=None
)


class CorrelationFilter(logging.Filter):
    """Logging filter that adds the current correlation ID to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = current_correlation_id.get() or "-"
        return True


def new_correlation_id() -> str:
    return uuid.uuid4().hex[:16]


@contextmanager
def with_correlation(correlation_id: str | None = None) -> Iterator[str]:
    """Context manager to set the correlation ID for a block of code.

    Usage:
        with with_correlation(request.headers.get("X-Correlation-Id")):
            logger.info("Accepting ride")  # Will include correlation_id in log
            ...
    """
    value = correlation_id or new_correlation_id()
    token = current_correlation_id.set(value)
    try:
        yield value
    finally:
        current_correlation_id.reset(token)


def get_current_correlation_id() -> str | None:
    """Get the current correlation ID from context."""
    return current_correlation_id.get()
