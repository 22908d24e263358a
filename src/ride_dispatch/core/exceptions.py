"""Standardized exception hierarchy for the dispatch core."""

from typing import Any


class DispatchError(Exception):
    """Base exception for all dispatch errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class TransientError(DispatchError):
    """Errors that may succeed on retry."""

    pass


class UnavailableError(TransientError):
    """Store or collaborator unreachable, or the call timed out."""

    pass


class RoutingUnavailableError(UnavailableError):
    """Route estimation service timed out or answered with a server error."""

    pass


class PermanentError(DispatchError):
    """Errors that will not succeed on retry."""

    pass


class ValidationError(PermanentError):
    """Invalid input or data format."""

    pass


class NotFoundError(PermanentError):
    """Requested entity does not exist."""

    pass


class ConflictError(PermanentError):
    """The record moved on: a concurrent writer won or the state changed."""

    pass


class GuardViolationError(ConflictError):
    """Illegal state edge, wrong trip code, or an already-applied settlement."""

    pass


class PermissionDeniedError(PermanentError):
    """Actor is not allowed to perform the operation."""

    pass


class ConfigurationError(PermanentError):
    """Missing or invalid configuration."""

    pass
