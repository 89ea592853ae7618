"""Unified exception hierarchy for PermissionHub.

All errors raised by the core inherit from PermissionHubError. This module provides:
- Base exception hierarchy with stable error codes
- ErrorRegistry for protocol mapping
- HTTP status mapping for the transport layer

Usage:
    from permissionhub.exceptions import (
        PermissionHubError,
        NotFoundError,
        ValidationFailure,
        get_http_status,
    )

"Not found" is a normal result at the store level (``None`` / ``False``).
NotFoundError exists for operations that have no natural empty value,
such as approving a request that is already gone.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, TypeVar, cast

__all__ = [
    # Base hierarchy
    "PermissionHubError",
    "ConfigurationError",
    "NotFoundError",
    "ValidationFailure",
    "AtomicityError",
    "StorageError",
    # Registry
    "ErrorRegistry",
    "error_registry",
    "register_error",
    # Transport helpers
    "get_http_status",
]

logger = logging.getLogger(__name__)


# ---- Exception Hierarchy ----------------------------------------------------


class PermissionHubError(Exception):
    """Base exception for the PermissionHub core.

    Attributes:
        code: Stable error code string for protocol mapping (e.g. "NOT_FOUND").
        message: Human-readable error description.
        details: Additional context as keyword arguments.
    """

    code: str = "INTERNAL_ERROR"
    message: str = "An internal error occurred"

    def __init__(self, message: str | None = None, code: str | None = None, **kwargs: Any) -> None:
        self.message = message or self.message
        self.code = code or self.code
        self.details = kwargs
        super().__init__(self.message)


class ConfigurationError(PermissionHubError):
    """Invalid or missing configuration."""

    code: str = "CONFIGURATION_ERROR"


class NotFoundError(PermissionHubError):
    """Referenced permission or request id is absent from the store."""

    code: str = "NOT_FOUND"
    message: str = "Record not found"


class ValidationFailure(PermissionHubError):
    """Malformed input rejected before it reaches the store."""

    code: str = "VALIDATION_ERROR"
    message: str = "Invalid input"


class AtomicityError(PermissionHubError):
    """A multi-step write could not be completed or rolled back as one unit."""

    code: str = "ATOMICITY_ERROR"


class StorageError(PermissionHubError):
    """Key-value backend failure (file or Redis)."""

    code: str = "STORAGE_ERROR"


# ---- Error Registry for Protocol Mapping ------------------------------------

_E = TypeVar("_E", bound=type[PermissionHubError])


class ErrorRegistry:
    """Registry for mapping internal errors to external protocol codes."""

    def __init__(self) -> None:
        self._errors: dict[str, type[PermissionHubError]] = {}

    def register(self, code: str, error_cls: type[PermissionHubError]) -> None:
        self._errors[code] = error_cls

    def get(self, code: str) -> type[PermissionHubError] | None:
        return self._errors.get(code)

    def all(self) -> dict[str, type[PermissionHubError]]:
        return dict(self._errors)


error_registry = ErrorRegistry()


def register_error(code: str) -> Callable[[_E], _E]:
    """Decorator to register a custom error type.

    Usage:
        @register_error("USAGE_LIMIT")
        class UsageLimitError(ValidationFailure):
            code = "USAGE_LIMIT"
    """

    def decorator(cls: _E) -> _E:
        error_registry.register(code, cls)
        return cls

    return cast(Callable[[_E], _E], decorator)


# Register base errors
error_registry.register("INTERNAL_ERROR", PermissionHubError)
error_registry.register("CONFIGURATION_ERROR", ConfigurationError)
error_registry.register("NOT_FOUND", NotFoundError)
error_registry.register("VALIDATION_ERROR", ValidationFailure)
error_registry.register("ATOMICITY_ERROR", AtomicityError)
error_registry.register("STORAGE_ERROR", StorageError)


# ---- Transport Mapping ------------------------------------------------------

_HTTP_STATUS = {
    "NOT_FOUND": 404,
    "VALIDATION_ERROR": 400,
    "ATOMICITY_ERROR": 409,
    "STORAGE_ERROR": 503,
    "CONFIGURATION_ERROR": 500,
}


def get_http_status(error: PermissionHubError) -> int:
    """Map a PermissionHubError to the HTTP status a transport should return.

    Unknown codes map to 500. Subclasses registered under a custom code
    fall back to the status of their nearest registered base class.
    """
    status = _HTTP_STATUS.get(error.code)
    if status is not None:
        return status
    for base in type(error).__mro__[1:]:
        base_code = getattr(base, "code", None)
        if base_code in _HTTP_STATUS:
            return _HTTP_STATUS[base_code]
    return 500
