"""Exception hierarchy for vaultcore.

Every error raised by the library inherits from VaultCoreError and carries a
stable ``code`` so callers (and transports) can map it without string
matching. This module provides:
- Base exception hierarchy with stable error codes
- ErrorRegistry for protocol mapping
- gRPC status mapping for services that expose the core over gRPC

Usage:
    from vaultcore.exceptions import NotFoundError, PermissionDeniedError

    try:
        service.delete_vault(vault_id, user_id)
    except PermissionDeniedError as e:
        ...  # e.code == "PERMISSION_DENIED", e.details["action"] == "Delete"
"""

from __future__ import annotations

from typing import Any, Callable, TypeVar, cast

__all__ = [
    # Base hierarchy
    "VaultCoreError",
    "NotFoundError",
    "PermissionDeniedError",
    "PreconditionFailedError",
    "InvariantViolationError",
    "ConflictError",
    "ConfigurationError",
    "StorageError",
    "ValidationError",
    # Registry
    "ErrorRegistry",
    "error_registry",
    "register_error",
    # Protocol mapping
    "get_grpc_status_code",
]


# ---- Exception Hierarchy ----------------------------------------------------


class VaultCoreError(Exception):
    """Base exception for vaultcore.

    Attributes:
        code: Stable error code string for protocol mapping (e.g. "NOT_FOUND").
        message: Developer-facing description; never shown to end users as-is.
        details: Additional context as keyword arguments.
    """

    code: str = "INTERNAL_ERROR"
    message: str = "An internal error occurred"

    def __init__(self, message: str | None = None, code: str | None = None, **kwargs: Any) -> None:
        self.message = message or self.message
        self.code = code or self.code
        self.details = kwargs
        super().__init__(self.message)


class NotFoundError(VaultCoreError):
    """Resource or user id unknown."""

    code: str = "NOT_FOUND"
    message: str = "Resource not found"


class PermissionDeniedError(VaultCoreError):
    """The resolver refused the action."""

    code: str = "PERMISSION_DENIED"
    message: str = "Permission denied"


class PreconditionFailedError(VaultCoreError):
    """The request is well-formed but the current state forbids it."""

    code: str = "PRECONDITION_FAILED"
    message: str = "Precondition failed"


class InvariantViolationError(PreconditionFailedError):
    """Stored state breaks a structural invariant (e.g. a vault without an owner).

    Indicates a defect in the hierarchy operations, not a user error.
    """

    code: str = "INVARIANT_VIOLATION"
    message: str = "Invariant violation"


class ConflictError(VaultCoreError):
    """A concurrent structural change invalidated the caller's view; retry on fresh state."""

    code: str = "CONFLICT"
    message: str = "Concurrent modification"


class ConfigurationError(VaultCoreError):
    """Invalid or missing configuration."""

    code: str = "CONFIGURATION_ERROR"


class StorageError(VaultCoreError):
    """Store backend failure."""

    code: str = "STORAGE_ERROR"


class ValidationError(VaultCoreError):
    """Invalid input (empty name, negative value, unknown action)."""

    code: str = "VALIDATION_ERROR"


# ---- Error Registry for Protocol Mapping ------------------------------------

_E = TypeVar("_E", bound=type[VaultCoreError])


class ErrorRegistry:
    """Registry for mapping error codes back to exception classes."""

    def __init__(self) -> None:
        self._errors: dict[str, type[VaultCoreError]] = {}

    def register(self, code: str, error_cls: type[VaultCoreError]) -> None:
        self._errors[code] = error_cls

    def get(self, code: str) -> type[VaultCoreError] | None:
        return self._errors.get(code)

    def all(self) -> dict[str, type[VaultCoreError]]:
        return dict(self._errors)

    def raise_for(self, code: str, message: str | None = None, **details: Any) -> None:
        """Re-raise an error received over a transport as its typed class."""
        error_cls = self._errors.get(code, VaultCoreError)
        raise error_cls(message, code=code, **details)


error_registry = ErrorRegistry()


def register_error(code: str) -> Callable[[_E], _E]:
    """Decorator to register a custom error type.

    Usage:
        @register_error("QUOTA_EXCEEDED")
        class QuotaExceededError(VaultCoreError):
            code = "QUOTA_EXCEEDED"
    """

    def decorator(cls: _E) -> _E:
        error_registry.register(code, cls)
        return cls

    return cast(Callable[[_E], _E], decorator)


for _cls in (
    VaultCoreError,
    NotFoundError,
    PermissionDeniedError,
    PreconditionFailedError,
    InvariantViolationError,
    ConflictError,
    ConfigurationError,
    StorageError,
    ValidationError,
):
    error_registry.register(_cls.code, _cls)


# ---- gRPC status mapping ----------------------------------------------------


def get_grpc_status_code(error: VaultCoreError) -> Any:
    """Map a VaultCoreError to a ``grpc.StatusCode``.

    grpc is imported locally so the core has no hard dependency on it.
    """
    import grpc

    error_to_status = {
        "NOT_FOUND": grpc.StatusCode.NOT_FOUND,
        "PERMISSION_DENIED": grpc.StatusCode.PERMISSION_DENIED,
        "PRECONDITION_FAILED": grpc.StatusCode.FAILED_PRECONDITION,
        "INVARIANT_VIOLATION": grpc.StatusCode.INTERNAL,
        "CONFLICT": grpc.StatusCode.ABORTED,
        "CONFIGURATION_ERROR": grpc.StatusCode.FAILED_PRECONDITION,
        "STORAGE_ERROR": grpc.StatusCode.UNAVAILABLE,
        "VALIDATION_ERROR": grpc.StatusCode.INVALID_ARGUMENT,
    }
    return error_to_status.get(error.code, grpc.StatusCode.INTERNAL)
