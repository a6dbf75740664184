"""silo-cache Error Handling Module

This module defines the error handling system for silo-cache, providing
structured error classes with context information.

The error hierarchy follows these principles:
- One Source of Truth: All error codes are defined in ErrorCode enum
- Structured Context: ErrorContext provides additional information
- Proper Exception Chaining: Original exceptions are preserved

Errors raised inside the cache subsystem are recovered locally by the
KeyStore and the revalidating fetcher; they surface to callers only through
published fetch states, the API client and the CLI.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any, Union

# Type alias for primitive context values (str, int, float, bool only)
PrimitiveContextValue = Union[str, int, float, bool]

# Keys masked by safe_dict (bearer tokens must never reach the logs)
SAFE_DICT_MASK_KEYS: tuple[str, ...] = ("token", "authorization")


class ErrorCode(str, Enum):
    """Error codes for silo-cache.

    This enum serves as the single source of truth for all error codes
    used throughout the package.
    """

    # Storage Errors
    STORAGE_READ_FAILED = "STORAGE_READ_FAILED"
    STORAGE_WRITE_FAILED = "STORAGE_WRITE_FAILED"
    STORAGE_UNAVAILABLE = "STORAGE_UNAVAILABLE"
    FILE_ACCESS_ERROR = "FILE_ACCESS_ERROR"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    FILE_NOT_FOUND = "FILE_NOT_FOUND"

    # Cache Errors
    CACHE_ERROR = "CACHE_ERROR"
    CACHE_MISS = "CACHE_MISS"
    CACHE_CORRUPTED = "CACHE_CORRUPTED"
    CACHE_SERIALIZATION_ERROR = "CACHE_SERIALIZATION_ERROR"
    CACHE_VERSION_MISMATCH = "CACHE_VERSION_MISMATCH"
    INVALID_CACHE_KEY = "INVALID_CACHE_KEY"
    INVALID_TTL = "INVALID_TTL"

    # Fetch State Errors
    INVALID_STATE_TRANSITION = "INVALID_STATE_TRANSITION"
    NETWORK_FETCH_FAILED = "NETWORK_FETCH_FAILED"
    OPERATION_CANCELLED = "OPERATION_CANCELLED"

    # Network and API Errors
    NETWORK_ERROR = "NETWORK_ERROR"
    API_TIMEOUT = "API_TIMEOUT"
    API_RATE_LIMIT = "API_RATE_LIMIT"
    API_AUTHENTICATION_FAILED = "API_AUTHENTICATION_FAILED"
    API_REQUEST_FAILED = "API_REQUEST_FAILED"
    API_SERVER_ERROR = "API_SERVER_ERROR"
    API_INVALID_RESPONSE = "API_INVALID_RESPONSE"

    # Validation Errors
    VALIDATION_ERROR = "VALIDATION_ERROR"

    # Configuration Errors
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    CONFIG_MISSING = "CONFIG_MISSING"
    CONFIG_INVALID = "CONFIG_INVALID"

    # CLI Errors
    CLI_INVALID_ARGUMENTS = "CLI_INVALID_ARGUMENTS"
    CLI_COMMAND_FAILED = "CLI_COMMAND_FAILED"
    CLI_UNEXPECTED_ERROR = "CLI_UNEXPECTED_ERROR"

    # Application Errors
    APPLICATION_ERROR = "APPLICATION_ERROR"


def _coerce_primitives(value: Any | None) -> dict[str, PrimitiveContextValue] | None:
    """Coerce additional_data values to primitives.

    Converts Path, Enum, Decimal to primitive types.

    Args:
        value: Input dictionary or None

    Returns:
        Dictionary with primitive values only, or None

    Raises:
        TypeError: If value is not a dict or contains unconvertible types
    """
    if value is None:
        return None

    if not isinstance(value, dict):
        error_msg = f"additional_data must be dict, got {type(value).__name__}"
        raise TypeError(error_msg)

    coerced: dict[str, PrimitiveContextValue] = {}
    for key, val in value.items():
        if isinstance(val, (str, int, float, bool)):
            coerced[key] = val
        elif isinstance(val, Path):
            coerced[key] = str(val)
        elif isinstance(val, Enum):
            coerced[key] = val.value
        elif isinstance(val, Decimal):
            coerced[key] = float(val)
        else:
            error_msg = (
                f"Cannot coerce {type(val).__name__} to primitive type. "
                f"Only str, int, float, bool, Path, Enum, Decimal are allowed."
            )
            raise TypeError(error_msg)

    return coerced


@dataclass(frozen=True)
class ErrorContextModel:
    """Context information for errors.

    Only primitive types (str, int, float, bool) are allowed in
    additional_data to ensure safe serialization.

    Attributes:
        operation: Optional operation name that caused the error
        key: Optional cache key involved in the error
        additional_data: Optional dict with primitive values only
    """

    operation: str | None = None
    key: str | None = None
    additional_data: dict[str, PrimitiveContextValue] | None = None

    def __post_init__(self) -> None:
        """Post-initialization validation and coercion."""
        if self.additional_data is not None:
            coerced = _coerce_primitives(self.additional_data)
            object.__setattr__(self, "additional_data", coerced)

    def safe_dict(self, *, mask_keys: tuple[str, ...] | None = None) -> dict[str, Any]:
        """Export context as dict with sensitive values masked.

        Args:
            mask_keys: additional_data keys to mask. Defaults to SAFE_DICT_MASK_KEYS.

        Returns:
            Dictionary with masked sensitive fields and guaranteed additional_data key.

        Example:
            >>> context = ErrorContextModel(operation="get", additional_data={"token": "abc"})
            >>> context.safe_dict()
            {'operation': 'get', 'additional_data': {'token': '***'}}
        """
        if mask_keys is None:
            mask_keys = SAFE_DICT_MASK_KEYS

        data: dict[str, Any] = {}
        if self.operation is not None:
            data["operation"] = self.operation
        if self.key is not None:
            data["key"] = self.key

        additional: dict[str, Any] = {}
        for name, value in (self.additional_data or {}).items():
            additional[name] = "***" if name.lower() in mask_keys else value
        data["additional_data"] = additional

        return data


ErrorContext = ErrorContextModel


class SiloCacheError(Exception):
    """Base exception class for all silo-cache errors."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        context: ErrorContext | None = None,
        original_error: Exception | None = None,
    ) -> None:
        """Initialize SiloCacheError.

        Args:
            code: Error code from ErrorCode enum
            message: Human-readable error message
            context: Additional context information
            original_error: Original exception that caused this error
        """
        self.code = code
        self.message = message
        self.context = context or ErrorContext()
        self.original_error = original_error

        super().__init__(f"{code.value}: {message}")

    def __str__(self) -> str:
        """Return string representation of the error."""
        return f"{self.code.value}: {self.message}"

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging and JSON output.

        Returns:
            Dictionary representation of the error with code, message,
            masked context, and original_error (if present)
        """
        return {
            "code": self.code.value,
            "message": self.message,
            "context": self.context.safe_dict(),
            "original_error": str(self.original_error) if self.original_error else None,
        }


class DomainError(SiloCacheError):
    """Domain-specific errors.

    These errors occur when cache rules are violated.

    Examples:
    - Empty cache key or negative TTL
    - Corrupted or outdated cache entry
    - Illegal fetch state transition
    """


class InfrastructureError(SiloCacheError):
    """Infrastructure-related errors.

    These errors occur when interacting with external systems
    like the durable storage or the remote API.

    Examples:
    - SQLite failures
    - Network connection failures
    - API authentication errors
    """


class ApplicationError(SiloCacheError):
    """Application-level errors.

    Examples:
    - Invalid command line arguments
    - Configuration errors
    """


class CliError(ApplicationError):
    """CLI-specific error carrying the command and its exit code."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        context: ErrorContext | None = None,
        original_error: Exception | None = None,
        command: str | None = None,
        exit_code: int = 1,
    ):
        super().__init__(code, message, context, original_error)
        self.command = command
        self.exit_code = exit_code


# Convenience functions for common error scenarios
def create_storage_error(
    message: str,
    *,
    write: bool,
    key: str | None = None,
    operation: str | None = None,
    original_error: Exception | None = None,
) -> InfrastructureError:
    """Create a storage read/write error with context."""
    code = ErrorCode.STORAGE_WRITE_FAILED if write else ErrorCode.STORAGE_READ_FAILED
    return InfrastructureError(
        code,
        message,
        ErrorContext(operation=operation, key=key),
        original_error,
    )


def create_network_error(
    message: str,
    code: ErrorCode = ErrorCode.NETWORK_ERROR,
    *,
    endpoint: str | None = None,
    status_code: int | None = None,
    operation: str | None = None,
    original_error: Exception | None = None,
) -> InfrastructureError:
    """Create a network/API error with context."""
    additional_data: dict[str, PrimitiveContextValue] = {}
    if endpoint is not None:
        additional_data["endpoint"] = endpoint
    if status_code is not None:
        additional_data["status_code"] = status_code

    context = ErrorContext(
        operation=operation,
        additional_data=additional_data or None,
    )
    return InfrastructureError(code, message, context, original_error)


def create_validation_error(
    message: str,
    code: ErrorCode = ErrorCode.VALIDATION_ERROR,
    *,
    key: str | None = None,
    operation: str | None = None,
    original_error: Exception | None = None,
) -> DomainError:
    """Create a validation error with context."""
    return DomainError(
        code,
        message,
        ErrorContext(operation=operation, key=key),
        original_error,
    )


def create_config_error(
    message: str,
    config_key: str | None = None,
    operation: str | None = None,
    original_error: Exception | None = None,
) -> ApplicationError:
    """Create a configuration error with context."""
    additional_data: dict[str, PrimitiveContextValue] | None = (
        {"config_key": config_key} if config_key else None
    )
    context = ErrorContext(
        operation=operation,
        additional_data=additional_data,
    )
    return ApplicationError(
        ErrorCode.CONFIGURATION_ERROR,
        message,
        context,
        original_error,
    )


def create_cli_error(
    message: str,
    command: str | None = None,
    code: ErrorCode = ErrorCode.CLI_UNEXPECTED_ERROR,
    original_error: Exception | None = None,
    exit_code: int = 1,
) -> CliError:
    """Create a CLI error with context."""
    additional_data: dict[str, PrimitiveContextValue] | None = (
        {"command": command} if command else None
    )
    return CliError(
        code,
        message,
        ErrorContext(operation="cli", additional_data=additional_data),
        original_error,
        command,
        exit_code,
    )
