"""
dbmemcache - Core Error Types

Defines the exception hierarchy for the cache client.
All exceptions inherit from DbMemcacheError for consistent error handling.

Propagation rules:
- ValidationError, RangeError and NotInitializedError are fatal to the one call.
- ConfigurationError is fatal to the flag (or setting) being applied.
- TransientCacheError is raised by adapters and downgraded to a warning by the
  dispatcher; it never escapes a write-path call.
"""

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Standard error codes carried by every DbMemcacheError."""

    INVALID_INPUT = "INVALID_INPUT"
    OUT_OF_RANGE = "OUT_OF_RANGE"
    NOT_INITIALIZED = "NOT_INITIALIZED"

    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    UNSUPPORTED_BEHAVIOR = "UNSUPPORTED_BEHAVIOR"
    DEPENDENCY_MISSING = "DEPENDENCY_MISSING"

    CACHE_FAILURE = "CACHE_FAILURE"
    CACHE_UNAVAILABLE = "CACHE_UNAVAILABLE"

    INTERNAL_ERROR = "INTERNAL_ERROR"


class DbMemcacheError(Exception):
    """Base exception for all dbmemcache errors."""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        code: ErrorCode | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if code is not None:
            self.code = code

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for host-side error reporting."""
        return {
            "error": self.__class__.__name__,
            "code": self.code.value,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(DbMemcacheError):
    """Raised when configuration, a behavior flag, or a server list is invalid."""

    code = ErrorCode.CONFIGURATION_ERROR


class UnsupportedBehaviorError(ConfigurationError):
    """Raised when a backend cannot honor a requested behavior."""

    code = ErrorCode.UNSUPPORTED_BEHAVIOR

    def __init__(self, backend: str, behavior: str, value: Any = None, reason: str | None = None):
        message = f"Backend '{backend}' does not support behavior {behavior}"
        if value is not None:
            message += f"={value}"
        if reason:
            message += f": {reason}"
        super().__init__(message, {"backend": backend, "behavior": behavior, "value": value})
        self.backend = backend
        self.behavior = behavior


class DependencyError(ConfigurationError):
    """Raised when a required client library is missing or fails to load."""

    code = ErrorCode.DEPENDENCY_MISSING

    def __init__(
        self,
        package: str,
        feature: str | None = None,
        install_hint: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        if feature:
            message = f"Required dependency '{package}' is missing for {feature}"
        else:
            message = f"Required dependency '{package}' is missing"

        if install_hint:
            message += f". Install with: {install_hint}"

        error_details = details or {}
        error_details.update(
            {
                "package": package,
                "feature": feature,
                "install_hint": install_hint,
            }
        )

        super().__init__(message, error_details)


class ValidationError(DbMemcacheError):
    """Raised when a key, value, or argument has the wrong shape."""

    code = ErrorCode.INVALID_INPUT


class RangeError(DbMemcacheError):
    """Raised when a number falls outside the caller's or the server's domain."""

    code = ErrorCode.OUT_OF_RANGE


class NotInitializedError(DbMemcacheError):
    """Raised when an operation is issued before the client handle exists."""

    code = ErrorCode.NOT_INITIALIZED

    def __init__(self, operation: str):
        super().__init__(
            f"{operation}(): client handle is not initialized, call init() first",
            {"operation": operation},
        )


class CacheError(DbMemcacheError):
    """Base exception for cache-related errors."""

    code = ErrorCode.CACHE_FAILURE


class TransientCacheError(CacheError):
    """Raised by adapters when the wire client reports a network or protocol failure."""

    code = ErrorCode.CACHE_UNAVAILABLE

    def __init__(self, backend: str, operation: str, error: BaseException | str):
        message = f"{backend} {operation} failed: {error}"
        super().__init__(message, {"backend": backend, "operation": operation, "error": str(error)})
        self.backend = backend
        self.operation = operation
