#!/usr/bin/env python3
"""Exception Hierarchy for the Apple Business / School Manager API.

This module provides a structured exception hierarchy for handling errors
across the ABM client, including configuration, authentication, API,
network and activity errors.

Design Principles:
    - All exceptions inherit from ABMError base class
    - Exceptions preserve context (original error, timestamps, details)
    - Exceptions are categorized by recoverability
    - Each exception includes actionable information

Exception Hierarchy:
    ABMError (base)
    ├── ConfigurationError (unrecoverable - fix config)
    ├── AuthenticationError (fatal to the run)
    │   ├── TokenFetchError
    │   ├── TokenExpiredError
    │   └── InvalidCredentialsError
    ├── APIError (may be recoverable - retry)
    │   ├── RateLimitError
    │   ├── NotFoundError
    │   ├── ValidationError
    │   └── ServerError
    ├── NetworkError (transport failure)
    │   ├── ConnectionError
    │   └── TimeoutError
    └── SyncError (operation failed)
        ├── PartialSyncError
        └── ActivityError
            ├── ActivitySubmissionError
            └── ActivityPollError
"""
from datetime import datetime, timezone
from typing import Any, Optional

# ============================================
# Base Exception
# ============================================

class ABMError(Exception):
    """Base exception for all ABM-related errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code (e.g., "TOKEN_EXPIRED")
        details: Additional context as a dictionary
        timestamp: When the error occurred
        cause: The original exception that caused this error
        recoverable: Whether this error might be recoverable with retry
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        recoverable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__.upper()
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc)
        self.cause = cause
        self.recoverable = recoverable

        if cause:
            self.__cause__ = cause

    def __str__(self) -> str:
        parts = [self.message]
        if self.code:
            parts.insert(0, f"[{self.code}]")
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            parts.append(f"({detail_str})")
        return " ".join(parts)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code!r}, "
            f"details={self.details!r}, "
            f"recoverable={self.recoverable})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "code": self.code,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
            "recoverable": self.recoverable,
            "cause": str(self.cause) if self.cause else None,
        }


# ============================================
# Configuration Errors (Unrecoverable)
# ============================================

class ConfigurationError(ABMError):
    """Raised when configuration is missing or invalid."""

    def __init__(
        self,
        message: str,
        missing_keys: Optional[list[str]] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if missing_keys:
            details["missing_keys"] = missing_keys
        super().__init__(
            message,
            code="CONFIGURATION_ERROR",
            details=details,
            recoverable=False,
            **kwargs,
        )


# ============================================
# Authentication Errors
# ============================================

class AuthenticationError(ABMError):
    """Base class for authentication-related errors.

    An authentication failure is fatal to the whole run: nothing else can
    be fetched without a valid token.
    """

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("recoverable", False)
        super().__init__(message, **kwargs)


class TokenFetchError(AuthenticationError):
    """Raised when a token cannot be fetched from the OAuth server."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        attempts: int = 1,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if status_code:
            details["status_code"] = status_code
        details["attempts"] = attempts
        super().__init__(
            message,
            code="TOKEN_FETCH_ERROR",
            details=details,
            **kwargs,
        )
        self.status_code = status_code


class TokenExpiredError(AuthenticationError):
    """Raised when the API rejects the bearer token (HTTP 401)."""

    def __init__(self, message: str = "Access token has expired", **kwargs):
        super().__init__(message, code="TOKEN_EXPIRED", **kwargs)


class InvalidCredentialsError(AuthenticationError):
    """Raised when the client id or client assertion is rejected."""

    def __init__(
        self,
        message: str = "Invalid client credentials",
        **kwargs,
    ):
        super().__init__(message, code="INVALID_CREDENTIALS", **kwargs)


# ============================================
# API Errors
# ============================================

class APIError(ABMError):
    """Base class for API response errors.

    Attributes:
        status_code: HTTP status code
        endpoint: API endpoint that was called
        response_body: Raw response body (may be truncated)
    """

    def __init__(
        self,
        message: str,
        status_code: int,
        endpoint: Optional[str] = None,
        response_body: Optional[str] = None,
        method: str = "GET",
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        details["status_code"] = status_code
        if endpoint:
            details["endpoint"] = endpoint
        if method:
            details["method"] = method
        if response_body:
            details["response_body"] = response_body[:500]

        kwargs.setdefault("recoverable", status_code in (429, 500, 502, 503, 504))
        kwargs.setdefault("code", f"API_ERROR_{status_code}")

        super().__init__(
            message,
            details=details,
            **kwargs,
        )
        self.status_code = status_code
        self.endpoint = endpoint
        self.response_body = response_body
        self.method = method


class RateLimitError(APIError):
    """Raised when the API rate limit is exceeded (HTTP 429).

    Attributes:
        retry_after: Seconds to wait before retrying
    """

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after: Optional[float] = None,
        **kwargs,
    ):
        kwargs.setdefault("status_code", 429)
        details = kwargs.pop("details", {})
        if retry_after:
            details["retry_after_seconds"] = retry_after
        super().__init__(
            message,
            code="RATE_LIMIT_EXCEEDED",
            details=details,
            **kwargs,
        )
        self.retry_after = retry_after


class NotFoundError(APIError):
    """Raised when a requested resource is not found (HTTP 404)."""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[str] = None,
        **kwargs,
    ):
        message = f"{resource_type} not found"
        if resource_id:
            message = f"{resource_type} '{resource_id}' not found"

        kwargs.setdefault("status_code", 404)
        details = kwargs.pop("details", {})
        details["resource_type"] = resource_type
        if resource_id:
            details["resource_id"] = resource_id

        super().__init__(
            message,
            code="NOT_FOUND",
            details=details,
            recoverable=False,
            **kwargs,
        )


class ValidationError(APIError):
    """Raised when input or an API request fails validation.

    Used both for HTTP 400/422 responses and for malformed caller input
    (empty device lists, missing target server) caught before any request.
    """

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        **kwargs,
    ):
        kwargs.setdefault("status_code", 400)
        details = kwargs.pop("details", {})
        if field:
            details["field"] = field

        super().__init__(
            message,
            code="VALIDATION_ERROR",
            details=details,
            recoverable=False,
            **kwargs,
        )
        self.field = field


class ServerError(APIError):
    """Raised when the server returns a 5xx error."""

    def __init__(
        self,
        message: str = "Server error",
        **kwargs,
    ):
        kwargs.setdefault("status_code", 500)
        super().__init__(
            message,
            code="SERVER_ERROR",
            recoverable=True,
            **kwargs,
        )


# ============================================
# Network Errors
# ============================================

class NetworkError(ABMError):
    """Base class for transport failures.

    Raised by the API client when no HTTP response could be obtained.
    """

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("recoverable", True)
        super().__init__(message, **kwargs)


class ConnectionError(NetworkError):
    """Raised when connection to the server fails."""

    def __init__(
        self,
        message: str = "Failed to connect to server",
        host: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if host:
            details["host"] = host
        super().__init__(
            message,
            code="CONNECTION_ERROR",
            details=details,
            **kwargs,
        )


class TimeoutError(NetworkError):
    """Raised when a request times out."""

    def __init__(
        self,
        message: str = "Request timed out",
        timeout_seconds: Optional[float] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if timeout_seconds:
            details["timeout_seconds"] = timeout_seconds
        super().__init__(
            message,
            code="TIMEOUT_ERROR",
            details=details,
            **kwargs,
        )


# ============================================
# Sync Errors
# ============================================

class SyncError(ABMError):
    """Base class for synchronization errors."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, **kwargs)


class PartialSyncError(SyncError):
    """Summary of a batch that completed with some item failures.

    Attributes:
        succeeded: Number of items processed successfully
        failed: Number of items that failed
        errors: List of individual errors
    """

    def __init__(
        self,
        message: str,
        succeeded: int = 0,
        failed: int = 0,
        errors: Optional[list[Exception]] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        details["succeeded"] = succeeded
        details["failed"] = failed
        if errors:
            details["error_count"] = len(errors)
            details["sample_errors"] = [str(e)[:100] for e in errors[:5]]

        super().__init__(
            message,
            code="PARTIAL_SYNC_ERROR",
            details=details,
            recoverable=True,
            **kwargs,
        )
        self.succeeded = succeeded
        self.failed = failed
        self.errors = errors or []


class ActivityError(SyncError):
    """Base class for device activity (assign/unassign) errors.

    Attributes:
        activity_id: Id of the activity, when one was created
        status_code: HTTP status returned by the API, if any
    """

    def __init__(
        self,
        message: str = "Device activity failed",
        activity_id: Optional[str] = None,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if activity_id:
            details["activity_id"] = activity_id
        if status_code:
            details["status_code"] = status_code
        if response_body:
            details["response_body"] = response_body[:500]

        kwargs.setdefault("code", "ACTIVITY_ERROR")
        super().__init__(
            message,
            details=details,
            recoverable=False,
            **kwargs,
        )
        self.activity_id = activity_id
        self.status_code = status_code
        self.response_body = response_body


class ActivitySubmissionError(ActivityError):
    """Raised when the activity submission is not accepted (not 200/201)."""

    def __init__(self, message: str = "Activity submission failed", **kwargs):
        super().__init__(message, code="ACTIVITY_SUBMISSION_FAILED", **kwargs)


class ActivityPollError(ActivityError):
    """Raised when the activity status cannot be read."""

    def __init__(self, message: str = "Activity status check failed", **kwargs):
        super().__init__(message, code="ACTIVITY_POLL_FAILED", **kwargs)


# ============================================
# Error Aggregation
# ============================================

class ErrorCollector:
    """Collect multiple errors for batch operations.

    Useful when processing multiple items where you want to
    continue on failure and report all errors at the end.

    Example:
        collector = ErrorCollector()
        for device_id in device_ids:
            try:
                await enrich(device_id)
            except ABMError as e:
                collector.add(e, context={"device_id": device_id})

        if collector.has_errors():
            logger.warning(collector.to_exception())
    """

    def __init__(self, max_errors: int = 100):
        self.errors: list[tuple[Exception, dict[str, Any]]] = []
        self.max_errors = max_errors

    def add(self, error: Exception, context: Optional[dict[str, Any]] = None):
        """Add an error with optional context."""
        if len(self.errors) < self.max_errors:
            self.errors.append((error, context or {}))

    def has_errors(self) -> bool:
        """Check if any errors were collected."""
        return len(self.errors) > 0

    def count(self) -> int:
        """Get number of errors collected."""
        return len(self.errors)

    def get_errors(self) -> list[tuple[Exception, dict[str, Any]]]:
        """Get all collected errors with their contexts."""
        return list(self.errors)

    def to_exception(self, succeeded: int = 0) -> PartialSyncError:
        """Convert collected errors to a PartialSyncError."""
        if not self.errors:
            raise ValueError("No errors to convert")

        return PartialSyncError(
            message=f"{len(self.errors)} error(s) occurred during operation",
            succeeded=succeeded,
            failed=len(self.errors),
            errors=[e for e, _ in self.errors],
        )

    def clear(self):
        """Clear all collected errors."""
        self.errors.clear()


__all__ = [
    # Base
    "ABMError",
    # Configuration
    "ConfigurationError",
    # Authentication
    "AuthenticationError",
    "TokenFetchError",
    "TokenExpiredError",
    "InvalidCredentialsError",
    # API
    "APIError",
    "RateLimitError",
    "NotFoundError",
    "ValidationError",
    "ServerError",
    # Network
    "NetworkError",
    "ConnectionError",
    "TimeoutError",
    # Sync
    "SyncError",
    "PartialSyncError",
    "ActivityError",
    "ActivitySubmissionError",
    "ActivityPollError",
    # Utilities
    "ErrorCollector",
]
