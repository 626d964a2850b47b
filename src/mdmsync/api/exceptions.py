#!/usr/bin/env python3
"""Exception Hierarchy for the device management Graph client.

This module provides a structured exception hierarchy for handling errors
across the client, identity resolution, and group reconciliation.

Design Principles:
    - All exceptions inherit from MDMError base class
    - Exceptions preserve context (original error, timestamps, details)
    - Exceptions are categorized by recoverability
    - Each exception includes actionable information

Exception Hierarchy:
    MDMError (base)
    ├── ConfigurationError (unrecoverable - fix config)
    ├── AuthenticationError (may be recoverable - refresh token)
    │   ├── TokenFetchError
    │   ├── TokenExpiredError
    │   └── InvalidCredentialsError
    ├── APIError (HTTP error response)
    │   ├── RateLimitError
    │   ├── NotFoundError
    │   ├── ForbiddenError
    │   ├── ValidationError
    │   └── ServerError
    ├── NetworkError (transport failure)
    │   ├── ConnectionError
    │   └── TimeoutError
    ├── SyncError (operation failed)
    │   ├── CollectionExistsError
    │   └── ThrottleRetriesExhaustedError
    └── BatchLimitError
"""
from datetime import datetime
from typing import Any, Optional

# ============================================
# Base Exception
# ============================================

class MDMError(Exception):
    """Base exception for all client errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code (e.g., "RATE_LIMIT_EXCEEDED")
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
        self.timestamp = datetime.utcnow()
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

class ConfigurationError(MDMError):
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

class AuthenticationError(MDMError):
    """Base class for authentication-related errors."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("recoverable", True)
        super().__init__(message, **kwargs)


class TokenFetchError(AuthenticationError):
    """Raised when a token cannot be fetched from the identity platform."""

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


class TokenExpiredError(AuthenticationError):
    """Raised when the access token was rejected (HTTP 401)."""

    def __init__(self, message: str = "Access token has expired", **kwargs):
        super().__init__(message, code="TOKEN_EXPIRED", **kwargs)


class InvalidCredentialsError(AuthenticationError):
    """Raised when client credentials are invalid."""

    def __init__(
        self,
        message: str = "Invalid client credentials",
        **kwargs,
    ):
        super().__init__(
            message,
            code="INVALID_CREDENTIALS",
            recoverable=False,
            **kwargs,
        )


# ============================================
# API Errors
# ============================================

class APIError(MDMError):
    """Base class for API response errors.

    Attributes:
        status_code: HTTP status code
        endpoint: URI that was called
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
            details["response_body"] = response_body[:500] if len(response_body) > 500 else response_body

        kwargs.setdefault("recoverable", status_code == 429)
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
    """Raised when the API throttles the caller (HTTP 429).

    Attributes:
        retry_after: Seconds the server asked us to wait, if it said
    """

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after: Optional[int] = None,
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
            recoverable=True,
            **kwargs,
        )
        self.retry_after = retry_after


class NotFoundError(APIError):
    """Raised when requested resource is not found (HTTP 404)."""

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


class ForbiddenError(APIError):
    """Raised when the app registration lacks a permission (HTTP 403)."""

    def __init__(self, message: str = "Forbidden", **kwargs):
        kwargs.setdefault("status_code", 403)
        super().__init__(
            message,
            code="FORBIDDEN",
            recoverable=False,
            **kwargs,
        )


class ValidationError(APIError):
    """Raised when API validation fails (HTTP 400/422)."""

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


class ServerError(APIError):
    """Raised when server returns 5xx error."""

    def __init__(
        self,
        message: str = "Server error",
        **kwargs,
    ):
        kwargs.setdefault("status_code", 500)
        super().__init__(
            message,
            code="SERVER_ERROR",
            **kwargs,
        )


# ============================================
# Network Errors
# ============================================

class NetworkError(MDMError):
    """Base class for transport-level failures."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("recoverable", True)
        super().__init__(message, **kwargs)


class ConnectionError(NetworkError):
    """Raised when connection to server fails."""

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
    """Raised when request times out."""

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

class SyncError(MDMError):
    """Base class for synchronization errors."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, **kwargs)


class CollectionExistsError(SyncError):
    """Raised in create-only mode when the target group already exists.

    Attributes:
        collection_id: Directory object id of the existing group
        display_name: Display name that matched
    """

    def __init__(
        self,
        display_name: str,
        collection_id: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        details["display_name"] = display_name
        if collection_id:
            details["collection_id"] = collection_id
        super().__init__(
            f"Group '{display_name}' already exists and update was not requested",
            code="COLLECTION_EXISTS",
            details=details,
            recoverable=False,
            **kwargs,
        )
        self.display_name = display_name
        self.collection_id = collection_id


class ThrottleRetriesExhaustedError(SyncError):
    """Raised when a throttled call exceeds the configured retry ceiling.

    Attributes:
        attempts: Number of attempts made
        endpoint: URI that kept being throttled
    """

    def __init__(
        self,
        attempts: int,
        endpoint: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        details["attempts"] = attempts
        if endpoint:
            details["endpoint"] = endpoint
        super().__init__(
            f"Still throttled after {attempts} attempt(s)",
            code="THROTTLE_RETRIES_EXHAUSTED",
            details=details,
            recoverable=False,
            **kwargs,
        )
        self.attempts = attempts
        self.endpoint = endpoint


class BatchLimitError(MDMError):
    """Raised when a membership batch exceeds the API reference limit.

    Attributes:
        member_count: Number of references provided
        max_members: Maximum allowed references per request
    """

    def __init__(
        self,
        member_count: int,
        max_members: int = 20,
        **kwargs,
    ):
        message = f"Member count ({member_count}) exceeds maximum ({max_members})"
        details = kwargs.pop("details", {})
        details["member_count"] = member_count
        details["max_members"] = max_members

        super().__init__(
            message,
            code="BATCH_LIMIT_EXCEEDED",
            details=details,
            recoverable=False,
            **kwargs,
        )
        self.member_count = member_count
        self.max_members = max_members


__all__ = [
    # Base
    "MDMError",
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
    "ForbiddenError",
    "ValidationError",
    "ServerError",
    # Network
    "NetworkError",
    "ConnectionError",
    "TimeoutError",
    # Sync
    "SyncError",
    "CollectionExistsError",
    "ThrottleRetriesExhaustedError",
    "BatchLimitError",
]
