"""Microsoft Graph transport modules.

This package provides the HTTP client, authentication, throttle policy and
error types used by the group sync core.

Classes:
    GraphClient: HTTP client with continuation paging and throttle retry
    PaginationConfig: Paging delay / field names / page ceiling
    FetchResult: Entities from a paged walk plus completeness information
    TokenManager: OAuth2 client-credentials token management
    ThrottleController: Classifies failures and computes backoff

Exceptions:
    MDMError: Base exception for all client errors
    ConfigurationError: Missing or invalid configuration
    AuthenticationError: Authentication failures
    APIError: API request failures
    RateLimitError: Throttled by the service
    NetworkError: Network connectivity issues
    SyncError: Reconciliation failures
"""
from .auth import TokenManager
from .client import (
    DEFAULT_BASE_URL,
    FetchResult,
    GraphClient,
    PaginationConfig,
)
from .exceptions import (
    APIError,
    AuthenticationError,
    BatchLimitError,
    CollectionExistsError,
    ConfigurationError,
    ConnectionError,
    ForbiddenError,
    InvalidCredentialsError,
    MDMError,
    NetworkError,
    NotFoundError,
    RateLimitError,
    ServerError,
    SyncError,
    ThrottleRetriesExhaustedError,
    TimeoutError,
    TokenExpiredError,
    TokenFetchError,
    ValidationError,
)
from .resilience import ThrottleController, ThrottleVerdict

__all__ = [
    # Auth
    "TokenManager",
    # Client
    "GraphClient",
    "PaginationConfig",
    "FetchResult",
    "DEFAULT_BASE_URL",
    # Throttling
    "ThrottleController",
    "ThrottleVerdict",
    # Exceptions - Base
    "MDMError",
    "ConfigurationError",
    # Exceptions - Auth
    "AuthenticationError",
    "TokenFetchError",
    "TokenExpiredError",
    "InvalidCredentialsError",
    # Exceptions - API
    "APIError",
    "RateLimitError",
    "NotFoundError",
    "ForbiddenError",
    "ValidationError",
    "ServerError",
    # Exceptions - Network
    "NetworkError",
    "ConnectionError",
    "TimeoutError",
    # Exceptions - Sync
    "SyncError",
    "CollectionExistsError",
    "ThrottleRetriesExhaustedError",
    "BatchLimitError",
]
