"""Apple Business / School Manager API modules.

This package provides the transport layer of the device sync engine.

Classes:
    ABMClient: aiohttp client with bearer auth, cursor pagination and downloads
    ApiResponse: Status and raw body of one API call
    TokenManager: OAuth2 client-assertion token management with caching
    ABMConfig: Immutable run configuration

Exceptions:
    ABMError: Base exception for all ABM errors
    ConfigurationError: Missing or invalid configuration
    AuthenticationError: Authentication failures (fatal to a run)
    APIError: API request failures
    NetworkError: Transport failures
    ActivityError: Device activity submission or polling failures
"""
from .auth import CachedToken, TokenManager
from .client import ABMClient, ApiResponse, create_api_error, next_cursor
from .config import (
    DEVICES_PAGINATION,
    MANAGER_ENDPOINTS,
    SERVERS_PAGINATION,
    TOKEN_URL,
    ABMConfig,
    MonitorPolicy,
    PaginationConfig,
    RetryPolicy,
)
from .exceptions import (
    ABMError,
    ActivityError,
    ActivityPollError,
    ActivitySubmissionError,
    APIError,
    AuthenticationError,
    ConfigurationError,
    ConnectionError,
    ErrorCollector,
    InvalidCredentialsError,
    NetworkError,
    NotFoundError,
    PartialSyncError,
    RateLimitError,
    ServerError,
    SyncError,
    TimeoutError,
    TokenExpiredError,
    TokenFetchError,
    ValidationError,
)

__all__ = [
    # Client
    "ABMClient",
    "ApiResponse",
    "create_api_error",
    "next_cursor",
    # Auth
    "TokenManager",
    "CachedToken",
    # Config
    "ABMConfig",
    "PaginationConfig",
    "RetryPolicy",
    "MonitorPolicy",
    "DEVICES_PAGINATION",
    "SERVERS_PAGINATION",
    "MANAGER_ENDPOINTS",
    "TOKEN_URL",
    # Exceptions
    "ABMError",
    "ConfigurationError",
    "AuthenticationError",
    "TokenFetchError",
    "TokenExpiredError",
    "InvalidCredentialsError",
    "APIError",
    "RateLimitError",
    "NotFoundError",
    "ValidationError",
    "ServerError",
    "NetworkError",
    "ConnectionError",
    "TimeoutError",
    "SyncError",
    "PartialSyncError",
    "ActivityError",
    "ActivitySubmissionError",
    "ActivityPollError",
    "ErrorCollector",
]
