"""API Client Abstractions for the job service.

Provides the HTTP clients used by the session manager and the sync engine.
All HTTP functionality is contained within dedicated API client classes.
"""

from .auth_client import AuthAPIClient, LoginResult, RefreshResult
from .base_client import (
    AuthenticatedAPIClient,
    BaseAPIClient,
    CredentialProvider,
    send_with_reauth,
)
from .errors import (
    APIClientError,
    AuthError,
    AuthErrorReason,
    ErrorCode,
    NetworkError,
    NetworkErrorReason,
    NotFoundError,
    RateLimitedError,
    ServerError,
    ValidationError,
    describe_error,
)
from .jobs_client import JobsAPIClient
from .jwt_token_manager import JWTTokenManager, TokenValidationError
from .network_error_handler import NetworkErrorHandler
from .sse_parser import SseParseError, SseParser

__all__ = [
    # Base client
    "BaseAPIClient",
    "AuthenticatedAPIClient",
    "CredentialProvider",
    "send_with_reauth",
    # Errors
    "APIClientError",
    "AuthError",
    "AuthErrorReason",
    "NetworkError",
    "NetworkErrorReason",
    "RateLimitedError",
    "ServerError",
    "NotFoundError",
    "ValidationError",
    "ErrorCode",
    "describe_error",
    "NetworkErrorHandler",
    # JWT token manager
    "JWTTokenManager",
    "TokenValidationError",
    # Auth client
    "AuthAPIClient",
    "LoginResult",
    "RefreshResult",
    # Jobs client
    "JobsAPIClient",
    "SseParser",
    "SseParseError",
]
