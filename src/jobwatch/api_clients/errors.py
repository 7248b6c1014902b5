"""Error taxonomy for the jobwatch API clients.

Every error raised by the request layer derives from APIClientError so that
callers (the sync engine, the CLI) can catch one base type and inspect
``is_retryable`` to decide between retrying and surfacing.
"""

from enum import Enum
from typing import Dict, Optional


class APIClientError(Exception):
    """Base exception for API client errors."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.is_retryable: bool = False


class AuthErrorReason(str, Enum):
    """Why an authentication operation failed."""

    INVALID_CREDENTIALS = "invalid-credentials"
    NETWORK = "network"
    SERVER = "server"
    REFRESH_FAILED = "refresh-failed"
    SESSION_EXPIRED = "session-expired"


class AuthError(APIClientError):
    """Exception raised when authentication or credential renewal fails."""

    def __init__(
        self,
        reason: AuthErrorReason,
        message: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(
            message or f"Authentication failed: {reason.value}", status_code
        )
        self.reason = reason


class NetworkErrorReason(str, Enum):
    """Transport level failure kinds."""

    TIMEOUT = "timeout"
    UNREACHABLE = "unreachable"


class NetworkError(APIClientError):
    """Exception raised when the server cannot be reached or times out."""

    def __init__(self, reason: NetworkErrorReason, message: str):
        super().__init__(message)
        self.reason = reason
        self.is_retryable = True


class RateLimitedError(APIClientError):
    """Exception raised for 429 responses."""

    def __init__(self, message: str, retry_after: Optional[int] = None):
        super().__init__(message, status_code=429)
        self.retry_after = retry_after
        self.is_retryable = True


class ServerError(APIClientError):
    """Exception raised for server-side errors (5xx responses)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message, status_code)
        self.is_retryable = True


class NotFoundError(APIClientError):
    """Exception raised when the requested job does not exist."""

    def __init__(self, message: str):
        super().__init__(message, status_code=404)


class ValidationError(APIClientError):
    """Exception raised when the server rejects a request as malformed.

    Passed through to the caller unmodified; ``code`` is the service error
    code (see ErrorCode) when the body carries one.
    """

    def __init__(self, code: str, message: str, status_code: Optional[int] = None):
        super().__init__(message, status_code)
        self.code = code


class ErrorCode(str, Enum):
    """Error codes returned by the import service in ``{"error": {"code"}}``."""

    INVALID_FILE_TYPE = "INVALID_FILE_TYPE"
    MISSING_COLUMNS = "MISSING_COLUMNS"
    TOO_MANY_ROWS = "TOO_MANY_ROWS"
    UNAUTHORIZED = "UNAUTHORIZED"
    PAYLOAD_TOO_LARGE = "PAYLOAD_TOO_LARGE"
    UNSUPPORTED_MEDIA_TYPE = "UNSUPPORTED_MEDIA_TYPE"
    ROW_VALIDATION_FAILED = "ROW_VALIDATION_FAILED"
    RATE_LIMITED = "RATE_LIMITED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


ERROR_MESSAGES: Dict[ErrorCode, str] = {
    ErrorCode.INVALID_FILE_TYPE: "Invalid file type. Use CSV or XLSX only.",
    ErrorCode.MISSING_COLUMNS: "Required columns are missing from the file.",
    ErrorCode.TOO_MANY_ROWS: "The file exceeds the maximum number of rows.",
    ErrorCode.UNAUTHORIZED: "Not authorized. Please log in again.",
    ErrorCode.PAYLOAD_TOO_LARGE: "File too large.",
    ErrorCode.UNSUPPORTED_MEDIA_TYPE: "Unsupported content type.",
    ErrorCode.ROW_VALIDATION_FAILED: "One or more rows failed validation.",
    ErrorCode.RATE_LIMITED: "Too many requests. Try again later.",
    ErrorCode.INTERNAL_ERROR: "Internal server error. Try again.",
}


def describe_error(error: Exception) -> str:
    """Return a user-facing message for an error raised by the clients."""
    if isinstance(error, ValidationError):
        # MISSING_COLUMNS messages name the columns, keep the server's text
        if error.code == ErrorCode.MISSING_COLUMNS.value and error.message:
            return error.message
        try:
            return ERROR_MESSAGES[ErrorCode(error.code)]
        except ValueError:
            return error.message or "Unknown error"
    if isinstance(error, AuthError):
        if error.reason == AuthErrorReason.INVALID_CREDENTIALS:
            return "Invalid email or password."
        if error.reason in (
            AuthErrorReason.SESSION_EXPIRED,
            AuthErrorReason.REFRESH_FAILED,
        ):
            return "Session expired. Please log in again."
        return error.message
    if isinstance(error, RateLimitedError):
        return ERROR_MESSAGES[ErrorCode.RATE_LIMITED]
    if isinstance(error, NetworkError):
        if error.reason == NetworkErrorReason.TIMEOUT:
            return "Request timed out. Try again."
        return "Connection error. Check your network."
    if isinstance(error, ServerError):
        return "Server error. Try again later."
    if isinstance(error, NotFoundError):
        return "Job not found."
    return str(error) or "Unknown error"
