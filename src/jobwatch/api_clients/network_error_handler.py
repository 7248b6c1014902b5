"""Network Error Handler for the jobwatch API clients.

Classifies httpx transport failures and HTTP error statuses into the client
error taxonomy and implements the single fixed-delay retry used by one-shot
calls (snapshot fetch, submission, login, refresh, downloads).
"""

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Optional, Tuple, TypeVar

import httpx

from .errors import (
    APIClientError,
    NetworkError,
    NetworkErrorReason,
    NotFoundError,
    RateLimitedError,
    ServerError,
    ValidationError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def extract_error_detail(response: httpx.Response) -> Tuple[Optional[str], str]:
    """Extract ``(code, message)`` from an error response body.

    Understands ``{"error": {"code", "message"}}`` as well as the plainer
    ``{"detail": ...}`` / ``{"message": ...}`` shapes.
    """
    fallback = f"HTTP {response.status_code}"
    try:
        body: Any = response.json()
    except (json.JSONDecodeError, ValueError):
        return None, response.text or fallback

    if not isinstance(body, dict):
        return None, fallback

    error = body.get("error")
    if isinstance(error, dict):
        return error.get("code"), error.get("message") or fallback

    message = body.get("detail") or body.get("message") or fallback
    return None, str(message)


class NetworkErrorHandler:
    """Maps transport exceptions and HTTP statuses onto client errors."""

    def __init__(self, retry_delay: float = 1.0):
        self.retry_delay = retry_delay

    def classify_transport_error(self, error: Exception) -> NetworkError:
        """Convert an httpx transport exception into a NetworkError."""
        if isinstance(error, httpx.TimeoutException):
            return NetworkError(
                NetworkErrorReason.TIMEOUT,
                f"Request timed out: {error}",
            )
        return NetworkError(
            NetworkErrorReason.UNREACHABLE,
            f"Cannot connect to server: {error}",
        )

    def classify_response(self, response: httpx.Response) -> None:
        """Raise the matching client error for a non-success response.

        401 is not handled here: it belongs to the
        re-authentication wrapper, which decides between refresh and
        ``session-expired``.

        Raises:
            RateLimitedError: 429
            NotFoundError: 404
            ValidationError: 400/409/413/415/422 and any coded error body
            ServerError: 5xx
            APIClientError: any other 4xx
        """
        status_code = response.status_code
        if status_code < 400:
            return

        code, message = extract_error_detail(response)

        if status_code == 429:
            retry_after = None
            if "Retry-After" in response.headers:
                try:
                    retry_after = int(response.headers["Retry-After"])
                except ValueError:
                    retry_after = None
            raise RateLimitedError(message, retry_after=retry_after)

        if status_code == 404:
            raise NotFoundError(message)

        if 500 <= status_code < 600:
            raise ServerError(
                f"Server is experiencing issues: {message}", status_code=status_code
            )

        if code or status_code in (400, 409, 413, 415, 422):
            raise ValidationError(code or "INVALID_REQUEST", message, status_code)

        raise APIClientError(message, status_code=status_code)

    def is_error_retryable(self, error: Exception) -> bool:
        """Only transport, server and rate-limit errors are worth retrying."""
        if isinstance(error, APIClientError):
            return error.is_retryable
        return False

    async def retry_once(
        self,
        operation: Callable[[], Awaitable[T]],
        description: str = "request",
    ) -> T:
        """Run ``operation``; on a retryable error wait and try exactly once more."""
        try:
            return await operation()
        except APIClientError as e:
            if not self.is_error_retryable(e):
                raise
            logger.warning(
                f"{description} failed ({e}), retrying once in {self.retry_delay}s"
            )

        await asyncio.sleep(self.retry_delay)
        return await operation()
