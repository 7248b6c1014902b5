"""Base jobwatch API Client.

Provides common HTTP functionality, bearer authentication with at-most-once
re-authentication, and error classification for all jobwatch API operations.
"""

import logging
from contextlib import asynccontextmanager
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Dict,
    Optional,
    Protocol,
)

import httpx

from .errors import APIClientError, AuthError, AuthErrorReason
from .network_error_handler import NetworkErrorHandler

logger = logging.getLogger(__name__)


class CredentialProvider(Protocol):
    """What the request layer needs from the session lifecycle manager."""

    def current_credential(self) -> Optional[str]: ...

    async def refresh(self, rejected_credential: Optional[str] = None) -> Any: ...

    def expire(self) -> None: ...


async def send_with_reauth(
    send: Callable[[Optional[str]], Awaitable[httpx.Response]],
    credentials: CredentialProvider,
) -> httpx.Response:
    """Send a request with the current credential, re-authenticating at most once.

    ``send`` is called with the credential to attach (None when logged out).
    On a 401 the credential is refreshed and the request replayed exactly
    once. A 401 on the replay clears the session and raises
    ``AuthError(session-expired)`` without refreshing again.

    Raises:
        AuthError: ``refresh-failed`` if renewal fails, ``session-expired``
            if the renewed credential is rejected too
    """
    credential = credentials.current_credential()
    response = await send(credential)
    if response.status_code != 401:
        return response

    await response.aclose()
    logger.debug("Received 401, refreshing credential and replaying request once")
    await credentials.refresh(rejected_credential=credential)

    response = await send(credentials.current_credential())
    if response.status_code != 401:
        return response

    await response.aclose()
    logger.warning("Renewed credential was rejected, session expired")
    credentials.expire()
    raise AuthError(
        AuthErrorReason.SESSION_EXPIRED,
        "Session expired, please log in again",
        status_code=401,
    )


class BaseAPIClient:
    """HTTP plumbing shared by the auth and jobs clients."""

    def __init__(
        self,
        server_url: str,
        api_prefix: str = "/v1",
        timeout: float = 30.0,
        retry_delay: float = 1.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize base API client.

        Args:
            server_url: Base URL of the job service
            api_prefix: Path prefix of the versioned API
            timeout: Per-request timeout in seconds
            retry_delay: Fixed delay before the single retry of one-shot calls
            http_client: Optional pre-built httpx client (shared between clients)
        """
        self.server_url = server_url.rstrip("/")
        self.api_prefix = "/" + api_prefix.strip("/") if api_prefix.strip("/") else ""
        self.timeout = timeout
        self._session = http_client
        self._owns_session = http_client is None
        self._network_error_handler = NetworkErrorHandler(retry_delay=retry_delay)

    @property
    def session(self) -> httpx.AsyncClient:
        """Get or create the HTTP session."""
        if self._session is None or self._session.is_closed:
            self._session = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                follow_redirects=True,
                verify=True,
            )
            self._owns_session = True
        return self._session

    def url(self, endpoint: str) -> str:
        return f"{self.server_url}{self.api_prefix}{endpoint}"

    @staticmethod
    def _headers(
        credential: Optional[str], extra: Optional[Dict[str, str]] = None
    ) -> Dict[str, str]:
        headers = dict(extra or {})
        if credential:
            headers["Authorization"] = f"Bearer {credential}"
        return headers

    async def _send(
        self,
        method: str,
        endpoint: str,
        credential: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
        **kwargs,
    ) -> httpx.Response:
        """Make a single HTTP request; transport failures become NetworkError.

        The response is returned whatever its status.
        """
        try:
            return await self.session.request(
                method,
                self.url(endpoint),
                headers=self._headers(credential, headers),
                **kwargs,
            )
        except httpx.TransportError as e:
            raise self._network_error_handler.classify_transport_error(e) from e

    async def _open_stream(
        self,
        method: str,
        endpoint: str,
        credential: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
        read_timeout: Optional[float] = None,
    ) -> httpx.Response:
        """Open a streaming response; the caller must ``aclose`` it.

        ``read_timeout`` bounds the wait for each chunk; it defaults to the
        client-wide timeout.
        """
        if read_timeout is None:
            read_timeout = self.timeout
        request = self.session.build_request(
            method,
            self.url(endpoint),
            headers=self._headers(credential, headers),
            timeout=httpx.Timeout(self.timeout, read=read_timeout),
        )
        try:
            return await self.session.send(request, stream=True)
        except httpx.TransportError as e:
            raise self._network_error_handler.classify_transport_error(e) from e

    async def close(self) -> None:
        """Close the HTTP session if this client created it."""
        if self._owns_session and self._session and not self._session.is_closed:
            await self._session.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


class AuthenticatedAPIClient(BaseAPIClient):
    """Base client for endpoints that require the bearer credential."""

    def __init__(self, server_url: str, credentials: CredentialProvider, **kwargs):
        super().__init__(server_url, **kwargs)
        self.credentials = credentials

    async def _authenticated_request(
        self,
        method: str,
        endpoint: str,
        **kwargs,
    ) -> httpx.Response:
        """Make an authenticated request and raise for error statuses.

        Transient failures (network, 5xx, 429) are retried once after the
        fixed retry delay. The retry happens inside each re-auth leg, so a
        request is refreshed at most once whatever the transient failures.

        Raises:
            AuthError: If re-authentication fails or the session expired
            NetworkError: If the server is unreachable or times out
            RateLimitedError: If rate limited (429)
            ServerError: If the server returns 5xx
            NotFoundError: If the resource does not exist
            ValidationError: If the request was rejected as malformed
            APIClientError: For any other error status
        """

        async def send(credential: Optional[str]) -> httpx.Response:
            async def attempt() -> httpx.Response:
                response = await self._send(
                    method, endpoint, credential=credential, **kwargs
                )
                # 401 goes back to send_with_reauth
                if response.status_code != 401:
                    self._network_error_handler.classify_response(response)
                return response

            return await self._network_error_handler.retry_once(
                attempt, f"{method} {endpoint}"
            )

        return await send_with_reauth(send, self.credentials)

    @asynccontextmanager
    async def _authenticated_stream(
        self,
        method: str,
        endpoint: str,
        headers: Optional[Dict[str, str]] = None,
        read_timeout: Optional[float] = None,
    ) -> AsyncIterator[httpx.Response]:
        """Open an authenticated streaming response and close it on exit.

        Error statuses are classified like ``_authenticated_request`` but never
        retried here; reconnect policy belongs to the caller.
        """
        response = await send_with_reauth(
            lambda credential: self._open_stream(
                method,
                endpoint,
                credential=credential,
                headers=headers,
                read_timeout=read_timeout,
            ),
            self.credentials,
        )
        try:
            if response.status_code >= 400:
                await response.aread()
                self._network_error_handler.classify_response(response)
                raise APIClientError(
                    f"Unexpected status {response.status_code}", response.status_code
                )
            yield response
        finally:
            await response.aclose()
