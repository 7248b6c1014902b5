"""Session lifecycle management.

SessionManager is the single owner of the authenticated session: it logs in,
renews the credential ahead of expiry on a timer, renews it on demand when a
request is rejected, and logs out. It satisfies the request layer's
CredentialProvider protocol.
"""

import asyncio
import logging
import time
from typing import Any, Callable, Dict, Optional

from ..api_clients.auth_client import AuthAPIClient
from ..api_clients.errors import APIClientError, AuthError, AuthErrorReason
from ..api_clients.jwt_token_manager import JWTTokenManager, TokenValidationError
from .credential_store import CredentialStore
from .exceptions import SessionStateError
from .models import Identity, Session

logger = logging.getLogger(__name__)

SessionLostCallback = Callable[[AuthError], None]


class SessionManager:
    """Owns the credential, its renewal timer and the persisted session."""

    def __init__(
        self,
        auth_client: AuthAPIClient,
        store: CredentialStore,
        refresh_margin_seconds: int = 300,
        on_session_lost: Optional[SessionLostCallback] = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize session manager.

        Args:
            auth_client: Client for the /auth endpoints
            store: Durable session storage
            refresh_margin_seconds: Renew this long before the credential expires
            on_session_lost: Called when a scheduled renewal fails and the user
                has to log in again
            clock: Source of the current epoch time in seconds
        """
        self.auth_client = auth_client
        self.store = store
        self.jwt_manager = JWTTokenManager(
            refresh_margin_seconds=refresh_margin_seconds, clock=clock
        )
        self.on_session_lost = on_session_lost

        self._session: Optional[Session] = None
        self._refresh_handle: Optional[asyncio.TimerHandle] = None
        self._refresh_task: Optional[asyncio.Task] = None
        # Created on first use so it binds to the running loop
        self._refresh_lock: Optional[asyncio.Lock] = None
        self.scheduled_refresh_in: Optional[float] = None

    # Session state

    def is_authenticated(self) -> bool:
        return self._session is not None

    def current_identity(self) -> Optional[Identity]:
        return self._session.identity if self._session else None

    def current_credential(self) -> Optional[str]:
        return self._session.credential if self._session else None

    @property
    def has_scheduled_refresh(self) -> bool:
        return self._refresh_handle is not None

    async def restore(self) -> Optional[Session]:
        """Load a persisted session and schedule its renewal."""
        session = self.store.get()
        if session is None:
            return None

        self._session = session
        self._schedule_refresh()
        logger.info(f"Restored session for {session.identity.email}")
        return session

    # Lifecycle operations

    async def login(self, identifier: str, secret: str) -> Session:
        """Authenticate, persist the session and schedule its renewal.

        Raises:
            AuthError: ``invalid-credentials``, ``network`` or ``server``
            CredentialStorageError: If the session cannot be persisted
        """
        result = await self.auth_client.login(identifier, secret)
        expiry = self._expiry_for(result.credential, result.expiry)

        session = self.store.set(result.credential, result.identity, expiry)
        self._session = session
        self._schedule_refresh()

        logger.info(f"Logged in as {session.identity.email}")
        return session

    async def refresh(self, rejected_credential: Optional[str] = None) -> Session:
        """Renew the current credential.

        When ``rejected_credential`` is given and no longer matches the stored
        credential, another caller has already renewed it and the current
        session is returned without a network call. Never retries itself; on
        failure the session is logged out.

        Raises:
            AuthError: ``refresh-failed``
        """
        if self._refresh_lock is None:
            self._refresh_lock = asyncio.Lock()
        async with self._refresh_lock:
            session = self._session
            if session is None:
                self._clear_local_state()
                raise AuthError(
                    AuthErrorReason.REFRESH_FAILED, "No credential to renew"
                )

            if (
                rejected_credential is not None
                and rejected_credential != session.credential
            ):
                logger.debug("Credential was already renewed by a concurrent request")
                return session

            try:
                result = await self.auth_client.refresh(session.credential)
                if self._session is not session:
                    raise AuthError(
                        AuthErrorReason.REFRESH_FAILED, "Session ended during renewal"
                    )
                expiry = self._expiry_for(result.credential, result.expiry)
                renewed = self.store.set(result.credential, session.identity, expiry)
            except (APIClientError, SessionStateError) as e:
                logger.error(f"Credential renewal failed: {e}")
                if self._session is session:
                    await self.logout()
                raise AuthError(
                    AuthErrorReason.REFRESH_FAILED, f"Credential renewal failed: {e}"
                ) from e

            self._session = renewed
            self._schedule_refresh()
            logger.info("Credential renewed")
            return renewed

    async def logout(self) -> None:
        """Best-effort server logout; local state is cleared unconditionally."""
        self._cancel_refresh_timer()
        session = self._session
        self._session = None

        try:
            if session is not None:
                await self.auth_client.logout(session.credential)
        except APIClientError as e:
            logger.warning(f"Logout notification failed, clearing session anyway: {e}")
        finally:
            self.store.clear()

        if session is not None:
            logger.info(f"Logged out {session.identity.email}")

    def expire(self) -> None:
        """Drop the session locally after the server rejected a renewed credential."""
        logger.warning("Session expired, clearing stored credential")
        self._clear_local_state()

    async def validate(self) -> bool:
        """Whether the server still accepts the current credential."""
        credential = self.current_credential()
        if credential is None:
            return False
        return await self.auth_client.validate(credential)

    async def change_password(
        self, current_password: str, new_password: str
    ) -> Dict[str, Any]:
        return await self.auth_client.change_password(
            self, current_password, new_password
        )

    async def close(self) -> None:
        """Cancel pending renewals; the stored session is kept."""
        self._cancel_refresh_timer()
        task = self._refresh_task
        self._refresh_task = None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    # Renewal scheduling

    def _expiry_for(self, credential: str, fallback: Optional[int]) -> Optional[int]:
        """Expiry from the credential's exp claim, else the server-reported one."""
        try:
            expiry = self.jwt_manager.get_expiry_epoch(credential)
        except TokenValidationError as e:
            logger.debug(
                f"Credential is not a decodable JWT ({e}), using reported expiry"
            )
            return fallback
        return expiry if expiry is not None else fallback

    def _schedule_refresh(self) -> None:
        """Replace any pending renewal timer with one for the current session."""
        self._cancel_refresh_timer()

        session = self._session
        if session is None or session.expiry_epoch_seconds is None:
            logger.debug("No credential expiry known, renewal not scheduled")
            return

        delay = self.jwt_manager.refresh_delay(session.expiry_epoch_seconds)
        loop = asyncio.get_running_loop()
        self._refresh_handle = loop.call_later(delay, self._on_refresh_timer)
        self.scheduled_refresh_in = delay
        logger.debug(f"Credential renewal scheduled in {delay:.1f}s")

    def _cancel_refresh_timer(self) -> None:
        if self._refresh_handle is not None:
            self._refresh_handle.cancel()
            self._refresh_handle = None
        self.scheduled_refresh_in = None

    def _on_refresh_timer(self) -> None:
        self._refresh_handle = None
        self.scheduled_refresh_in = None
        self._refresh_task = asyncio.create_task(self._run_scheduled_refresh())

    async def _run_scheduled_refresh(self) -> None:
        try:
            await self.refresh()
        except AuthError as e:
            # refresh() has already logged out
            logger.error(f"Scheduled credential renewal failed: {e}")
            if self.on_session_lost is not None:
                try:
                    self.on_session_lost(e)
                except Exception as callback_error:
                    logger.warning(f"Session lost callback failed: {callback_error}")
        finally:
            if self._refresh_task is asyncio.current_task():
                self._refresh_task = None

    def _clear_local_state(self) -> None:
        self._cancel_refresh_timer()
        self._session = None
        self.store.clear()
