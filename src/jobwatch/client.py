"""Collaborator-facing facade.

JobWatchClient wires the session manager, the API clients, the cache and the
sync engine together from a ClientConfig and exposes the operations a user
interface needs.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import httpx

from .api_clients.auth_client import AuthAPIClient
from .api_clients.jobs_client import JobsAPIClient
from .config import ClientConfig
from .remote.credential_store import CredentialStore
from .remote.models import Identity, Session
from .remote.session_manager import SessionLostCallback, SessionManager
from .tracking.cache import JobStatusCache
from .tracking.engine import (
    ErrorCallback,
    StatusSyncEngine,
    SyncConfig,
    TrackingSession,
    UpdateCallback,
)
from .tracking.models import Job, JobReceipt

logger = logging.getLogger(__name__)


class JobWatchClient:
    """Submit jobs and track them to completion with one authenticated session."""

    def __init__(
        self,
        config: ClientConfig,
        on_session_lost: Optional[SessionLostCallback] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize the client.

        Args:
            config: Client configuration
            on_session_lost: Called when a scheduled credential renewal fails
            http_client: Optional httpx client shared by all API clients
        """
        self.config = config
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(config.timeout), follow_redirects=True
        )

        common: Dict[str, Any] = dict(
            api_prefix=config.api_prefix,
            timeout=config.timeout,
            retry_delay=config.retry_delay,
            http_client=self._http,
        )
        self.auth_client = AuthAPIClient(config.server_url, **common)
        self.sessions = SessionManager(
            self.auth_client,
            CredentialStore(config.session_dir),
            refresh_margin_seconds=config.refresh_margin,
            on_session_lost=on_session_lost,
        )
        self.jobs_client = JobsAPIClient(
            config.server_url,
            self.sessions,
            stream_read_timeout=config.stream_read_timeout,
            **common,
        )

        self.cache = (
            JobStatusCache(ttl_seconds=config.cache_ttl)
            if config.enable_cache
            else None
        )
        self.engine = StatusSyncEngine(
            self.jobs_client,
            cache=self.cache,
            config=SyncConfig(
                poll_interval=config.poll_interval,
                reconnect_delay=config.reconnect_delay,
                max_reconnect_attempts=config.max_reconnect_attempts,
                enable_push=config.enable_push,
            ),
        )

    # Session

    async def restore(self) -> Optional[Session]:
        """Pick up the session persisted by a previous run, if any."""
        return await self.sessions.restore()

    async def register(
        self,
        email: str,
        username: str,
        company_name: str,
        company_document: str,
        password: str,
    ) -> Dict[str, Any]:
        """Create an account. Does not log in."""
        return await self.auth_client.register(
            email, username, company_name, company_document, password
        )

    async def login(self, identifier: str, secret: str) -> Session:
        return await self.sessions.login(identifier, secret)

    async def logout(self) -> None:
        await self.engine.close()
        await self.sessions.logout()

    def is_authenticated(self) -> bool:
        return self.sessions.is_authenticated()

    def current_identity(self) -> Optional[Identity]:
        return self.sessions.current_identity()

    async def validate_session(self) -> bool:
        return await self.sessions.validate()

    async def change_password(
        self, current_password: str, new_password: str
    ) -> Dict[str, Any]:
        return await self.sessions.change_password(current_password, new_password)

    # Jobs

    def track(
        self,
        job_id: str,
        on_update: UpdateCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> TrackingSession:
        return self.engine.track(job_id, on_update, on_error)

    def untrack(self, job_id: str) -> None:
        self.engine.untrack(job_id)

    async def submit_job(
        self,
        file_path: Path,
        delimiter: Optional[str] = None,
        date_format: str = "YYYY-MM-DD",
        webhook_url: Optional[str] = None,
    ) -> JobReceipt:
        return await self.jobs_client.submit_job(
            file_path,
            delimiter=delimiter,
            date_format=date_format,
            webhook_url=webhook_url,
        )

    async def get_job(self, job_id: str) -> Job:
        return await self.jobs_client.get_job(job_id)

    async def download_results(self, job_id: str) -> bytes:
        return await self.jobs_client.download_results(job_id)

    async def download_errors(self, job_id: str) -> bytes:
        return await self.jobs_client.download_errors(job_id)

    # Teardown

    async def close(self) -> None:
        """Stop tracking, cancel renewal timers and close the HTTP client.

        The persisted session is kept for the next run.
        """
        await self.engine.close()
        await self.sessions.close()
        if self._owns_http and not self._http.is_closed:
            await self._http.aclose()

    async def __aenter__(self):
        await self.restore()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
