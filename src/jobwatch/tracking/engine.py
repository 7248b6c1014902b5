"""Status Synchronization Engine.

Tracks jobs to completion by combining a server-push event stream with a
polling fallback. Each tracked job gets a TrackingSession that moves through

    idle -> snapshotting -> live | polling -> settled

and ends in ``cancelled`` when untracked or ``failed`` on a non-retryable
error. Every update from either channel passes through ``reconcile`` before
it reaches the cache and the subscriber.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import (
    AsyncContextManager,
    AsyncIterator,
    Callable,
    Coroutine,
    Dict,
    List,
    Optional,
    Protocol,
    Set,
)

from ..api_clients.errors import APIClientError, AuthError, NotFoundError
from .cache import JobStatusCache
from .models import Job, JobDelta
from .reconciler import Reconciliation, Update, reconcile

logger = logging.getLogger(__name__)

UpdateCallback = Callable[[Job], None]
ErrorCallback = Callable[[Exception], None]


class JobSource(Protocol):
    """What the engine needs from the jobs API client."""

    async def get_job(self, job_id: str) -> Job: ...

    def stream_job_events(
        self, job_id: str
    ) -> AsyncContextManager[AsyncIterator[JobDelta]]: ...


class TrackingState(str, Enum):
    """State of one tracking session."""

    IDLE = "idle"
    SNAPSHOTTING = "snapshotting"
    LIVE = "live"
    POLLING = "polling"
    SETTLED = "settled"
    CANCELLED = "cancelled"
    FAILED = "failed"


FINAL_STATES = frozenset(
    {TrackingState.SETTLED, TrackingState.CANCELLED, TrackingState.FAILED}
)


@dataclass
class SyncConfig:
    """Configuration for channel selection and fallback behavior."""

    poll_interval: float = 2.0  # Seconds between polling ticks
    reconnect_delay: float = 5.0  # Seconds before reopening a failed stream
    max_reconnect_attempts: int = 3  # Reconnects before falling back to polling
    enable_push: bool = True  # Poll from the start when False

    def __post_init__(self):
        """Validate configuration values."""
        if self.poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        if self.reconnect_delay < 0:
            raise ValueError("reconnect_delay must be non-negative")
        if self.max_reconnect_attempts < 0:
            raise ValueError("max_reconnect_attempts must be non-negative")


class TrackingSession:
    """Handle for one tracked job.

    The session is closed once it reaches a final state; a closed session
    never invokes its callbacks again.
    """

    def __init__(
        self,
        job_id: str,
        on_update: UpdateCallback,
        on_error: Optional[ErrorCallback] = None,
    ):
        self.job_id = job_id
        self.on_update = on_update
        self.on_error = on_error
        self.state = TrackingState.IDLE
        self.current: Optional[Job] = None
        self.error: Optional[Exception] = None
        self.push_failures = 0
        self.closed = False

        self._tasks: Set[asyncio.Task] = set()
        self._terminal_seen = asyncio.Event()
        self._done = asyncio.Event()

    @property
    def is_done(self) -> bool:
        return self.state in FINAL_STATES

    async def wait(self) -> TrackingState:
        """Wait until the session is settled, cancelled or failed."""
        await self._done.wait()
        return self.state

    def _spawn(self, coro: Coroutine) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _finish(self, state: TrackingState) -> None:
        if self.closed:
            return
        self.state = state
        self.closed = True
        self._done.set()

    def _cancel_tasks(self) -> List[asyncio.Task]:
        """Cancel every task of the session except the calling one."""
        current = asyncio.current_task()
        cancelled = []
        for task in list(self._tasks):
            if task is not current and not task.done():
                task.cancel()
                cancelled.append(task)
        return cancelled


class StatusSyncEngine:
    """Keeps subscribers up to date with the status of tracked jobs."""

    def __init__(
        self,
        source: JobSource,
        cache: Optional[JobStatusCache] = None,
        config: Optional[SyncConfig] = None,
    ):
        """Initialize the engine.

        Args:
            source: Snapshot and event stream provider (the jobs API client)
            cache: Shared snapshot cache; caching is disabled when None
            config: Channel configuration (uses defaults if None)
        """
        self.source = source
        self.cache = cache
        self.config = config or SyncConfig()
        self._sessions: Dict[str, TrackingSession] = {}

    # Collaborator surface

    def track(
        self,
        job_id: str,
        on_update: UpdateCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> TrackingSession:
        """Start tracking a job; must be called from a running event loop.

        An active session for the same job is cancelled and replaced.
        """
        if job_id in self._sessions:
            logger.debug(f"Replacing existing tracking session for job {job_id}")
            self.untrack(job_id)

        session = TrackingSession(job_id, on_update, on_error)
        self._sessions[job_id] = session
        session._spawn(self._run(session))
        logger.debug(f"Tracking job {job_id}")
        return session

    def untrack(self, job_id: str) -> None:
        """Stop tracking a job. Idempotent.

        No callback fires after this returns; streams are closed as the
        cancelled tasks unwind.
        """
        session = self._sessions.pop(job_id, None)
        if session is None or session.closed:
            return

        session._finish(TrackingState.CANCELLED)
        session._cancel_tasks()
        logger.debug(f"Stopped tracking job {job_id}")

    def is_tracking(self, job_id: str) -> bool:
        return job_id in self._sessions

    def get_session(self, job_id: str) -> Optional[TrackingSession]:
        return self._sessions.get(job_id)

    async def close(self) -> None:
        """Cancel all sessions and wait for their tasks to finish."""
        pending: List[asyncio.Task] = []
        for job_id, session in list(self._sessions.items()):
            pending.extend(session._tasks)
            self.untrack(job_id)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    # Session lifecycle

    async def _run(self, session: TrackingSession) -> None:
        job_id = session.job_id
        try:
            session.state = TrackingState.SNAPSHOTTING
            cached = self.cache.get(job_id) if self.cache is not None else None

            if cached is not None:
                logger.debug(f"Cache hit for job {job_id}")
                self._apply(session, cached, store=False)
                if cached.is_terminal:
                    await self._settle(session)
                    return
                session._spawn(self._refresh_snapshot(session))
            else:
                try:
                    snapshot = await self.source.get_job(job_id)
                except APIClientError as e:
                    self._fail(session, e)
                    return
                result = self._apply(session, snapshot)
                if result is not None and not result.accepted:
                    self._fail(
                        session,
                        APIClientError(
                            f"Unusable snapshot for job {job_id}: {result.reason}"
                        ),
                    )
                    return
                if session.current is not None and session.current.is_terminal:
                    logger.info(
                        f"Job {job_id} is already {session.current.status.value}"
                    )
                    session._finish(TrackingState.SETTLED)
                    return

            await self._follow(session)
        except Exception as e:
            logger.error(f"Tracking job {job_id} failed unexpectedly: {e}")
            self._fail(session, e)
        finally:
            session._cancel_tasks()
            if self._sessions.get(job_id) is session and session.closed:
                del self._sessions[job_id]

    async def _refresh_snapshot(self, session: TrackingSession) -> None:
        """Background snapshot fetch correcting a cached snapshot."""
        try:
            snapshot = await self.source.get_job(session.job_id)
        except APIClientError as e:
            if not e.is_retryable:
                self._fail(session, e)
                return
            logger.warning(f"Snapshot refresh for job {session.job_id} failed: {e}")
            self._report(session, e)
            return
        self._apply(session, snapshot)

    async def _follow(self, session: TrackingSession) -> None:
        """Run the update channels until a terminal status is observed."""
        channels = session._spawn(self._run_channels(session))
        terminal = session._spawn(session._terminal_seen.wait())
        try:
            await asyncio.wait(
                {channels, terminal}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            channels.cancel()
            terminal.cancel()
            results = await asyncio.gather(channels, terminal, return_exceptions=True)

        if isinstance(results[0], Exception):
            raise results[0]
        if session._terminal_seen.is_set() and not session.closed:
            await self._settle(session)

    async def _run_channels(self, session: TrackingSession) -> None:
        if self.config.enable_push:
            await self._run_push(session)
            if session.closed or session._terminal_seen.is_set():
                return
        await self._run_polling(session)

    async def _run_push(self, session: TrackingSession) -> None:
        """Follow the event stream with bounded reconnects.

        Returns when a terminal status is seen, or after the failure that
        exhausts the reconnect attempts.
        """
        job_id = session.job_id
        max_reconnects = self.config.max_reconnect_attempts

        while True:
            session.state = TrackingState.LIVE
            try:
                async with self.source.stream_job_events(job_id) as deltas:
                    logger.debug(f"Event stream open for job {job_id}")
                    async for delta in deltas:
                        session.push_failures = 0
                        self._apply(session, delta)
                        if session._terminal_seen.is_set():
                            return
                reason = "stream ended before a terminal status"
            except (AuthError, NotFoundError) as e:
                self._fail(session, e)
                return
            except APIClientError as e:
                reason = str(e)

            session.push_failures += 1
            if session.push_failures > max_reconnects:
                logger.warning(
                    f"Event stream for job {job_id} failed {session.push_failures} "
                    f"times in a row ({reason}), switching to polling"
                )
                return

            logger.warning(
                f"Event stream for job {job_id} failed ({reason}), reconnecting in "
                f"{self.config.reconnect_delay}s "
                f"(attempt {session.push_failures}/{max_reconnects})"
            )
            await asyncio.sleep(self.config.reconnect_delay)

    async def _run_polling(self, session: TrackingSession) -> None:
        job_id = session.job_id
        session.state = TrackingState.POLLING
        logger.debug(f"Polling job {job_id} every {self.config.poll_interval}s")

        while True:
            await asyncio.sleep(self.config.poll_interval)
            try:
                snapshot = await self.source.get_job(job_id)
            except APIClientError as e:
                if not e.is_retryable:
                    self._fail(session, e)
                    return
                logger.warning(f"Polling job {job_id} failed: {e}")
                self._report(session, e)
                continue

            self._apply(session, snapshot)
            if session._terminal_seen.is_set():
                return

    async def _settle(self, session: TrackingSession) -> None:
        """Fetch and emit the final snapshot, then settle the session."""
        job_id = session.job_id
        try:
            final = await self.source.get_job(job_id)
        except APIClientError as e:
            logger.warning(f"Final snapshot fetch for job {job_id} failed: {e}")
            self._report(session, e)
        else:
            result = self._apply(session, final, force_emit=True)
            if result is not None and not result.accepted:
                self._report(
                    session,
                    APIClientError(
                        f"Final snapshot for job {job_id} was discarded: "
                        f"{result.reason}"
                    ),
                )

        status = session.current.status.value if session.current else "unknown"
        logger.info(f"Job {job_id} settled as {status}")
        session._finish(TrackingState.SETTLED)

    # Reconciliation and callbacks

    def _apply(
        self,
        session: TrackingSession,
        update: Update,
        store: bool = True,
        force_emit: bool = False,
    ) -> Optional[Reconciliation]:
        """Reconcile one update, then cache and emit the result.

        Returns None when the session is already closed.
        """
        if session.closed:
            return None

        result = reconcile(session.current, update)
        if not result.accepted:
            logger.debug(f"Discarded update for job {session.job_id}: {result.reason}")
            return result

        job = result.job
        session.current = job
        if store and self.cache is not None:
            self.cache.put(session.job_id, job)
        if result.changed or force_emit:
            self._emit(session, job)
        if job.is_terminal:
            session._terminal_seen.set()
        return result

    def _emit(self, session: TrackingSession, job: Job) -> None:
        try:
            session.on_update(job)
        except Exception as e:
            logger.error(f"Update callback for job {session.job_id} failed: {e}")

    def _report(self, session: TrackingSession, error: Exception) -> None:
        if session.closed or session.on_error is None:
            return
        try:
            session.on_error(error)
        except Exception as e:
            logger.error(f"Error callback for job {session.job_id} failed: {e}")

    def _fail(self, session: TrackingSession, error: Exception) -> None:
        """End the session after a non-retryable error."""
        if session.closed:
            return
        logger.error(f"Tracking job {session.job_id} failed: {error}")
        session.error = error
        self._report(session, error)
        session._finish(TrackingState.FAILED)
        session._cancel_tasks()
