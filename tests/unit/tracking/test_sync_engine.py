"""Tests for the Status Synchronization Engine.

Uses an in-memory job source whose snapshot fetches and event streams are
scripted per test. An exhausted script blocks like a silent server.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import List

import pytest
import pytest_asyncio

from jobwatch.api_clients.errors import (
    APIClientError,
    AuthError,
    AuthErrorReason,
    NetworkError,
    NetworkErrorReason,
    NotFoundError,
    ServerError,
)
from jobwatch.tracking.cache import JobStatusCache
from jobwatch.tracking.engine import StatusSyncEngine, SyncConfig, TrackingState
from jobwatch.tracking.models import Job, JobDelta, JobStatus

HANG = object()


def snapshot(status="queued", total=100, processed=0, succeeded=0, failed=0, **extra):
    return Job.model_validate(
        {
            "jobId": "J1",
            "status": status,
            "stats": {
                "total": total,
                "processed": processed,
                "succeeded": succeeded,
                "failed": failed,
                "remaining": total - processed,
            },
            **extra,
        }
    )


def delta(**fields):
    return JobDelta.model_validate(fields)


class FakeJobSource:
    """Scripted stand-in for the jobs API client."""

    def __init__(self):
        self.snapshots: List = []
        self.streams: List = []
        self.get_calls = 0
        self.open_calls = 0
        self.closed_streams = 0

    async def _block(self):
        await asyncio.Event().wait()

    async def get_job(self, job_id):
        self.get_calls += 1
        if not self.snapshots:
            await self._block()
        item = self.snapshots.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    @asynccontextmanager
    async def stream_job_events(self, job_id):
        self.open_calls += 1
        if not self.streams:
            await self._block()
        script = self.streams.pop(0)
        if isinstance(script, Exception):
            raise script
        try:
            yield self._iterate(script)
        finally:
            self.closed_streams += 1

    async def _iterate(self, script):
        for item in script:
            await asyncio.sleep(0)
            if item is HANG:
                await self._block()
            if isinstance(item, Exception):
                raise item
            yield item


class Subscriber:
    def __init__(self):
        self.updates: List[Job] = []
        self.errors: List[Exception] = []

    def on_update(self, job):
        self.updates.append(job)

    def on_error(self, error):
        self.errors.append(error)


@pytest.fixture
def source():
    return FakeJobSource()


@pytest.fixture
def cache():
    return JobStatusCache(ttl_seconds=30)


@pytest.fixture
def subscriber():
    return Subscriber()


@pytest_asyncio.fixture
async def engine(source, cache):
    sync_engine = StatusSyncEngine(
        source,
        cache=cache,
        config=SyncConfig(
            poll_interval=0.001, reconnect_delay=0, max_reconnect_attempts=3
        ),
    )
    yield sync_engine
    await sync_engine.close()


async def settle(session, timeout=2.0):
    return await asyncio.wait_for(session.wait(), timeout)


def server_down():
    return ServerError("Server is experiencing issues", 503)


@pytest.mark.asyncio
class TestTrackingScenarios:
    async def test_delta_is_merged_onto_snapshot(
        self, engine, source, subscriber, wait_until
    ):
        source.snapshots = [snapshot()]
        source.streams = [
            [delta(processed=10, succeeded=9, failed=1, remaining=90), HANG]
        ]

        session = engine.track("J1", subscriber.on_update, subscriber.on_error)
        await wait_until(lambda: len(subscriber.updates) == 2)

        first, merged = subscriber.updates
        assert first.stats.processed == 0
        assert merged.status == JobStatus.QUEUED
        assert merged.stats.processed == 10
        assert merged.stats.succeeded == 9
        assert merged.stats.failed == 1
        assert merged.stats.remaining == 90
        assert session.state == TrackingState.LIVE

    async def test_stale_delta_produces_no_callback(
        self, engine, source, subscriber, wait_until
    ):
        source.snapshots = [snapshot()]
        source.streams = [
            [
                delta(processed=10, succeeded=10, failed=0),
                delta(processed=5, succeeded=5, failed=0),
                HANG,
            ]
        ]

        engine.track("J1", subscriber.on_update, subscriber.on_error)
        await wait_until(lambda: len(subscriber.updates) == 2)
        for _ in range(10):
            await asyncio.sleep(0)

        assert [job.stats.processed for job in subscriber.updates] == [0, 10]

    async def test_terminal_delta_triggers_one_final_fetch(
        self, engine, source, subscriber, cache
    ):
        final = snapshot(
            status="completed",
            processed=100,
            succeeded=95,
            failed=5,
            finishedAt="2024-05-01T12:05:00Z",
            links={"resultsCsv": "/v1/jobs/J1/results"},
        )
        source.snapshots = [snapshot(status="processing"), final]
        source.streams = [
            [
                delta(
                    status="completed",
                    processed=100,
                    succeeded=95,
                    failed=5,
                    remaining=0,
                ),
                HANG,
            ]
        ]

        session = engine.track("J1", subscriber.on_update, subscriber.on_error)
        state = await settle(session)

        assert state == TrackingState.SETTLED
        assert subscriber.updates[-1] == final
        assert subscriber.updates[-1].finished_at is not None
        assert source.get_calls == 2
        assert source.open_calls == 1
        assert source.closed_streams == 1
        assert cache.get("J1") == final
        assert not engine.is_tracking("J1")

        for _ in range(10):
            await asyncio.sleep(0)
        assert source.get_calls == 2
        assert source.open_calls == 1

    async def test_already_terminal_snapshot_settles_without_streaming(
        self, engine, source, subscriber
    ):
        source.snapshots = [snapshot(status="failed", processed=0)]

        session = engine.track("J1", subscriber.on_update, subscriber.on_error)

        assert await settle(session) == TrackingState.SETTLED
        assert source.get_calls == 1
        assert source.open_calls == 0
        assert len(subscriber.updates) == 1

    async def test_track_after_settled_starts_a_new_session(
        self, engine, source, subscriber
    ):
        source.snapshots = [snapshot(status="canceled"), snapshot(status="canceled")]

        first = engine.track("J1", subscriber.on_update)
        await settle(first)
        second = engine.track("J1", subscriber.on_update)
        await settle(second)

        assert first is not second
        # cached terminal snapshot still gets one final fetch
        assert source.get_calls == 2
        assert len(subscriber.updates) == 3


@pytest.mark.asyncio
class TestPushFallback:
    async def test_fourth_consecutive_failure_switches_to_polling(
        self, engine, source, subscriber
    ):
        source.snapshots = [
            snapshot(status="processing"),
            snapshot(status="processing", processed=50, succeeded=50),
            snapshot(status="completed", processed=100, succeeded=100),
            snapshot(status="completed", processed=100, succeeded=100),
        ]
        source.streams = [
            server_down(),
            NetworkError(NetworkErrorReason.UNREACHABLE, "down"),
            [],
            NetworkError(NetworkErrorReason.TIMEOUT, "slow"),
        ]

        session = engine.track("J1", subscriber.on_update, subscriber.on_error)

        assert await settle(session) == TrackingState.SETTLED
        assert source.open_calls == 4
        assert session.push_failures == 4
        assert source.get_calls == 4
        assert subscriber.errors == []
        assert [job.stats.processed for job in subscriber.updates] == [0, 50, 100, 100]

    async def test_received_message_resets_failure_count(
        self, engine, source, subscriber
    ):
        source.snapshots = [
            snapshot(status="processing"),
            snapshot(status="completed", processed=100, succeeded=100),
        ]
        source.streams = [
            server_down(),
            server_down(),
            server_down(),
            [delta(processed=10, succeeded=10, failed=0)],
            server_down(),
            server_down(),
            [delta(status="completed", processed=100, succeeded=100, failed=0)],
        ]

        session = engine.track("J1", subscriber.on_update, subscriber.on_error)

        assert await settle(session) == TrackingState.SETTLED
        assert source.open_calls == 7
        assert source.get_calls == 2

    async def test_push_disabled_polls_from_the_start(self, source, subscriber):
        engine = StatusSyncEngine(
            source, config=SyncConfig(poll_interval=0.001, enable_push=False)
        )
        source.snapshots = [
            snapshot(),
            snapshot(status="processing", processed=10, succeeded=10),
            snapshot(status="completed", processed=100, succeeded=100),
            snapshot(status="completed", processed=100, succeeded=100),
        ]

        session = engine.track("J1", subscriber.on_update)

        assert await settle(session) == TrackingState.SETTLED
        assert source.open_calls == 0
        assert source.get_calls == 4
        await engine.close()

    async def test_auth_failure_on_stream_ends_the_session(
        self, engine, source, subscriber
    ):
        source.snapshots = [snapshot()]
        source.streams = [AuthError(AuthErrorReason.SESSION_EXPIRED, status_code=401)]

        session = engine.track("J1", subscriber.on_update, subscriber.on_error)

        assert await settle(session) == TrackingState.FAILED
        assert isinstance(subscriber.errors[0], AuthError)
        assert source.open_calls == 1


@pytest.mark.asyncio
class TestErrors:
    async def test_unknown_job_fails_without_retrying(self, engine, source, subscriber):
        source.snapshots = [NotFoundError("Job not found")]

        session = engine.track("nope", subscriber.on_update, subscriber.on_error)

        assert await settle(session) == TrackingState.FAILED
        assert isinstance(session.error, NotFoundError)
        assert subscriber.errors == [session.error]
        assert subscriber.updates == []
        assert source.open_calls == 0

    async def test_retryable_polling_error_is_reported_and_polling_continues(
        self, source, subscriber
    ):
        engine = StatusSyncEngine(
            source, config=SyncConfig(poll_interval=0.001, enable_push=False)
        )
        source.snapshots = [
            snapshot(),
            server_down(),
            snapshot(status="completed", processed=100, succeeded=100),
            snapshot(status="completed", processed=100, succeeded=100),
        ]

        session = engine.track("J1", subscriber.on_update, subscriber.on_error)

        assert await settle(session) == TrackingState.SETTLED
        assert len(subscriber.errors) == 1
        assert isinstance(subscriber.errors[0], ServerError)
        await engine.close()

    async def test_non_retryable_polling_error_fails_the_session(
        self, source, subscriber
    ):
        engine = StatusSyncEngine(
            source, config=SyncConfig(poll_interval=0.001, enable_push=False)
        )
        source.snapshots = [snapshot(), NotFoundError("Job deleted")]

        session = engine.track("J1", subscriber.on_update, subscriber.on_error)

        assert await settle(session) == TrackingState.FAILED
        assert isinstance(subscriber.errors[0], NotFoundError)
        await engine.close()

    async def test_failing_callback_does_not_break_tracking(self, engine, source):
        source.snapshots = [
            snapshot(status="processing"),
            snapshot(status="completed", processed=100, succeeded=100),
        ]
        source.streams = [
            [delta(status="completed", processed=100, succeeded=100, failed=0)]
        ]

        def on_update(job):
            raise RuntimeError("subscriber bug")

        session = engine.track("J1", on_update)

        assert await settle(session) == TrackingState.SETTLED

    async def test_inconsistent_first_snapshot_fails_the_session(
        self, engine, source, subscriber
    ):
        source.snapshots = [
            snapshot(status="processing", processed=10, succeeded=9, failed=0)
        ]
        source.streams = [[delta(processed=20, succeeded=20, failed=0), HANG]]

        session = engine.track("J1", subscriber.on_update, subscriber.on_error)

        assert await settle(session) == TrackingState.FAILED
        assert isinstance(session.error, APIClientError)
        assert "inconsistent" in str(session.error)
        assert subscriber.errors == [session.error]
        assert subscriber.updates == []
        assert source.open_calls == 0

    async def test_discarded_final_snapshot_is_reported(
        self, engine, source, subscriber
    ):
        source.snapshots = [
            snapshot(status="processing"),
            snapshot(status="processing", processed=90, succeeded=90),
        ]
        source.streams = [
            [delta(status="completed", processed=100, succeeded=100, failed=0)]
        ]

        session = engine.track("J1", subscriber.on_update, subscriber.on_error)

        assert await settle(session) == TrackingState.SETTLED
        assert len(subscriber.errors) == 1
        assert "discarded" in str(subscriber.errors[0])
        assert subscriber.updates[-1].status == JobStatus.COMPLETED

    async def test_other_jobs_keep_working_after_a_failure(
        self, engine, source, subscriber
    ):
        source.snapshots = [
            NotFoundError("Job not found"),
            snapshot(status="completed", processed=100, succeeded=100),
        ]

        failed = engine.track("J0", subscriber.on_update, subscriber.on_error)
        assert await settle(failed) == TrackingState.FAILED

        ok = engine.track("J1", subscriber.on_update, subscriber.on_error)
        assert await settle(ok) == TrackingState.SETTLED


@pytest.mark.asyncio
class TestCacheAndCancellation:
    async def test_cache_hit_is_emitted_then_corrected(
        self, engine, source, subscriber, cache, wait_until
    ):
        cache.put("J1", snapshot(status="processing", processed=10, succeeded=10))
        source.snapshots = [snapshot(status="processing", processed=20, succeeded=20)]
        source.streams = [[HANG]]

        engine.track("J1", subscriber.on_update, subscriber.on_error)
        await wait_until(lambda: len(subscriber.updates) == 2)

        assert [job.stats.processed for job in subscriber.updates] == [10, 20]
        assert cache.get("J1").stats.processed == 20
        assert source.open_calls == 1

    async def test_untrack_is_idempotent_and_silences_callbacks(
        self, engine, source, subscriber, wait_until
    ):
        source.snapshots = [snapshot()]
        source.streams = [[HANG]]

        session = engine.track("J1", subscriber.on_update, subscriber.on_error)
        await wait_until(lambda: source.open_calls == 1)

        engine.untrack("J1")
        engine.untrack("J1")

        assert session.state == TrackingState.CANCELLED
        assert await settle(session) == TrackingState.CANCELLED
        await wait_until(lambda: source.closed_streams == 1)
        assert not engine.is_tracking("J1")
        assert len(subscriber.updates) == 1

    async def test_untrack_unknown_job_is_a_no_op(self, engine):
        engine.untrack("never-tracked")

    async def test_tracking_again_replaces_the_active_session(
        self, engine, source, subscriber, wait_until
    ):
        source.snapshots = [snapshot(), snapshot()]
        source.streams = [[HANG], [HANG]]

        first = engine.track("J1", subscriber.on_update)
        await wait_until(lambda: source.open_calls == 1)
        second = engine.track("J1", subscriber.on_update)

        assert first.state == TrackingState.CANCELLED
        assert engine.get_session("J1") is second
