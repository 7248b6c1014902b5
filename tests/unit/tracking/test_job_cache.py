"""Tests for the TTL job status cache with a controllable clock."""

import pytest

from jobwatch.tracking.cache import JobStatusCache
from jobwatch.tracking.models import Job


class FakeClock:
    def __init__(self, now=100.0):
        self.now = now

    def __call__(self):
        return self.now


def job(job_id="J1", processed=0):
    return Job.model_validate(
        {
            "jobId": job_id,
            "status": "processing",
            "stats": {
                "total": 10,
                "processed": processed,
                "succeeded": processed,
                "failed": 0,
                "remaining": 10 - processed,
            },
        }
    )


class TestJobStatusCache:
    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def cache(self, clock):
        return JobStatusCache(ttl_seconds=30, clock=clock)

    def test_miss_returns_none(self, cache):
        assert cache.get("J1") is None

    def test_hit_within_ttl(self, cache, clock):
        cache.put("J1", job())
        clock.now += 29.9

        assert cache.get("J1") == job()

    def test_entry_expires_lazily_at_ttl(self, cache, clock):
        cache.put("J1", job())
        clock.now += 30

        assert cache.get("J1") is None
        assert len(cache) == 0

    def test_put_replaces_and_restarts_ttl(self, cache, clock):
        cache.put("J1", job(processed=1))
        clock.now += 20
        cache.put("J1", job(processed=2))
        clock.now += 20

        assert cache.get("J1").stats.processed == 2

    def test_keys_are_independent(self, cache):
        cache.put("J1", job("J1", processed=1))
        cache.put("J2", job("J2", processed=5))

        cache.invalidate("J1")

        assert cache.get("J1") is None
        assert cache.get("J2").stats.processed == 5

    def test_clear_and_stats(self, cache, clock):
        cache.put("J1", job("J1"))
        cache.put("J2", job("J2"))
        clock.now += 31

        assert cache.get_stats() == {"entries": 2, "ttl_seconds": 30, "expired": 2}

        cache.clear()
        assert len(cache) == 0

    def test_ttl_must_be_positive(self):
        with pytest.raises(ValueError):
            JobStatusCache(ttl_seconds=0)
