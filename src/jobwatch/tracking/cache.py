"""Job status cache with TTL-based lazy expiry.

Keeps the last full snapshot of each tracked job for a short time so that a
new tracking session can show something before its first fetch resolves.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from .models import Job

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    """Cached snapshot of one job.

    Attributes:
        job_id: Id of the cached job
        snapshot: Last reconciled snapshot
        captured_at: Clock reading when the snapshot was stored
    """

    job_id: str
    snapshot: Job
    captured_at: float

    def is_expired(self, now: float, ttl_seconds: float) -> bool:
        return now - self.captured_at >= ttl_seconds


class JobStatusCache:
    """Per-job snapshot memo; entries are replaced wholesale, never mutated."""

    def __init__(
        self,
        ttl_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the cache.

        Args:
            ttl_seconds: How long a snapshot stays valid (default: 30)
            clock: Monotonic time source in seconds
        """
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}

    def get(self, job_id: str) -> Optional[Job]:
        """Return the cached snapshot, or None if absent or expired."""
        entry = self._entries.get(job_id)
        if entry is None:
            return None

        if entry.is_expired(self._clock(), self.ttl_seconds):
            logger.debug(f"Cache entry for job {job_id} expired")
            del self._entries[job_id]
            return None
        return entry.snapshot

    def put(self, job_id: str, snapshot: Job) -> None:
        self._entries[job_id] = CacheEntry(
            job_id=job_id, snapshot=snapshot, captured_at=self._clock()
        )

    def invalidate(self, job_id: str) -> None:
        self._entries.pop(job_id, None)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def get_stats(self) -> Dict[str, Any]:
        """Cache statistics for diagnostics."""
        now = self._clock()
        return {
            "entries": len(self._entries),
            "ttl_seconds": self.ttl_seconds,
            "expired": sum(
                1
                for entry in self._entries.values()
                if entry.is_expired(now, self.ttl_seconds)
            ),
        }
