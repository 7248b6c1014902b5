"""Reconciliation of job updates from the push and polling channels.

Both channels deliver updates out of order and with duplicates. Every update
goes through ``reconcile`` against the last accepted state of the job, which
decides whether it is accepted and what the merged snapshot is. ``reconcile``
is pure; storing and emitting the result is the engine's job.
"""

from dataclasses import dataclass
from typing import Optional, Union

from .models import Job, JobDelta, JobStats

Update = Union[Job, JobDelta]


@dataclass(frozen=True)
class Reconciliation:
    """Outcome of reconciling one update.

    Attributes:
        job: The new accepted state, or the unchanged current one if discarded
        accepted: Whether the update was accepted
        changed: Whether the accepted state differs from the previous one
        reason: Why the update was discarded
    """

    job: Optional[Job]
    accepted: bool
    changed: bool = False
    reason: Optional[str] = None


def _discard(current: Optional[Job], reason: str) -> Reconciliation:
    return Reconciliation(job=current, accepted=False, reason=reason)


def _merge_delta(current: Job, delta: JobDelta) -> Optional[Job]:
    """Merge the delta's stats, ETA and status onto ``current``.

    Returns None if the merged counters are inconsistent.
    """
    old = current.stats
    total = delta.total if delta.total is not None else old.total
    processed = delta.processed if delta.processed is not None else old.processed
    succeeded = delta.succeeded if delta.succeeded is not None else old.succeeded
    failed = delta.failed if delta.failed is not None else old.failed

    if total > 0:
        if processed > total:
            return None
        remaining = total - processed
    else:
        remaining = delta.remaining if delta.remaining is not None else old.remaining

    stats = JobStats(
        total=total,
        processed=processed,
        succeeded=succeeded,
        failed=failed,
        remaining=remaining,
    )
    if not stats.is_consistent():
        return None

    return current.model_copy(
        update={
            "stats": stats,
            "eta_seconds": (
                delta.eta_seconds
                if delta.eta_seconds is not None
                else current.eta_seconds
            ),
            "status": delta.status if delta.status is not None else current.status,
        }
    )


def reconcile(current: Optional[Job], update: Update) -> Reconciliation:
    """Reconcile ``update`` against the last accepted state of a job.

    Rules, in order:

    - a delta before any snapshot is discarded (nothing to merge onto)
    - once the job is terminal only a terminal full snapshot is accepted
    - an update that would decrease ``processed`` is discarded
    - an update that would move the status backwards is discarded
    - full snapshots replace everything; deltas merge stats, ETA and status
    - a result whose counters are inconsistent (``JobStats.is_consistent``)
      is discarded
    """
    is_snapshot = isinstance(update, Job)

    if current is None:
        if not is_snapshot:
            return _discard(None, "delta before first snapshot")
        if not update.stats.is_consistent():
            return _discard(None, "inconsistent counters")
        return Reconciliation(job=update, accepted=True, changed=True)

    if current.is_terminal and not (is_snapshot and update.is_terminal):
        return _discard(current, "job already terminal")

    processed = update.stats.processed if is_snapshot else update.processed
    if processed is not None and processed < current.stats.processed:
        return _discard(
            current,
            f"processed would decrease from {current.stats.processed} to {processed}",
        )

    status = update.status
    if status is not None and status.rank < current.status.rank:
        return _discard(
            current,
            f"status would regress from {current.status.value} to {status.value}",
        )

    if is_snapshot:
        if not update.stats.is_consistent():
            return _discard(current, "inconsistent counters")
        merged = update
    else:
        merged = _merge_delta(current, update)
        if merged is None:
            return _discard(current, "inconsistent counters")

    return Reconciliation(job=merged, accepted=True, changed=merged != current)
