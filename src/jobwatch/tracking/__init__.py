"""Job tracking: models, snapshot cache, reconciliation and the sync engine."""

from .cache import JobStatusCache
from .engine import StatusSyncEngine, SyncConfig, TrackingSession, TrackingState
from .models import Job, JobDelta, JobReceipt, JobStats, JobStatus
from .reconciler import Reconciliation, reconcile

__all__ = [
    "Job",
    "JobDelta",
    "JobReceipt",
    "JobStats",
    "JobStatus",
    "JobStatusCache",
    "Reconciliation",
    "reconcile",
    "StatusSyncEngine",
    "SyncConfig",
    "TrackingSession",
    "TrackingState",
]
