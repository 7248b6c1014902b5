"""
Job data models.

Pydantic models for job snapshots, progress deltas and submission receipts as
returned by the job service. Wire names are camelCase; ``importId`` is
accepted as an alias of ``jobId``.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    NonNegativeInt,
    model_validator,
)


class JobStatus(str, Enum):
    """Lifecycle status of a batch job."""

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def rank(self) -> int:
        """Progression order: queued < processing < any terminal status."""
        if self is JobStatus.QUEUED:
            return 0
        if self is JobStatus.PROCESSING:
            return 1
        return 2


TERMINAL_STATUSES = frozenset(
    {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELED}
)


class JobStats(BaseModel):
    """Row counters of a job."""

    model_config = ConfigDict(frozen=True)

    total: NonNegativeInt = 0
    processed: NonNegativeInt = 0
    succeeded: NonNegativeInt = 0
    failed: NonNegativeInt = 0
    remaining: NonNegativeInt = 0

    def is_consistent(self) -> bool:
        """``processed = succeeded + failed`` and ``remaining = total - processed``.

        Only enforced once ``total`` is known (non-zero).
        """
        if self.total == 0:
            return True
        return (
            self.succeeded + self.failed == self.processed
            and self.remaining == self.total - self.processed
        )


class JobLinks(BaseModel):
    """Report download links present on terminal snapshots."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    results_csv: Optional[str] = Field(None, alias="resultsCsv")
    errors_csv: Optional[str] = Field(None, alias="errorsCsv")


class Job(BaseModel):
    """Full snapshot of a job."""

    model_config = ConfigDict(
        populate_by_name=True, frozen=True, coerce_numbers_to_str=True
    )

    job_id: str = Field(
        ..., validation_alias=AliasChoices("jobId", "importId", "job_id")
    )
    status: JobStatus
    stats: JobStats = Field(default_factory=JobStats)
    eta_seconds: Optional[NonNegativeInt] = Field(
        None, validation_alias=AliasChoices("etaSeconds", "eta_seconds")
    )
    started_at: Optional[datetime] = Field(
        None, validation_alias=AliasChoices("startedAt", "started_at")
    )
    finished_at: Optional[datetime] = Field(
        None, validation_alias=AliasChoices("finishedAt", "finished_at")
    )
    updated_at: Optional[datetime] = Field(
        None, validation_alias=AliasChoices("updatedAt", "updated_at")
    )
    links: Optional[JobLinks] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def progress(self) -> float:
        """Fraction of rows processed, 0.0 while the total is unknown."""
        if self.stats.total == 0:
            return 0.0
        return min(1.0, self.stats.processed / self.stats.total)


class JobDelta(BaseModel):
    """Partial progress update pushed on the event stream.

    Absent fields leave the corresponding snapshot field untouched.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    processed: Optional[NonNegativeInt] = None
    succeeded: Optional[NonNegativeInt] = None
    failed: Optional[NonNegativeInt] = None
    remaining: Optional[NonNegativeInt] = None
    total: Optional[NonNegativeInt] = None
    eta_seconds: Optional[NonNegativeInt] = Field(
        None, validation_alias=AliasChoices("etaSeconds", "eta_seconds")
    )
    status: Optional[JobStatus] = None


class JobReceipt(BaseModel):
    """Response of a job submission."""

    model_config = ConfigDict(
        populate_by_name=True, frozen=True, coerce_numbers_to_str=True
    )

    job_id: str = Field(
        ..., validation_alias=AliasChoices("jobId", "importId", "job_id")
    )
    status: JobStatus
    received_at: Optional[datetime] = Field(
        None, validation_alias=AliasChoices("receivedAt", "received_at")
    )
    limits: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _collect_limits(cls, data: Any) -> Any:
        # older responses report maxRows at the top level
        if isinstance(data, dict) and "limits" not in data and "maxRows" in data:
            data = {**data, "limits": {"maxRows": data["maxRows"]}}
        return data

    @property
    def max_rows(self) -> Optional[int]:
        value = self.limits.get("maxRows")
        return int(value) if value is not None else None
