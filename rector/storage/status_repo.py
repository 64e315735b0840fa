"""Storage interface for compilation job status."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

from rector.jobs.models import CompilationJob, CorrectionAttempt, JobStatus


@dataclass(frozen=True)
class JobStatusRecord:
  """Persisted view of a compilation job used by status polling."""

  job_id: str
  document_id: str
  owner_id: str
  status: JobStatus
  attempt_count: int
  artifact_ref: str | None
  failure_reason: str | None
  failure_message: str | None
  created_at: datetime | None
  completed_at: datetime | None


class StatusStore(Protocol):
  """Persistence contract the pipeline depends on.

  Every write must be committed before the awaitable returns so a publish that
  follows it can never advertise a status a reconnecting client cannot read back.
  Implementations raise PersistenceError on failure.
  """

  async def create_job(self, job: CompilationJob) -> None:
    """Persist a freshly triggered job.

    Raises JobAlreadyActiveError when another pending or generating job already
    exists for the document.
    """

  async def set_status(self, job_id: str, status: JobStatus, *, attempt_count: int | None = None, tokens_used: int | None = None, reason: str | None = None, message: str | None = None, completed_at: datetime | None = None) -> None:
    """Write a status transition."""

  async def set_artifact(self, job_id: str, document_id: str, artifact_ref: str, completed_at: datetime, *, attempt_count: int | None = None, tokens_used: int | None = None) -> None:
    """Mark the job ready and point the document at its new artifact."""

  async def record_correction(self, job_id: str, attempt: CorrectionAttempt) -> None:
    """Append one correction attempt to the job history."""

  async def record_token_usage(self, owner_id: str, operation: str, tokens_used: int, metadata: dict[str, Any] | None = None) -> None:
    """Append a token ledger entry for later accounting."""

  async def get_structure_hints(self, document_id: str) -> dict[str, Any] | None:
    """Return layout hints captured when the document was parsed."""

  async def get_job(self, job_id: str) -> JobStatusRecord | None:
    """Fetch a job by identifier."""

  async def fail_stale_jobs(self, created_before: datetime, *, reason: str, message: str) -> int:
    """Mark pending or generating jobs created before the cutoff as failed; returns how many."""
