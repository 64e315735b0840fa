"""Postgres-backed status store using SQLAlchemy."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from rector.core.database import get_session_factory
from rector.jobs.models import ACTIVE_STATUSES, CompilationJob, CorrectionAttempt, JobStatus
from rector.pipeline.errors import JobAlreadyActiveError, PersistenceError
from rector.schema.pipeline import CompilationJobRow, CorrectionAttemptRow, Document, TokenUsageRow
from rector.storage.status_repo import JobStatusRecord, StatusStore

ACTIVE_JOB_INDEX = "ux_compilation_jobs_active_document"


def is_active_job_conflict(exc: IntegrityError) -> bool:
  """Return True when an insert collided with the one-active-job-per-document index."""
  return ACTIVE_JOB_INDEX in str(exc.orig)


class PostgresStatusStore(StatusStore):
  """Persist job status, corrections and token usage to Postgres."""

  def __init__(self) -> None:
    self._session_factory = get_session_factory()
    if self._session_factory is None:
      raise RuntimeError("Database not initialized")

  @asynccontextmanager
  async def _session(self, operation: str) -> AsyncIterator[AsyncSession]:
    # Normalize driver failures so callers only need to handle PersistenceError.
    try:
      async with self._session_factory() as session:
        yield session
    except SQLAlchemyError as exc:
      raise PersistenceError(f"{operation} failed: {exc}") from exc

  async def create_job(self, job: CompilationJob) -> None:
    async with self._session("create_job") as session:
      row = CompilationJobRow(job_id=job.job_id, document_id=job.document_id, owner_id=job.owner_id, status=job.status, attempt_count=job.attempt_count, tokens_used=job.tokens_used, created_at=job.created_at)
      session.add(row)
      try:
        await session.commit()
      except IntegrityError as exc:
        if not is_active_job_conflict(exc):
          raise
        await session.rollback()
        stmt = select(CompilationJobRow.job_id).where(CompilationJobRow.document_id == job.document_id, CompilationJobRow.status.in_(ACTIVE_STATUSES))
        active_job_id = (await session.execute(stmt)).scalar_one_or_none()
        raise JobAlreadyActiveError(job.document_id, active_job_id or "unknown") from exc

  async def set_status(self, job_id: str, status: JobStatus, *, attempt_count: int | None = None, tokens_used: int | None = None, reason: str | None = None, message: str | None = None, completed_at: datetime | None = None) -> None:
    values: dict[str, Any] = {"status": status}
    if attempt_count is not None:
      values["attempt_count"] = attempt_count
    if tokens_used is not None:
      values["tokens_used"] = tokens_used
    if reason is not None:
      values["failure_reason"] = reason
    if message is not None:
      values["failure_message"] = message
    if completed_at is not None:
      values["completed_at"] = completed_at

    async with self._session("set_status") as session:
      await session.execute(update(CompilationJobRow).where(CompilationJobRow.job_id == job_id).values(**values))
      await session.commit()

  async def set_artifact(self, job_id: str, document_id: str, artifact_ref: str, completed_at: datetime, *, attempt_count: int | None = None, tokens_used: int | None = None) -> None:
    values: dict[str, Any] = {"status": "ready", "artifact_ref": artifact_ref, "completed_at": completed_at}
    if attempt_count is not None:
      values["attempt_count"] = attempt_count
    if tokens_used is not None:
      values["tokens_used"] = tokens_used

    async with self._session("set_artifact") as session:
      # Job and document pointer move together so the newest artifact always wins.
      await session.execute(update(CompilationJobRow).where(CompilationJobRow.job_id == job_id).values(**values))
      await session.execute(update(Document).where(Document.document_id == document_id).values(artifact_ref=artifact_ref, artifact_generated_at=completed_at))
      await session.commit()

  async def record_correction(self, job_id: str, attempt: CorrectionAttempt) -> None:
    async with self._session("record_correction") as session:
      session.add(
        CorrectionAttemptRow(
          job_id=job_id,
          attempt_number=attempt.attempt_number,
          compiler_error_excerpt=attempt.compiler_error_excerpt,
          corrected_markup=attempt.corrected_markup,
          tokens_used=attempt.tokens_used,
        )
      )
      await session.commit()

  async def record_token_usage(self, owner_id: str, operation: str, tokens_used: int, metadata: dict[str, Any] | None = None) -> None:
    async with self._session("record_token_usage") as session:
      session.add(TokenUsageRow(owner_id=owner_id, operation_type=operation, tokens_used=tokens_used, metadata_json=metadata))
      await session.commit()

  async def get_structure_hints(self, document_id: str) -> dict[str, Any] | None:
    async with self._session("get_structure_hints") as session:
      stmt = select(Document.structure_hints).where(Document.document_id == document_id)
      hints = (await session.execute(stmt)).scalar_one_or_none()
      # An empty JSON object is the column default for documents parsed without hints.
      return hints or None

  async def get_job(self, job_id: str) -> JobStatusRecord | None:
    async with self._session("get_job") as session:
      row = await session.get(CompilationJobRow, job_id)
      if row is None:
        return None
      return self._row_to_record(row)

  async def fail_stale_jobs(self, created_before: datetime, *, reason: str, message: str) -> int:
    async with self._session("fail_stale_jobs") as session:
      stmt = (
        update(CompilationJobRow)
        .where(CompilationJobRow.status.in_(ACTIVE_STATUSES), CompilationJobRow.created_at < created_before)
        .values(status="failed", failure_reason=reason, failure_message=message, completed_at=func.now())
      )
      result = await session.execute(stmt)
      await session.commit()
      return result.rowcount or 0

  @staticmethod
  def _row_to_record(row: CompilationJobRow) -> JobStatusRecord:
    return JobStatusRecord(
      job_id=row.job_id,
      document_id=row.document_id,
      owner_id=row.owner_id,
      status=row.status,  # type: ignore[arg-type]
      attempt_count=row.attempt_count,
      artifact_ref=row.artifact_ref,
      failure_reason=row.failure_reason,
      failure_message=row.failure_message,
      created_at=row.created_at,
      completed_at=row.completed_at,
    )
