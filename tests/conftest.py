"""Shared fixtures and in-memory collaborators for pipeline tests."""

from __future__ import annotations

import os

os.environ.setdefault("RECTOR_ENV", "test")
os.environ.setdefault("RECTOR_LOG_DIR", "/tmp/rector-test-logs")

from datetime import datetime  # noqa: E402
from typing import Any  # noqa: E402

import pytest  # noqa: E402

from rector.ai.markup import MarkupResult  # noqa: E402
from rector.jobs.models import ACTIVE_STATUSES, CompilationJob, CorrectionAttempt, TokenUsage  # noqa: E402
from rector.notifications.contracts import ChannelClosedError  # noqa: E402
from rector.pipeline.errors import JobAlreadyActiveError, PersistenceError  # noqa: E402
from rector.rendering.compiler import CompilationResult  # noqa: E402
from rector.storage.status_repo import JobStatusRecord  # noqa: E402

VALID_MARKUP = "\\documentclass{article}\n\\begin{document}\nJane Doe\n\\end{document}\n"
PDF_BYTES = b"%PDF-1.5\n%fake\n"


@pytest.fixture
def anyio_backend() -> str:
  return "asyncio"


class FakeStatusStore:
  """Records every write in order; selected operations can be made to fail.

  Mirrors the one-active-job-per-document index, so stores shared between
  orchestrators reject a second pending or generating job for a document.
  """

  def __init__(self, timeline: list[tuple[str, ...]] | None = None) -> None:
    self.timeline = timeline if timeline is not None else []
    self.records: dict[str, JobStatusRecord] = {}
    self.hints: dict[str, dict[str, Any]] = {}
    self.corrections: list[tuple[str, CorrectionAttempt]] = []
    self.token_usage: list[tuple[str, str, int, dict[str, Any] | None]] = []
    self.artifacts: list[tuple[str, str, str]] = []
    self.failing: set[str] = set()

  def _check(self, operation: str) -> None:
    if operation in self.failing:
      raise PersistenceError(f"{operation} failed: database unavailable")

  async def create_job(self, job: CompilationJob) -> None:
    self._check("create_job")
    for record in self.records.values():
      if record.document_id == job.document_id and record.status in ACTIVE_STATUSES:
        raise JobAlreadyActiveError(job.document_id, record.job_id)
    self.timeline.append(("persist", job.status))
    self.records[job.job_id] = JobStatusRecord(job.job_id, job.document_id, job.owner_id, job.status, 0, None, None, None, job.created_at, None)

  async def set_status(self, job_id: str, status: str, *, attempt_count: int | None = None, tokens_used: int | None = None, reason: str | None = None, message: str | None = None, completed_at: datetime | None = None) -> None:
    self._check("set_status")
    self.timeline.append(("persist", status))
    record = self.records.get(job_id)
    if record is not None:
      self.records[job_id] = JobStatusRecord(record.job_id, record.document_id, record.owner_id, status, attempt_count if attempt_count is not None else record.attempt_count, record.artifact_ref, reason or record.failure_reason, message or record.failure_message, record.created_at, completed_at or record.completed_at)

  async def set_artifact(self, job_id: str, document_id: str, artifact_ref: str, completed_at: datetime, *, attempt_count: int | None = None, tokens_used: int | None = None) -> None:
    self._check("set_artifact")
    self.timeline.append(("persist", "ready"))
    self.artifacts.append((job_id, document_id, artifact_ref))
    record = self.records.get(job_id)
    if record is not None:
      self.records[job_id] = JobStatusRecord(record.job_id, record.document_id, record.owner_id, "ready", attempt_count or record.attempt_count, artifact_ref, None, None, record.created_at, completed_at)

  async def fail_stale_jobs(self, created_before: datetime, *, reason: str, message: str) -> int:
    self._check("fail_stale_jobs")
    stale = [record for record in self.records.values() if record.status in ACTIVE_STATUSES and record.created_at < created_before]
    for record in stale:
      self.records[record.job_id] = JobStatusRecord(record.job_id, record.document_id, record.owner_id, "failed", record.attempt_count, None, reason, message, record.created_at, created_before)
    return len(stale)

  async def record_correction(self, job_id: str, attempt: CorrectionAttempt) -> None:
    self._check("record_correction")
    self.corrections.append((job_id, attempt))

  async def record_token_usage(self, owner_id: str, operation: str, tokens_used: int, metadata: dict[str, Any] | None = None) -> None:
    self._check("record_token_usage")
    self.token_usage.append((owner_id, operation, tokens_used, metadata))

  async def get_structure_hints(self, document_id: str) -> dict[str, Any] | None:
    self._check("get_structure_hints")
    return self.hints.get(document_id)

  async def get_job(self, job_id: str) -> JobStatusRecord | None:
    self._check("get_job")
    return self.records.get(job_id)


class RecordingChannel:
  """Channel that keeps every frame it accepted; set ``broken`` to simulate a dropped connection."""

  def __init__(self, timeline: list[tuple[str, ...]] | None = None) -> None:
    self.timeline = timeline
    self.payloads: list[bytes] = []
    self.heartbeats = 0
    self.broken = False
    self.closed = False

  async def send(self, payload: bytes) -> None:
    if self.broken or self.closed:
      raise ChannelClosedError("connection dropped")
    self.payloads.append(payload)
    if self.timeline is not None:
      self.timeline.append(("publish", payload.decode()))

  async def send_heartbeat(self) -> None:
    if self.broken or self.closed:
      raise ChannelClosedError("connection dropped")
    self.heartbeats += 1

  async def close(self) -> None:
    self.closed = True


class ScriptedCompiler:
  """Returns queued results in order, repeating the last one once the queue runs dry."""

  def __init__(self, *results: CompilationResult | Exception) -> None:
    self._results = list(results)
    self.calls: list[str] = []
    self.base_names: list[str] = []

  async def compile(self, markup: str, job_id: str, *, base_name: str = "document") -> CompilationResult:
    self.calls.append(markup)
    self.base_names.append(base_name)
    outcome = self._results.pop(0) if len(self._results) > 1 else self._results[0]
    if isinstance(outcome, Exception):
      raise outcome
    return outcome


class ScriptedTextClient:
  """Text client double with per-call token costs and optional failures."""

  def __init__(self, *, markup: str = VALID_MARKUP, generate_error: Exception | None = None, fix_error: Exception | None = None, generate_tokens: int = 120, fix_tokens: int = 40) -> None:
    self.markup = markup
    self.generate_error = generate_error
    self.fix_error = fix_error
    self.generate_tokens = generate_tokens
    self.fix_tokens = fix_tokens
    self.generate_calls: list[tuple[dict[str, Any], dict[str, Any] | None]] = []
    self.fix_calls: list[tuple[str, str]] = []

  async def generate_markup(self, document: dict[str, Any], hints: dict[str, Any] | None) -> MarkupResult:
    self.generate_calls.append((document, hints))
    if self.generate_error is not None:
      raise self.generate_error
    return MarkupResult(markup=self.markup, usage=TokenUsage(total_tokens=self.generate_tokens))

  async def fix_markup(self, markup: str, compiler_error: str) -> MarkupResult:
    self.fix_calls.append((markup, compiler_error))
    if self.fix_error is not None:
      raise self.fix_error
    fixed = markup.replace("\\end{document}", f"% fix {len(self.fix_calls)}\n\\end{{document}}")
    return MarkupResult(markup=fixed, usage=TokenUsage(total_tokens=self.fix_tokens))


class FakeBlobStore:
  def __init__(self, error: Exception | None = None) -> None:
    self.error = error
    self.puts: list[tuple[str, bytes, str, dict[str, str]]] = []

  async def put(self, key: str, data: bytes, content_type: str, metadata: dict[str, str]) -> str:
    if self.error is not None:
      raise self.error
    self.puts.append((key, data, content_type, metadata))
    return key


def compile_ok(warnings: tuple[str, ...] = ()) -> CompilationResult:
  return CompilationResult(success=True, pdf_bytes=PDF_BYTES, warnings=warnings, exit_codes=(0, 0))


def compile_failed(excerpt: str = "Undefined control sequence.") -> CompilationResult:
  return CompilationResult(success=False, error_excerpt=excerpt, exit_codes=(1,))


@pytest.fixture
def timeline() -> list[tuple[str, ...]]:
  return []


@pytest.fixture
def status_store(timeline) -> FakeStatusStore:
  return FakeStatusStore(timeline)


@pytest.fixture
def blob_store() -> FakeBlobStore:
  return FakeBlobStore()


@pytest.fixture
def sample_document() -> dict[str, Any]:
  return {
    "personalInfo": {"firstName": "Jane", "lastName": "Doe", "email": "jane@example.com"},
    "experience": [{"company": "Acme", "title": "Engineer", "startDate": "2021-01", "endDate": "Present"}],
    "education": [{"institution": "State University", "degree": "BSc Computer Science"}],
  }

