"""Detached resume-to-PDF pipeline runs with per-document serialization."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from functools import partial
from typing import Any, Final, Protocol

from rector.ai.markup import MarkupResult, TextGenerationError
from rector.jobs.models import CompilationJob, JobStatus, utc_now
from rector.notifications.bus import NotificationBus
from rector.notifications.contracts import StatusEvent
from rector.pipeline.correction import CompiledArtifact, CorrectionLoop
from rector.pipeline.errors import GenerationError, JobAlreadyActiveError, PersistenceError, PipelineError, StorageError
from rector.services.storage_client import BlobStore
from rector.storage.status_repo import StatusStore
from rector.utils.ids import artifact_base_name, build_artifact_key, generate_job_id

logger = logging.getLogger(__name__)

GENERATION_OPERATION: Final[str] = "json_to_latex"
PDF_CONTENT_TYPE: Final[str] = "application/pdf"
UNEXPECTED_FAILURE_MESSAGE: Final[str] = PipelineError.user_message


class MarkupGenerator(Protocol):
  async def generate_markup(self, document: dict[str, Any], hints: dict[str, Any] | None) -> MarkupResult: ...


class PipelineOrchestrator:
  """Coordinates generation, compilation, upload and status fan-out for each job.

  ``trigger`` returns as soon as the run is scheduled. Every phase transition is
  persisted through the status store before it is published on the bus, and no
  failure ever propagates back to the caller that triggered the run.
  """

  def __init__(
    self,
    *,
    generator: MarkupGenerator,
    correction_loop: CorrectionLoop,
    blob_store: BlobStore,
    status_store: StatusStore,
    bus: NotificationBus,
    generation_timeout_seconds: float | None = None,
    upload_timeout_seconds: float | None = None,
    job_id_factory: Callable[[], str] = generate_job_id,
  ) -> None:
    self._generator = generator
    self._correction_loop = correction_loop
    self._blob_store = blob_store
    self._status_store = status_store
    self._bus = bus
    self._generation_timeout_seconds = generation_timeout_seconds
    self._upload_timeout_seconds = upload_timeout_seconds
    self._job_id_factory = job_id_factory
    self._active: dict[str, CompilationJob] = {}
    # Strong references keep detached runs alive until their done-callback fires.
    self._tasks: set[asyncio.Task[None]] = set()

  async def trigger(self, document_id: str, owner_id: str, source_document: dict[str, Any]) -> CompilationJob:
    """Persist a pending job, schedule its run and return it before any pipeline work starts.

    Raises JobAlreadyActiveError when the document already has a run in flight,
    either in this process or, through the store's active-job constraint, in another.
    """
    existing = self._active.get(document_id)
    if existing is not None:
      raise JobAlreadyActiveError(document_id, existing.job_id)

    job = CompilationJob(job_id=self._job_id_factory(), document_id=document_id, owner_id=owner_id)
    # The slot is claimed before the first await so concurrent triggers in this process see it.
    self._active[document_id] = job
    try:
      await self._status_store.create_job(job)
    except PersistenceError:
      logger.exception("Status store create_job failed for job=%s; running without a persisted row", job.job_id)
    except BaseException:
      # Includes JobAlreadyActiveError from the store when another process holds the document.
      self._active.pop(document_id, None)
      raise

    task = asyncio.create_task(self.run(job, source_document), name=f"pdf-pipeline:{job.job_id}")
    self._tasks.add(task)
    task.add_done_callback(partial(self._on_run_done, job))
    logger.info("PDF pipeline scheduled job=%s document=%s owner=%s", job.job_id, document_id, owner_id)
    return job

  def active_job(self, document_id: str) -> CompilationJob | None:
    return self._active.get(document_id)

  async def wait_idle(self) -> None:
    """Wait for every in-flight run to reach a terminal state."""
    while self._tasks:
      await asyncio.gather(*list(self._tasks), return_exceptions=True)

  async def run(self, job: CompilationJob, source_document: dict[str, Any]) -> None:
    """Drive a job created by trigger to ready or failed; never raises."""
    try:
      job.transition("generating")
      await self._announce(job, message="PDF generation started")

      hints = await self._load_hints(job)
      markup = await self._generate(job, source_document, hints)
      base_name = artifact_base_name(source_document)
      artifact = await self._correction_loop.compile_with_retries(markup, job, base_name=base_name)
      artifact_ref = await self._upload(job, source_document, artifact)
    except PipelineError as exc:
      logger.error("PDF pipeline failed job=%s reason=%s: %s", job.job_id, exc.reason, exc)
      await self._finish_failed(job, exc.reason, exc.user_message)
      return
    except Exception:
      logger.exception("Unexpected error in PDF pipeline job=%s", job.job_id)
      await self._finish_failed(job, PipelineError.reason, UNEXPECTED_FAILURE_MESSAGE)
      return

    await self._finish_ready(job, artifact_ref)

  async def _load_hints(self, job: CompilationJob) -> dict[str, Any] | None:
    try:
      hints = await self._status_store.get_structure_hints(job.document_id)
    except PersistenceError:
      logger.exception("Failed to fetch structure hints for document=%s; continuing without them", job.document_id)
      return None
    if not hints:
      logger.warning("No structure hints for document=%s; using template defaults", job.document_id)
    return hints

  async def _generate(self, job: CompilationJob, source_document: dict[str, Any], hints: dict[str, Any] | None) -> str:
    try:
      async with asyncio.timeout(self._generation_timeout_seconds):
        result = await self._generator.generate_markup(source_document, hints)
    except TimeoutError as exc:
      raise GenerationError(f"Markup generation timed out after {self._generation_timeout_seconds}s") from exc
    except TextGenerationError as exc:
      raise GenerationError(str(exc)) from exc
    except Exception as exc:
      logger.exception("Markup generator crashed job=%s", job.job_id)
      raise GenerationError(str(exc)) from exc

    job.set_markup(result.markup)
    job.add_tokens(result.usage.total_tokens)
    await self._persist(
      "record_token_usage",
      self._status_store.record_token_usage(job.owner_id, GENERATION_OPERATION, result.usage.total_tokens, {"jobId": job.job_id, "documentId": job.document_id}),
    )
    return result.markup

  async def _upload(self, job: CompilationJob, source_document: dict[str, Any], artifact: CompiledArtifact) -> str:
    key = build_artifact_key(source_document)
    metadata = {"X-Resume-Id": job.document_id, "X-User-Id": job.owner_id, "X-Job-Id": job.job_id}
    try:
      async with asyncio.timeout(self._upload_timeout_seconds):
        artifact_ref = await self._blob_store.put(key, artifact.pdf_bytes, PDF_CONTENT_TYPE, metadata)
    except TimeoutError as exc:
      raise StorageError(f"Upload timed out after {self._upload_timeout_seconds}s") from exc
    except Exception as exc:
      raise StorageError(str(exc)) from exc

    logger.info("PDF stored job=%s key=%s size=%s warnings=%s", job.job_id, artifact_ref, len(artifact.pdf_bytes), len(artifact.warnings))
    return artifact_ref

  async def _finish_ready(self, job: CompilationJob, artifact_ref: str) -> None:
    completed_at = utc_now()
    job.mark_ready(artifact_ref, completed_at)
    await self._persist(
      "set_artifact",
      self._status_store.set_artifact(job.job_id, job.document_id, artifact_ref, completed_at, attempt_count=job.attempt_count, tokens_used=job.tokens_used),
    )
    await self._publish(job, artifact_ref=artifact_ref, message="PDF generated successfully")
    logger.info("PDF pipeline completed job=%s attempts=%s corrections=%s tokens=%s", job.job_id, job.attempt_count, len(job.corrections), job.tokens_used)

  async def _finish_failed(self, job: CompilationJob, reason: str, message: str) -> None:
    if job.is_terminal:
      return
    if job.status == "pending":
      job.transition("generating")
    job.mark_failed(message, reason)
    await self._persist(
      "set_status",
      self._status_store.set_status(job.job_id, "failed", attempt_count=job.attempt_count, tokens_used=job.tokens_used, reason=reason, message=message, completed_at=job.completed_at),
    )
    await self._publish(job, message=message)

  async def _announce(self, job: CompilationJob, *, message: str) -> None:
    await self._persist("set_status", self._status_store.set_status(job.job_id, job.status))
    await self._publish(job, message=message)

  async def _publish(self, job: CompilationJob, *, artifact_ref: str | None = None, message: str | None = None) -> None:
    status: JobStatus = job.status
    event = StatusEvent(document_id=job.document_id, job_id=job.job_id, status=status, artifact_ref=artifact_ref, message=message)
    try:
      delivered = await self._bus.publish(job.owner_id, event)
    except Exception:  # noqa: BLE001
      logger.exception("Failed to publish %s for job=%s", status, job.job_id)
      return
    logger.debug("Published %s for job=%s to %s channel(s)", status, job.job_id, delivered)

  async def _persist(self, operation: str, write: Awaitable[None]) -> None:
    # Persistence lag is tolerated; the run continues and clients can still poll.
    try:
      await write
    except PersistenceError:
      logger.exception("Status store %s failed; continuing", operation)

  def _on_run_done(self, job: CompilationJob, task: asyncio.Task[None]) -> None:
    self._tasks.discard(task)
    if self._active.get(job.document_id) is job:
      del self._active[job.document_id]

    if task.cancelled():
      logger.warning("PDF pipeline task cancelled job=%s status=%s", job.job_id, job.status)
      return
    exc = task.exception()
    if exc is not None:
      logger.error("PDF pipeline task crashed job=%s: %s", job.job_id, exc, exc_info=exc)
