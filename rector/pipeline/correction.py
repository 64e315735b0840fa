"""Bounded compile -> fix -> recompile cycle."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Protocol

from rector.ai.markup import MarkupResult, TextGenerationError
from rector.jobs.models import CompilationJob, CorrectionAttempt
from rector.pipeline.errors import CompilationExhaustedError, CorrectionServiceError, PersistenceError, RecoverableCompilationError
from rector.rendering.compiler import GENERIC_ERROR_EXCERPT, CompilationResult
from rector.storage.status_repo import StatusStore

logger = logging.getLogger(__name__)

CORRECTION_OPERATION = "latex_error_correction"


class MarkupCompiler(Protocol):
  async def compile(self, markup: str, job_id: str, *, base_name: str = "document") -> CompilationResult: ...


class MarkupFixer(Protocol):
  async def fix_markup(self, markup: str, compiler_error: str) -> MarkupResult: ...


@dataclass(frozen=True)
class CompiledArtifact:
  """A successfully compiled PDF and the markup that produced it."""

  pdf_bytes: bytes
  markup: str
  compile_count: int
  warnings: tuple[str, ...] = ()


class CorrectionLoop:
  """Compiles markup, feeding compiler errors back to the model for at most max_attempts fixes."""

  def __init__(
    self,
    compiler: MarkupCompiler,
    fixer: MarkupFixer,
    *,
    status_store: StatusStore | None = None,
    max_attempts: int = 3,
    fix_timeout_seconds: float | None = None,
    base_name: str = "document",
  ) -> None:
    if max_attempts < 0:
      raise ValueError("max_attempts must be zero or a positive integer.")
    self._compiler = compiler
    self._fixer = fixer
    self._status_store = status_store
    self._max_attempts = max_attempts
    self._fix_timeout_seconds = fix_timeout_seconds
    self._base_name = base_name

  @property
  def max_attempts(self) -> int:
    return self._max_attempts

  async def compile_with_retries(self, markup: str, job: CompilationJob, *, base_name: str | None = None) -> CompiledArtifact:
    """Compile until a PDF is produced or the correction budget is spent.

    Raises ToolchainMissingError straight from the compiler, CorrectionServiceError
    when a fix call fails, and CompilationExhaustedError after max_attempts + 1
    failed compiles.
    """
    attempt = 0
    while True:
      job.record_compile()
      result = await self._compiler.compile(markup, job.job_id, base_name=base_name or self._base_name)

      if result.success and result.pdf_bytes is not None:
        if attempt:
          logger.info("Job %s compiled after %s correction(s)", job.job_id, attempt)
        return CompiledArtifact(pdf_bytes=result.pdf_bytes, markup=markup, compile_count=job.attempt_count, warnings=result.warnings)

      failure = RecoverableCompilationError(result.error_excerpt or GENERIC_ERROR_EXCERPT)
      excerpt = failure.excerpt
      logger.warning("Job %s compile %s failed: %s", job.job_id, job.attempt_count, excerpt)

      if attempt == self._max_attempts:
        raise CompilationExhaustedError(excerpt, job.attempt_count) from failure

      fixed = await self._request_fix(job, markup, excerpt)
      attempt += 1
      correction = CorrectionAttempt(attempt_number=attempt, compiler_error_excerpt=excerpt, corrected_markup=fixed.markup, tokens_used=fixed.usage.total_tokens)
      job.record_correction(correction)
      markup = fixed.markup
      await self._persist_correction(job, correction)

  async def _request_fix(self, job: CompilationJob, markup: str, excerpt: str) -> MarkupResult:
    try:
      async with asyncio.timeout(self._fix_timeout_seconds):
        return await self._fixer.fix_markup(markup, excerpt)
    except TimeoutError as exc:
      logger.error("Job %s fix call timed out after %ss", job.job_id, self._fix_timeout_seconds)
      raise CorrectionServiceError(f"Fix call timed out after {self._fix_timeout_seconds}s") from exc
    except TextGenerationError as exc:
      logger.error("Job %s fix call failed: %s", job.job_id, exc)
      raise CorrectionServiceError(str(exc)) from exc
    except Exception as exc:
      logger.exception("Job %s fix call raised unexpectedly", job.job_id)
      raise CorrectionServiceError(str(exc) or type(exc).__name__) from exc

  async def _persist_correction(self, job: CompilationJob, correction: CorrectionAttempt) -> None:
    if self._status_store is None:
      return

    try:
      await self._status_store.record_correction(job.job_id, correction)
    except PersistenceError:
      logger.exception("Failed to persist correction %s for job %s", correction.attempt_number, job.job_id)

    try:
      await self._status_store.record_token_usage(
        job.owner_id,
        CORRECTION_OPERATION,
        correction.tokens_used,
        {"jobId": job.job_id, "documentId": job.document_id, "attempt": correction.attempt_number, "error": correction.compiler_error_excerpt[:200]},
      )
    except PersistenceError:
      logger.exception("Failed to record correction tokens for job %s", job.job_id)
