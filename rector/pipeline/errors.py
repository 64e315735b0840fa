"""Failure taxonomy for the PDF pipeline."""

from __future__ import annotations


class PipelineError(Exception):
  """Base class for failures that end (or could end) a compilation job."""

  reason = "unexpected_error"
  user_message = "Unexpected error during PDF generation"


class GenerationError(PipelineError):
  """The initial markup generation call failed."""

  reason = "generation_error"
  user_message = "Failed to convert resume to LaTeX format"


class ToolchainMissingError(PipelineError):
  """No typesetting executable could be located; retrying cannot help."""

  reason = "toolchain_missing"
  user_message = "PDF compiler is not available on this server"


class RecoverableCompilationError(PipelineError):
  """The compiler ran but produced no artifact."""

  reason = "compilation_error"
  user_message = "PDF compilation failed"

  def __init__(self, excerpt: str) -> None:
    super().__init__(excerpt)
    self.excerpt = excerpt


class CompilationExhaustedError(PipelineError):
  """The compiler kept failing through every correction attempt."""

  reason = "compilation_exhausted"

  def __init__(self, excerpt: str, attempts: int) -> None:
    super().__init__(f"Compilation failed after {attempts} attempts: {excerpt}")
    self.excerpt = excerpt
    self.attempts = attempts

  @property
  def user_message(self) -> str:  # type: ignore[override]
    return f"PDF compilation failed after multiple attempts: {self.excerpt}"


class CorrectionServiceError(PipelineError):
  """The fix call itself failed; not retried."""

  reason = "correction_service_error"
  user_message = "Failed to correct LaTeX errors automatically"


class StorageError(PipelineError):
  """The artifact upload failed after a successful compile."""

  reason = "storage_error"
  user_message = "Failed to store PDF file"


class PersistenceError(PipelineError):
  """A status or artifact write failed; logged, never terminal on its own."""

  reason = "persistence_error"


class JobAlreadyActiveError(Exception):
  """A job for the document is still pending or generating."""

  def __init__(self, document_id: str, job_id: str) -> None:
    super().__init__(f"Document {document_id} already has an active job {job_id}.")
    self.document_id = document_id
    self.job_id = job_id
