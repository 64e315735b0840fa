from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from rector.jobs.models import JobStatus


class _CamelModel(BaseModel):
  model_config = ConfigDict(populate_by_name=True)


class GeneratePdfRequest(BaseModel):
  """Structured resume to render; the shape is owned by the parser upstream."""

  document: dict[str, Any] = Field(description="Parsed resume JSON (personalInfo, education, experience, ...).")
  model_config = ConfigDict(extra="forbid")


class PdfJobAccepted(_CamelModel):
  """Acknowledgment that a run was scheduled; the outcome arrives on the event stream."""

  job_id: str = Field(alias="jobId")
  document_id: str = Field(alias="documentId")
  status: JobStatus


class JobStatusResponse(_CamelModel):
  """Persisted view of a compilation job."""

  job_id: str = Field(alias="jobId")
  document_id: str = Field(alias="documentId")
  status: JobStatus
  attempt_count: int = Field(alias="attemptCount")
  artifact_ref: str | None = Field(default=None, alias="artifactRef")
  failure_reason: str | None = Field(default=None, alias="failureReason")
  message: str | None = None
  created_at: datetime | None = Field(default=None, alias="createdAt")
  completed_at: datetime | None = Field(default=None, alias="completedAt")


class LatexRequest(_CamelModel):
  """Raw LaTeX submitted for direct compilation or validation."""

  latex_content: str | None = Field(default=None, alias="latexContent")
  file_name: str | None = Field(default=None, alias="fileName")
  model_config = ConfigDict(populate_by_name=True, extra="forbid")


class LatexValidationResponse(BaseModel):
  valid: bool
  message: str


class LatexStatusResponse(BaseModel):
  installed: bool
  message: str
