"""Domain models for background PDF compilation jobs."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal

JobStatus = Literal["pending", "generating", "ready", "failed"]

TERMINAL_STATUSES: frozenset[str] = frozenset({"ready", "failed"})
ACTIVE_STATUSES: tuple[str, ...] = ("pending", "generating")

# Allowed forward edges; terminal states have none.
_TRANSITIONS: dict[str, frozenset[str]] = {
  "pending": frozenset({"generating"}),
  "generating": frozenset({"ready", "failed"}),
  "ready": frozenset(),
  "failed": frozenset(),
}


class InvalidTransitionError(Exception):
  """Raised when a job would leave a terminal state or move backwards."""


def utc_now() -> datetime:
  return datetime.now(UTC)


@dataclass(frozen=True)
class TokenUsage:
  """Token accounting for one text-generation call."""

  prompt_tokens: int = 0
  completion_tokens: int = 0
  total_tokens: int = 0

  @classmethod
  def from_provider(cls, usage: dict[str, Any] | None, *, prompt: str, response: str) -> TokenUsage:
    """Normalize provider usage, estimating roughly four characters per token when absent."""
    if not usage:
      return cls(total_tokens=math.ceil(len(prompt + response) / 4))

    prompt_tokens = int(usage.get("prompt_tokens") or 0)
    completion_tokens = int(usage.get("completion_tokens") or 0)
    total_tokens = int(usage.get("total_tokens") or 0) or prompt_tokens + completion_tokens
    if total_tokens == 0:
      total_tokens = math.ceil(len(prompt + response) / 4)
    return cls(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens, total_tokens=total_tokens)


@dataclass(frozen=True)
class CorrectionAttempt:
  """One compile-failure -> fix cycle."""

  attempt_number: int
  compiler_error_excerpt: str
  corrected_markup: str
  tokens_used: int


@dataclass
class CompilationJob:
  """Represents one PDF generation run for a document."""

  job_id: str
  document_id: str
  owner_id: str
  status: JobStatus = "pending"
  markup: str | None = None
  attempt_count: int = 0
  artifact_ref: str | None = None
  failure_message: str | None = None
  failure_reason: str | None = None
  tokens_used: int = 0
  corrections: list[CorrectionAttempt] = field(default_factory=list)
  created_at: datetime = field(default_factory=utc_now)
  completed_at: datetime | None = None

  @property
  def is_terminal(self) -> bool:
    return self.status in TERMINAL_STATUSES

  def transition(self, status: JobStatus) -> None:
    """Advance the status along the allowed forward edges."""
    if status not in _TRANSITIONS[self.status]:
      raise InvalidTransitionError(f"Job {self.job_id} cannot move from {self.status} to {status}.")
    self.status = status

  def set_markup(self, markup: str) -> None:
    self._ensure_mutable()
    self.markup = markup

  def record_compile(self) -> None:
    self._ensure_mutable()
    self.attempt_count += 1

  def add_tokens(self, tokens: int) -> None:
    self.tokens_used += max(tokens, 0)

  def record_correction(self, attempt: CorrectionAttempt) -> None:
    self._ensure_mutable()
    self.corrections.append(attempt)
    self.markup = attempt.corrected_markup
    self.add_tokens(attempt.tokens_used)

  def mark_ready(self, artifact_ref: str, completed_at: datetime | None = None) -> None:
    self.transition("ready")
    self.artifact_ref = artifact_ref
    self.completed_at = completed_at or utc_now()

  def mark_failed(self, message: str, reason: str, completed_at: datetime | None = None) -> None:
    self.transition("failed")
    self.failure_message = message
    self.failure_reason = reason
    self.completed_at = completed_at or utc_now()

  def _ensure_mutable(self) -> None:
    if self.is_terminal:
      raise InvalidTransitionError(f"Job {self.job_id} is {self.status} and can no longer change.")
