from __future__ import annotations

import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text, func, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from rector.core.database import Base


class Document(Base):
  """Parsed resume owned by a user; the pipeline reads hints and writes the artifact ref."""

  __tablename__ = "documents"

  document_id: Mapped[str] = mapped_column(String, primary_key=True)
  owner_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
  structure_hints: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
  artifact_ref: Mapped[str | None] = mapped_column(String, nullable=True)
  artifact_generated_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class CompilationJobRow(Base):
  __tablename__ = "compilation_jobs"
  __table_args__ = (Index("ux_compilation_jobs_active_document", "document_id", unique=True, postgresql_where=text("status IN ('pending', 'generating')")),)

  job_id: Mapped[str] = mapped_column(String, primary_key=True)
  document_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
  owner_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
  status: Mapped[str] = mapped_column(String, nullable=False)
  attempt_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  tokens_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  artifact_ref: Mapped[str | None] = mapped_column(String, nullable=True)
  failure_reason: Mapped[str | None] = mapped_column(String, nullable=True)
  failure_message: Mapped[str | None] = mapped_column(Text, nullable=True)
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
  updated_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
  completed_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class CorrectionAttemptRow(Base):
  __tablename__ = "correction_attempts"

  id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  job_id: Mapped[str] = mapped_column(ForeignKey("compilation_jobs.job_id", ondelete="CASCADE"), nullable=False, index=True)
  attempt_number: Mapped[int] = mapped_column(Integer, nullable=False)
  compiler_error_excerpt: Mapped[str] = mapped_column(Text, nullable=False)
  corrected_markup: Mapped[str] = mapped_column(Text, nullable=False)
  tokens_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class TokenUsageRow(Base):
  """Append-only ledger of text-generation token spend per owner."""

  __tablename__ = "token_usage"

  id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  owner_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
  operation_type: Mapped[str] = mapped_column(String, nullable=False, index=True)
  tokens_used: Mapped[int] = mapped_column(Integer, nullable=False)
  metadata_json: Mapped[dict | None] = mapped_column("metadata", JSONB, nullable=True)
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
