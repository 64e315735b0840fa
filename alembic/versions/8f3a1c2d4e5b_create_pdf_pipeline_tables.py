"""Create PDF pipeline tables.

Revision ID: 8f3a1c2d4e5b
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "8f3a1c2d4e5b"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
  """Upgrade schema."""
  op.create_table(
    "documents",
    sa.Column("document_id", sa.String(), nullable=False),
    sa.Column("owner_id", sa.String(), nullable=False),
    sa.Column("structure_hints", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    sa.Column("artifact_ref", sa.String(), nullable=True),
    sa.Column("artifact_generated_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.PrimaryKeyConstraint("document_id"),
  )
  op.create_index(op.f("ix_documents_owner_id"), "documents", ["owner_id"], unique=False)

  op.create_table(
    "compilation_jobs",
    sa.Column("job_id", sa.String(), nullable=False),
    sa.Column("document_id", sa.String(), nullable=False),
    sa.Column("owner_id", sa.String(), nullable=False),
    sa.Column("status", sa.String(), nullable=False),
    sa.Column("attempt_count", sa.Integer(), nullable=False),
    sa.Column("tokens_used", sa.Integer(), nullable=False),
    sa.Column("artifact_ref", sa.String(), nullable=True),
    sa.Column("failure_reason", sa.String(), nullable=True),
    sa.Column("failure_message", sa.Text(), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    sa.PrimaryKeyConstraint("job_id"),
  )
  op.create_index(op.f("ix_compilation_jobs_document_id"), "compilation_jobs", ["document_id"], unique=False)
  op.create_index(op.f("ix_compilation_jobs_owner_id"), "compilation_jobs", ["owner_id"], unique=False)
  # At most one pending/generating job per document.
  op.create_index("ux_compilation_jobs_active_document", "compilation_jobs", ["document_id"], unique=True, postgresql_where=sa.text("status IN ('pending', 'generating')"))

  op.create_table(
    "correction_attempts",
    sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
    sa.Column("job_id", sa.String(), nullable=False),
    sa.Column("attempt_number", sa.Integer(), nullable=False),
    sa.Column("compiler_error_excerpt", sa.Text(), nullable=False),
    sa.Column("corrected_markup", sa.Text(), nullable=False),
    sa.Column("tokens_used", sa.Integer(), nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.ForeignKeyConstraint(["job_id"], ["compilation_jobs.job_id"], ondelete="CASCADE"),
    sa.PrimaryKeyConstraint("id"),
  )
  op.create_index(op.f("ix_correction_attempts_job_id"), "correction_attempts", ["job_id"], unique=False)

  op.create_table(
    "token_usage",
    sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
    sa.Column("owner_id", sa.String(), nullable=False),
    sa.Column("operation_type", sa.String(), nullable=False),
    sa.Column("tokens_used", sa.Integer(), nullable=False),
    sa.Column("metadata", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.PrimaryKeyConstraint("id"),
  )
  op.create_index(op.f("ix_token_usage_owner_id"), "token_usage", ["owner_id"], unique=False)
  op.create_index(op.f("ix_token_usage_operation_type"), "token_usage", ["operation_type"], unique=False)


def downgrade() -> None:
  """Downgrade schema."""
  op.drop_index(op.f("ix_token_usage_operation_type"), table_name="token_usage")
  op.drop_index(op.f("ix_token_usage_owner_id"), table_name="token_usage")
  op.drop_table("token_usage")
  op.drop_index(op.f("ix_correction_attempts_job_id"), table_name="correction_attempts")
  op.drop_table("correction_attempts")
  op.drop_index("ux_compilation_jobs_active_document", table_name="compilation_jobs")
  op.drop_index(op.f("ix_compilation_jobs_owner_id"), table_name="compilation_jobs")
  op.drop_index(op.f("ix_compilation_jobs_document_id"), table_name="compilation_jobs")
  op.drop_table("compilation_jobs")
  op.drop_index(op.f("ix_documents_owner_id"), table_name="documents")
  op.drop_table("documents")
