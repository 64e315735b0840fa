"""Shared FastAPI dependencies for caller identity and pipeline collaborators."""

from __future__ import annotations

from fastapi import Header, HTTPException, status

from rector.notifications.bus import NotificationBus
from rector.pipeline.orchestrator import PipelineOrchestrator
from rector.rendering.compiler import DocumentCompiler
from rector.services.pipeline import get_document_compiler, get_notification_bus, get_orchestrator, get_status_store
from rector.storage.status_repo import StatusStore


async def get_owner_id(x_user_id: str | None = Header(default=None, alias="X-User-Id")) -> str:
  """Resolve the calling user; authentication happens upstream of this service."""
  owner_id = (x_user_id or "").strip()
  if not owner_id:
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-User-Id header.")
  return owner_id


def get_pipeline() -> PipelineOrchestrator:
  return get_orchestrator()


def get_bus() -> NotificationBus:
  return get_notification_bus()


def get_store() -> StatusStore:
  return get_status_store()


def get_compiler() -> DocumentCompiler:
  return get_document_compiler()
