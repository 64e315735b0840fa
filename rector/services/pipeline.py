"""Process-wide wiring for the PDF pipeline collaborators."""

from __future__ import annotations

from functools import lru_cache

from rector.ai.markup import TextGenerationClient
from rector.ai.providers import build_model
from rector.config import get_settings
from rector.notifications.bus import NotificationBus
from rector.pipeline.correction import CorrectionLoop
from rector.pipeline.orchestrator import PipelineOrchestrator
from rector.rendering.compiler import DocumentCompiler
from rector.services.storage_client import StorageClient, build_storage_client
from rector.storage.postgres_status_repo import PostgresStatusStore
from rector.storage.status_repo import StatusStore


@lru_cache(maxsize=1)
def get_notification_bus() -> NotificationBus:
  """Return the single bus shared by the event stream and the orchestrator."""
  settings = get_settings()
  return NotificationBus(heartbeat_interval_seconds=settings.heartbeat_interval_seconds)


@lru_cache(maxsize=1)
def get_document_compiler() -> DocumentCompiler:
  """Return the compiler; its toolchain lookup is cached for the process."""
  settings = get_settings()
  return DocumentCompiler(configured_path=settings.pdflatex_path, output_cap_bytes=settings.compiler_output_cap_bytes, pass_timeout_seconds=settings.compile_timeout_seconds)


@lru_cache(maxsize=1)
def get_status_store() -> StatusStore:
  return PostgresStatusStore()


@lru_cache(maxsize=1)
def get_storage_client() -> StorageClient:
  return build_storage_client(get_settings())


@lru_cache(maxsize=1)
def get_orchestrator() -> PipelineOrchestrator:
  """Build the orchestrator and its collaborators from settings."""
  settings = get_settings()
  text_client = TextGenerationClient(build_model(settings))
  status_store = get_status_store()
  correction_loop = CorrectionLoop(
    get_document_compiler(),
    text_client,
    status_store=status_store,
    max_attempts=settings.max_correction_attempts,
    fix_timeout_seconds=settings.generation_timeout_seconds,
  )
  return PipelineOrchestrator(
    generator=text_client,
    correction_loop=correction_loop,
    blob_store=get_storage_client(),
    status_store=status_store,
    bus=get_notification_bus(),
    generation_timeout_seconds=settings.generation_timeout_seconds,
    upload_timeout_seconds=settings.upload_timeout_seconds,
  )
