import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI

from rector.core.database import dispose_engine
from rector.core.logging import _initialize_logging
from rector.jobs.models import utc_now

STALE_JOB_REASON = "interrupted"
STALE_JOB_MESSAGE = "PDF generation was interrupted before it finished. Please try again."


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
  """Set up logging and storage on startup; drain the pipeline on shutdown."""
  from rector.config import get_settings
  from rector.services.pipeline import get_document_compiler, get_notification_bus, get_orchestrator, get_status_store, get_storage_client

  settings = get_settings()
  logger = logging.getLogger("rector.core.lifespan")

  try:
    _initialize_logging(settings)
    logger.info("Startup complete - logging verified.")
    # Ensure the PDF bucket exists before the first upload.
    try:
      storage_client = get_storage_client()
      await storage_client.ensure_bucket()
      logger.info("PDF bucket ensured: %s", storage_client.bucket_name)
    except Exception as exc:  # noqa: BLE001
      logger.warning("Failed to ensure PDF bucket at startup: %s", exc)

    # Surface a missing TeX install at boot instead of on the first job.
    if not get_document_compiler().is_available():
      logger.warning("pdflatex not found; PDF jobs will fail until TeX Live or MacTeX is installed.")

    # Rows left pending or generating by a crashed worker would block the document forever.
    try:
      cutoff = utc_now() - timedelta(seconds=settings.stale_job_seconds)
      failed = await get_status_store().fail_stale_jobs(cutoff, reason=STALE_JOB_REASON, message=STALE_JOB_MESSAGE)
      if failed:
        logger.warning("Marked %s stale PDF job(s) as failed.", failed)
    except Exception as exc:  # noqa: BLE001
      logger.warning("Failed to reconcile stale PDF jobs at startup: %s", exc)

  except Exception:
    # Log initialization failures but allow the app to continue starting.
    logger.warning("Initial startup checks failed; continuing.", exc_info=True)

  yield

  # Let in-flight runs reach a terminal state, then close every open stream.
  if get_orchestrator.cache_info().currsize:
    await get_orchestrator().wait_idle()
  await get_notification_bus().close()
  await dispose_engine()
  logger.info("Shutdown complete.")
