"""Process-wide logging setup shared by the service and uvicorn."""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from rector.config import Settings

_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
_LOG_FILE_NAME = "rector.log"
_HANDLER_MARKER = "_rector_handler"


def _initialize_logging(settings: Settings) -> None:
  """Attach console and rotating file handlers to the root logger once."""
  root = logging.getLogger()
  level = logging.DEBUG if settings.debug else logging.INFO
  root.setLevel(level)

  # Lifespan can run more than once under reloaders; never stack duplicate handlers.
  if any(getattr(handler, _HANDLER_MARKER, False) for handler in root.handlers):
    return

  formatter = logging.Formatter(_LOG_FORMAT)

  console_handler = logging.StreamHandler(sys.stdout)
  console_handler.setFormatter(formatter)
  setattr(console_handler, _HANDLER_MARKER, True)
  root.addHandler(console_handler)

  try:
    log_dir = Path(settings.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    file_handler = RotatingFileHandler(log_dir / _LOG_FILE_NAME, maxBytes=settings.log_max_bytes, backupCount=settings.log_backup_count, encoding="utf-8")
  except OSError as exc:
    # Read-only containers still get console logs.
    logging.getLogger(__name__).warning("File logging disabled log_dir=%s error=%s", settings.log_dir, exc)
  else:
    file_handler.setFormatter(formatter)
    setattr(file_handler, _HANDLER_MARKER, True)
    root.addHandler(file_handler)

  # Route uvicorn output through the same handlers.
  for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
    uvicorn_logger = logging.getLogger(name)
    uvicorn_logger.handlers = []
    uvicorn_logger.propagate = True

  # SQL echo is noisy; keep it at warning unless debugging.
  logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if settings.debug else logging.WARNING)
