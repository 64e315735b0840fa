"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv

load_dotenv(override=False)

_LLM_PROVIDERS = {"gemini", "openrouter"}


@dataclass(frozen=True)
class Settings:
  """Typed settings for the Rector PDF pipeline service."""

  environment: str
  debug: bool
  allowed_origins: tuple[str, ...]
  log_dir: str
  log_max_bytes: int
  log_backup_count: int
  pg_dsn: str | None
  pg_connect_timeout: int
  pdf_bucket: str
  gcs_storage_host: str | None
  gcp_project_id: str | None
  llm_provider: str
  llm_model: str | None
  llm_base_url: str | None
  gemini_api_key: str | None
  openrouter_api_key: str | None
  max_correction_attempts: int
  generation_timeout_seconds: float
  compile_timeout_seconds: float
  upload_timeout_seconds: float
  compiler_output_cap_bytes: int
  pdflatex_path: str | None
  heartbeat_interval_seconds: float
  stale_job_seconds: float


@dataclass(frozen=True)
class DatabaseSettings:
  """Typed settings for database connectivity."""

  debug: bool
  pg_dsn: str | None
  pg_connect_timeout: int


def _parse_origins(raw: str | None) -> tuple[str, ...]:
  # Local development defaults to the Next.js dev server.
  if not raw:
    return ("http://localhost:3000",)

  origins = [origin.strip() for origin in raw.split(",") if origin.strip()]

  if not origins:
    raise ValueError("RECTOR_ALLOWED_ORIGINS must include at least one origin.")

  if "*" in origins:
    raise ValueError("RECTOR_ALLOWED_ORIGINS must not include wildcard origins.")

  return tuple(origins)


def _parse_bool(raw: str | None) -> bool:
  """Parse a boolean-ish string from environment variables."""

  if raw is None:
    return False

  normalized = raw.strip().lower()
  return normalized in {"1", "true", "yes", "on"}


def _positive_int(name: str, default: str) -> int:
  value = int(os.getenv(name, default))
  if value <= 0:
    raise ValueError(f"{name} must be a positive integer.")
  return value


def _positive_float(name: str, default: str) -> float:
  value = float(os.getenv(name, default))
  if value <= 0:
    raise ValueError(f"{name} must be a positive number.")
  return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  """Load settings once per process."""

  environment = os.getenv("RECTOR_ENV", "development").lower()

  # Toggle verbose error output and SQL echo in non-production environments.
  debug = _parse_bool(os.getenv("RECTOR_DEBUG"))

  log_max_bytes = _positive_int("RECTOR_LOG_MAX_BYTES", "5242880")  # 5MB default
  log_backup_count = int(os.getenv("RECTOR_LOG_BACKUP_COUNT", "10"))
  if log_backup_count < 0:
    raise ValueError("RECTOR_LOG_BACKUP_COUNT must be zero or a positive integer.")

  llm_provider = (os.getenv("RECTOR_LLM_PROVIDER") or "gemini").strip().lower()
  if llm_provider not in _LLM_PROVIDERS:
    raise ValueError(f"RECTOR_LLM_PROVIDER must be one of {sorted(_LLM_PROVIDERS)}.")

  # Zero correction attempts is allowed: compile once and fail fast.
  max_correction_attempts = int(os.getenv("RECTOR_MAX_CORRECTION_ATTEMPTS", "3"))
  if max_correction_attempts < 0:
    raise ValueError("RECTOR_MAX_CORRECTION_ATTEMPTS must be zero or a positive integer.")

  return Settings(
    environment=environment,
    debug=debug,
    allowed_origins=_parse_origins(os.getenv("RECTOR_ALLOWED_ORIGINS")),
    log_dir=os.getenv("RECTOR_LOG_DIR", "./logs").strip(),
    log_max_bytes=log_max_bytes,
    log_backup_count=log_backup_count,
    pg_dsn=os.getenv("RECTOR_PG_DSN") or os.getenv("DATABASE_URL"),
    pg_connect_timeout=_positive_int("RECTOR_PG_CONNECT_TIMEOUT", "5"),
    pdf_bucket=os.getenv("RECTOR_PDF_BUCKET", "rector"),
    gcs_storage_host=_optional_str(os.getenv("GCS_STORAGE_HOST")),
    gcp_project_id=_optional_str(os.getenv("GCP_PROJECT_ID")),
    llm_provider=llm_provider,
    llm_model=_optional_str(os.getenv("RECTOR_LLM_MODEL")),
    llm_base_url=_optional_str(os.getenv("RECTOR_LLM_BASE_URL")),
    gemini_api_key=_optional_str(os.getenv("GEMINI_API_KEY")),
    openrouter_api_key=_optional_str(os.getenv("OPENROUTER_API_KEY")),
    max_correction_attempts=max_correction_attempts,
    generation_timeout_seconds=_positive_float("RECTOR_GENERATION_TIMEOUT_SECONDS", "240"),
    compile_timeout_seconds=_positive_float("RECTOR_COMPILE_TIMEOUT_SECONDS", "120"),
    upload_timeout_seconds=_positive_float("RECTOR_UPLOAD_TIMEOUT_SECONDS", "60"),
    compiler_output_cap_bytes=_positive_int("RECTOR_COMPILER_OUTPUT_CAP_BYTES", "10485760"),
    pdflatex_path=_optional_str(os.getenv("RECTOR_PDFLATEX_PATH")),
    heartbeat_interval_seconds=_positive_float("RECTOR_HEARTBEAT_INTERVAL_SECONDS", "30"),
    stale_job_seconds=_positive_float("RECTOR_STALE_JOB_SECONDS", "1800"),
  )


@lru_cache(maxsize=1)
def get_database_settings() -> DatabaseSettings:
  """Load database settings without requiring web-runtime configuration."""
  # Keep database configuration isolated so migrations don't require unrelated env vars.
  debug = _parse_bool(os.getenv("RECTOR_DEBUG"))
  pg_connect_timeout = _positive_int("RECTOR_PG_CONNECT_TIMEOUT", "5")

  # Support fallback to DATABASE_URL for hosted Postgres providers.
  pg_dsn = os.getenv("RECTOR_PG_DSN") or os.getenv("DATABASE_URL")

  return DatabaseSettings(debug=debug, pg_dsn=pg_dsn, pg_connect_timeout=pg_connect_timeout)


def _optional_str(raw: str | None) -> str | None:
  if raw is None:
    return None
  value = raw.strip()
  if value == "":
    return None
  return value
