"""Identifier utilities."""

from __future__ import annotations

import re
import time
import uuid

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9_-]+")


def generate_job_id() -> str:
  """Return a new job identifier."""
  return str(uuid.uuid4())


def _key_part(value: object) -> str:
  return _UNSAFE_KEY_CHARS.sub("", str(value or "").strip().replace(" ", "_"))


def file_base_name(value: object, default: str = "document") -> str:
  """Return a filesystem and header safe base name, falling back to the default."""
  return _key_part(value) or default


def artifact_base_name(document: dict[str, object]) -> str:
  """Return <First>_<Last>_Resume from personalInfo, or document_Resume when the name is missing."""
  personal = document.get("personalInfo")
  personal = personal if isinstance(personal, dict) else {}
  name = "_".join(part for part in (_key_part(personal.get("firstName")), _key_part(personal.get("lastName"))) if part)
  return f"{name or 'document'}_Resume"


def build_artifact_key(document: dict[str, object], *, now_ms: int | None = None) -> str:
  """Return the blob key for a rendered resume: pdf-<epoch ms>-<First>_<Last>_Resume.pdf."""
  stamp = now_ms if now_ms is not None else int(time.time() * 1000)
  return f"pdf-{stamp}-{artifact_base_name(document)}.pdf"
