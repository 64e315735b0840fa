"""Object storage helper for rendered PDF artifacts."""

from __future__ import annotations

import os
from typing import Protocol
from urllib.parse import urlparse, urlunparse

from google.auth.credentials import AnonymousCredentials
from google.cloud import storage
from starlette.concurrency import run_in_threadpool

from rector.config import Settings


class BlobStore(Protocol):
  """Minimal put contract the pipeline needs from object storage."""

  async def put(self, key: str, data: bytes, content_type: str, metadata: dict[str, str]) -> str:
    """Store bytes under key and return a reference to the stored object."""


class StorageClient(BlobStore):
  """Thin wrapper over GCS and emulator access for artifact upload."""

  def __init__(self, settings: Settings) -> None:
    self._bucket_name = settings.pdf_bucket
    self._storage_host = settings.gcs_storage_host
    # Ensure emulator endpoint is visible to the SDK in local development.
    if self._storage_host:
      emulator_endpoint = _normalize_emulator_endpoint(self._storage_host)
      os.environ["STORAGE_EMULATOR_HOST"] = emulator_endpoint
      self._client = storage.Client(project=settings.gcp_project_id or "local-dev", credentials=AnonymousCredentials(), client_options={"api_endpoint": emulator_endpoint})
    else:
      self._client = storage.Client(project=settings.gcp_project_id)

  @property
  def bucket_name(self) -> str:
    """Return the bucket that receives rendered artifacts."""
    return self._bucket_name

  async def ensure_bucket(self) -> None:
    """Create the bucket when missing in local/dev flows."""
    # Keep production startup side-effect free; only auto-create in emulator mode.
    if not self._storage_host:
      return
    bucket = self._client.bucket(self._bucket_name)

    def _create_if_missing() -> None:
      if not bucket.exists(client=self._client):
        self._client.create_bucket(bucket)

    await run_in_threadpool(_create_if_missing)

  async def put(self, key: str, data: bytes, content_type: str, metadata: dict[str, str]) -> str:
    """Upload bytes with custom metadata and return the object name."""
    bucket = self._client.bucket(self._bucket_name)
    blob = bucket.blob(key)
    blob.metadata = metadata
    await run_in_threadpool(blob.upload_from_string, data, content_type=content_type)
    return key


def build_storage_client(settings: Settings) -> StorageClient:
  """Create a storage client instance with environment-aware credentials."""
  return StorageClient(settings)


def _normalize_emulator_endpoint(raw_endpoint: str) -> str:
  """Normalize emulator endpoint so the SDK receives scheme+host+port only."""
  parsed = urlparse(raw_endpoint)
  if not parsed.scheme or not parsed.netloc:
    return raw_endpoint.rstrip("/")
  return urlunparse((parsed.scheme, parsed.netloc, "", "", "", "")).rstrip("/")
