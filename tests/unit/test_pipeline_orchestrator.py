"""Unit tests for detached pipeline runs, status ordering and failure mapping."""

from __future__ import annotations

import asyncio
import re

import msgspec
import pytest
from conftest import PDF_BYTES, FakeBlobStore, RecordingChannel, ScriptedCompiler, ScriptedTextClient, compile_failed, compile_ok

from rector.ai.markup import TextGenerationError
from rector.notifications.bus import NotificationBus
from rector.pipeline.correction import CORRECTION_OPERATION, CorrectionLoop
from rector.pipeline.errors import JobAlreadyActiveError, ToolchainMissingError
from rector.pipeline.orchestrator import GENERATION_OPERATION, PDF_CONTENT_TYPE, UNEXPECTED_FAILURE_MESSAGE, PipelineOrchestrator

OWNER = "user-u"


class _Harness:
  def __init__(self, status_store, timeline, *, compiler=None, text_client=None, blob_store=None, max_attempts: int = 3, generation_timeout_seconds=None, job_prefix: str = "job") -> None:
    self.status_store = status_store
    self.timeline = timeline
    self.compiler = compiler or ScriptedCompiler(compile_ok())
    self.text_client = text_client or ScriptedTextClient()
    self.blob_store = blob_store or FakeBlobStore()
    self.bus = NotificationBus(heartbeat_interval_seconds=3600)
    self.channel = RecordingChannel(timeline)
    job_ids = iter(f"{job_prefix}-{index}" for index in range(1, 100))
    self.orchestrator = PipelineOrchestrator(
      generator=self.text_client,
      correction_loop=CorrectionLoop(self.compiler, self.text_client, status_store=status_store, max_attempts=max_attempts),
      blob_store=self.blob_store,
      status_store=status_store,
      bus=self.bus,
      generation_timeout_seconds=generation_timeout_seconds,
      job_id_factory=lambda: next(job_ids),
    )

  async def run(self, document, document_id: str = "doc-1"):
    await self.bus.subscribe(OWNER, self.channel)
    job = await self.orchestrator.trigger(document_id, OWNER, document)
    await self.orchestrator.wait_idle()
    await self.bus.close()
    return job

  def events(self) -> list[dict]:
    # The first frame is the connection handshake.
    return [msgspec.json.decode(payload) for payload in self.channel.payloads[1:]]

  def statuses(self) -> list[str]:
    return [event["status"] for event in self.events()]


@pytest.fixture
def harness(status_store, timeline):
  def _build(**kwargs) -> _Harness:
    return _Harness(status_store, timeline, **kwargs)

  return _build


@pytest.mark.anyio
async def test_successful_run_publishes_generating_then_ready(harness, sample_document) -> None:
  h = harness()

  job = await h.run(sample_document)

  assert job.status == "ready"
  assert h.statuses() == ["generating", "ready"]
  started, finished = h.events()
  assert started == {"type": "status_update", "documentId": "doc-1", "jobId": "job-1", "status": "generating", "message": "PDF generation started"}
  assert finished["artifactRef"] == job.artifact_ref
  assert finished["message"] == "PDF generated successfully"
  record = h.status_store.records["job-1"]
  assert record.status == "ready"
  assert record.artifact_ref == job.artifact_ref
  assert record.attempt_count == 1
  assert record.completed_at == job.completed_at


@pytest.mark.anyio
async def test_every_status_is_persisted_before_it_is_published(harness, sample_document) -> None:
  h = harness(compiler=ScriptedCompiler(compile_failed(), compile_ok()))

  await h.run(sample_document)

  entries = [entry for entry in h.timeline if entry[0] == "persist" or '"status_update"' in entry[1]]
  persisted_at = {}
  for index, entry in enumerate(entries):
    if entry[0] == "persist":
      persisted_at.setdefault(entry[1], index)
      continue
    status = msgspec.json.decode(entry[1])["status"]
    assert status in persisted_at
    assert persisted_at[status] < index


@pytest.mark.anyio
async def test_upload_uses_named_key_and_metadata(harness, sample_document) -> None:
  h = harness()

  job = await h.run(sample_document)

  (key, data, content_type, metadata), = h.blob_store.puts
  assert re.fullmatch(r"pdf-\d+-Jane_Doe_Resume\.pdf", key)
  assert data == PDF_BYTES
  assert content_type == PDF_CONTENT_TYPE
  assert metadata == {"X-Resume-Id": "doc-1", "X-User-Id": OWNER, "X-Job-Id": job.job_id}
  assert h.compiler.base_names == ["Jane_Doe_Resume"]
  assert h.status_store.artifacts == [("job-1", "doc-1", key)]


@pytest.mark.anyio
async def test_structure_hints_reach_the_generator(harness, status_store, sample_document) -> None:
  status_store.hints["doc-1"] = {"sectionOrder": ["experience", "education"]}
  h = harness()

  await h.run(sample_document)

  assert h.text_client.generate_calls == [(sample_document, {"sectionOrder": ["experience", "education"]})]


@pytest.mark.anyio
async def test_hint_lookup_failure_falls_back_to_defaults(harness, status_store, sample_document) -> None:
  status_store.failing.add("get_structure_hints")
  h = harness()

  job = await h.run(sample_document)

  assert job.status == "ready"
  assert h.text_client.generate_calls[0][1] is None


@pytest.mark.anyio
async def test_token_ledger_covers_generation_and_corrections(harness, sample_document) -> None:
  h = harness(compiler=ScriptedCompiler(compile_failed(), compile_failed(), compile_ok()), text_client=ScriptedTextClient(generate_tokens=300, fix_tokens=25))

  job = await h.run(sample_document)

  operations = [(operation, tokens) for _, operation, tokens, _ in h.status_store.token_usage]
  assert operations == [(GENERATION_OPERATION, 300), (CORRECTION_OPERATION, 25), (CORRECTION_OPERATION, 25)]
  assert job.tokens_used == 350
  assert job.attempt_count == 3
  assert h.statuses() == ["generating", "ready"]


@pytest.mark.anyio
async def test_generation_failure_fails_job(harness, sample_document) -> None:
  h = harness(text_client=ScriptedTextClient(generate_error=TextGenerationError("quota exceeded")))

  job = await h.run(sample_document)

  assert job.status == "failed"
  assert job.failure_reason == "generation_error"
  assert h.statuses() == ["generating", "failed"]
  assert h.events()[-1]["message"] == "Failed to convert resume to LaTeX format"
  assert h.compiler.calls == []
  assert h.status_store.records["job-1"].status == "failed"


@pytest.mark.anyio
async def test_generation_timeout_fails_job(harness, sample_document) -> None:
  class _SlowClient(ScriptedTextClient):
    async def generate_markup(self, document, hints):
      await asyncio.sleep(10)
      return await super().generate_markup(document, hints)

  h = harness(text_client=_SlowClient(), generation_timeout_seconds=0.01)

  job = await h.run(sample_document)

  assert job.failure_reason == "generation_error"


@pytest.mark.anyio
async def test_upload_failure_fails_job_without_artifact(harness, sample_document) -> None:
  h = harness(blob_store=FakeBlobStore(error=ConnectionError("bucket unreachable")))

  job = await h.run(sample_document)

  assert job.status == "failed"
  assert job.artifact_ref is None
  assert job.failure_reason == "storage_error"
  assert h.events()[-1] == {"type": "status_update", "documentId": "doc-1", "jobId": "job-1", "status": "failed", "message": "Failed to store PDF file"}
  assert h.status_store.artifacts == []


@pytest.mark.anyio
async def test_missing_toolchain_fails_without_fix_attempts(harness, sample_document) -> None:
  h = harness(compiler=ScriptedCompiler(ToolchainMissingError("pdflatex is not installed")))

  job = await h.run(sample_document)

  assert job.failure_reason == "toolchain_missing"
  assert h.events()[-1]["message"] == "PDF compiler is not available on this server"
  assert h.text_client.fix_calls == []


@pytest.mark.anyio
async def test_exhausted_corrections_report_last_excerpt(harness, sample_document) -> None:
  h = harness(compiler=ScriptedCompiler(compile_failed("Missing } inserted.")), max_attempts=2)

  job = await h.run(sample_document)

  assert job.failure_reason == "compilation_exhausted"
  assert job.attempt_count == 3
  assert h.events()[-1]["message"] == "PDF compilation failed after multiple attempts: Missing } inserted."
  assert h.status_store.records["job-1"].attempt_count == 3


@pytest.mark.anyio
async def test_fix_service_failure_is_reported_distinctly(harness, sample_document) -> None:
  h = harness(compiler=ScriptedCompiler(compile_failed(), compile_ok()), text_client=ScriptedTextClient(fix_error=TextGenerationError("rate limited")))

  job = await h.run(sample_document)

  assert job.failure_reason == "correction_service_error"
  assert h.events()[-1]["message"] == "Failed to correct LaTeX errors automatically"


@pytest.mark.anyio
async def test_unexpected_error_uses_generic_message(harness, sample_document) -> None:
  h = harness(compiler=ScriptedCompiler(KeyError("boom")))

  job = await h.run(sample_document)

  assert job.failure_reason == "unexpected_error"
  assert h.events()[-1]["message"] == UNEXPECTED_FAILURE_MESSAGE


@pytest.mark.anyio
async def test_write_failures_after_creation_do_not_stop_the_run(harness, status_store, sample_document) -> None:
  status_store.failing.update({"set_status", "set_artifact", "record_token_usage"})
  h = harness()

  job = await h.run(sample_document)

  assert job.status == "ready"
  assert h.statuses() == ["generating", "ready"]


@pytest.mark.anyio
async def test_unreachable_store_at_creation_still_runs_the_job(harness, status_store, sample_document) -> None:
  status_store.failing.add("create_job")
  h = harness()

  job = await h.run(sample_document)

  assert job.status == "ready"
  assert "job-1" not in status_store.records


@pytest.mark.anyio
async def test_job_active_in_another_worker_is_rejected(status_store, timeline, sample_document) -> None:
  release = asyncio.Event()

  class _GatedClient(ScriptedTextClient):
    async def generate_markup(self, document, hints):
      await release.wait()
      return await super().generate_markup(document, hints)

  worker_a = _Harness(status_store, timeline, text_client=_GatedClient(), job_prefix="a")
  worker_b = _Harness(status_store, timeline, job_prefix="b")

  first = await worker_a.orchestrator.trigger("doc-1", OWNER, sample_document)
  with pytest.raises(JobAlreadyActiveError) as exc_info:
    await worker_b.orchestrator.trigger("doc-1", OWNER, sample_document)

  assert exc_info.value.job_id == first.job_id
  assert worker_b.orchestrator.active_job("doc-1") is None

  release.set()
  await worker_a.orchestrator.wait_idle()
  await worker_b.orchestrator.wait_idle()

  assert len(worker_a.blob_store.puts) == 1
  assert worker_b.blob_store.puts == []
  assert [job_id for job_id, _, _ in status_store.artifacts] == [first.job_id]

  # Once the first run is terminal the document is free again.
  again = await worker_b.orchestrator.trigger("doc-1", OWNER, sample_document)
  await worker_b.orchestrator.wait_idle()
  assert again.status == "ready"
  assert status_store.records[again.job_id].status == "ready"


@pytest.mark.anyio
async def test_created_row_exists_before_trigger_returns(harness, status_store, sample_document) -> None:
  h = harness()

  job = await h.orchestrator.trigger("doc-1", OWNER, sample_document)

  assert status_store.records[job.job_id].status == "pending"
  await h.orchestrator.wait_idle()


@pytest.mark.anyio
async def test_concurrent_trigger_for_same_document_is_rejected(harness, sample_document) -> None:
  release = asyncio.Event()

  class _GatedClient(ScriptedTextClient):
    async def generate_markup(self, document, hints):
      await release.wait()
      return await super().generate_markup(document, hints)

  h = harness(text_client=_GatedClient())
  first = await h.orchestrator.trigger("doc-1", OWNER, sample_document)

  with pytest.raises(JobAlreadyActiveError) as exc_info:
    await h.orchestrator.trigger("doc-1", OWNER, sample_document)
  assert exc_info.value.job_id == first.job_id

  # Other documents are independent.
  other = await h.orchestrator.trigger("doc-2", OWNER, sample_document)
  assert other.job_id != first.job_id

  release.set()
  await h.orchestrator.wait_idle()

  assert h.orchestrator.active_job("doc-1") is None
  again = await h.orchestrator.trigger("doc-1", OWNER, sample_document)
  await h.orchestrator.wait_idle()
  assert again.status == "ready"


@pytest.mark.anyio
async def test_trigger_returns_pending_job_before_work_starts(harness, sample_document) -> None:
  h = harness()

  job = await h.orchestrator.trigger("doc-1", OWNER, sample_document)

  assert job.status == "pending"
  assert h.orchestrator.active_job("doc-1") is job
  await h.orchestrator.wait_idle()
  assert job.status == "ready"


@pytest.mark.anyio
async def test_owner_without_channels_still_completes(harness, sample_document) -> None:
  h = harness()

  job = await h.orchestrator.trigger("doc-1", OWNER, sample_document)
  await h.orchestrator.wait_idle()

  assert job.status == "ready"
  assert h.channel.payloads == []
