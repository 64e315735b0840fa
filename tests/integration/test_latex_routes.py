from __future__ import annotations

import httpx
import pytest
from conftest import PDF_BYTES, VALID_MARKUP, ScriptedCompiler, compile_failed, compile_ok

from rector.api.deps import get_compiler
from rector.main import app
from rector.pipeline.errors import ToolchainMissingError

OWNER_HEADERS = {"X-User-Id": "user-u"}


class _Compiler(ScriptedCompiler):
  def __init__(self, *results, available: bool = True) -> None:
    super().__init__(*results)
    self.available = available

  def is_available(self) -> bool:
    return self.available


@pytest.fixture
def compiler() -> _Compiler:
  return _Compiler(compile_ok())


@pytest.fixture
async def client(anyio_backend, compiler):
  app.dependency_overrides[get_compiler] = lambda: compiler
  transport = httpx.ASGITransport(app=app)
  async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as http_client:
    yield http_client
  app.dependency_overrides.clear()


@pytest.mark.anyio
async def test_convert_returns_pdf_download(client, compiler) -> None:
  response = await client.post("/v1/latex/convert", json={"latexContent": VALID_MARKUP, "fileName": "Jane Doe CV"}, headers=OWNER_HEADERS)

  assert response.status_code == 200
  assert response.content == PDF_BYTES
  assert response.headers["content-type"] == "application/pdf"
  assert response.headers["content-disposition"] == 'attachment; filename="Jane_Doe_CV.pdf"'
  assert int(response.headers["x-processing-time"]) >= 0
  assert compiler.calls == [VALID_MARKUP]
  assert compiler.base_names == ["Jane_Doe_CV"]


@pytest.mark.anyio
async def test_convert_defaults_file_name(client, compiler) -> None:
  response = await client.post("/v1/latex/convert", json={"latexContent": VALID_MARKUP}, headers=OWNER_HEADERS)

  assert response.headers["content-disposition"] == 'attachment; filename="document.pdf"'
  assert compiler.base_names == ["document"]


@pytest.mark.anyio
async def test_convert_requires_content(client, compiler) -> None:
  response = await client.post("/v1/latex/convert", json={}, headers=OWNER_HEADERS)

  assert response.status_code == 400
  assert response.json()["detail"] == "LaTeX content is required"
  assert compiler.calls == []


@pytest.mark.anyio
async def test_convert_rejects_markup_without_skeleton(client, compiler) -> None:
  response = await client.post("/v1/latex/convert", json={"latexContent": "\\begin{document}hi\\end{document}"}, headers=OWNER_HEADERS)

  assert response.status_code == 400
  assert response.json()["detail"] == "LaTeX content must include \\documentclass"
  assert compiler.calls == []


@pytest.mark.anyio
async def test_convert_reports_compiler_excerpt(client) -> None:
  app.dependency_overrides[get_compiler] = lambda: _Compiler(compile_failed("Missing $ inserted."))

  response = await client.post("/v1/latex/convert", json={"latexContent": VALID_MARKUP}, headers=OWNER_HEADERS)

  assert response.status_code == 422
  assert response.json()["detail"] == "Missing $ inserted."


@pytest.mark.anyio
async def test_convert_without_toolchain_is_unavailable(client) -> None:
  app.dependency_overrides[get_compiler] = lambda: _Compiler(ToolchainMissingError("pdflatex is not installed"), available=False)

  response = await client.post("/v1/latex/convert", json={"latexContent": VALID_MARKUP}, headers=OWNER_HEADERS)

  assert response.status_code == 503


@pytest.mark.anyio
async def test_convert_requires_owner(client) -> None:
  response = await client.post("/v1/latex/convert", json={"latexContent": VALID_MARKUP})
  assert response.status_code == 401


@pytest.mark.anyio
async def test_validate_accepts_complete_document(client, compiler) -> None:
  response = await client.post("/v1/latex/validate", json={"latexContent": VALID_MARKUP}, headers=OWNER_HEADERS)

  assert response.status_code == 200
  assert response.json() == {"valid": True, "message": "LaTeX content is valid"}
  assert compiler.calls == []


@pytest.mark.anyio
async def test_validate_names_the_missing_marker(client) -> None:
  response = await client.post("/v1/latex/validate", json={"latexContent": "\\documentclass{article}\\begin{document}"}, headers=OWNER_HEADERS)

  assert response.status_code == 200
  assert response.json() == {"valid": False, "message": "LaTeX content must include \\begin{document} and \\end{document}"}


@pytest.mark.anyio
async def test_validate_requires_content(client) -> None:
  response = await client.post("/v1/latex/validate", json={"latexContent": ""}, headers=OWNER_HEADERS)
  assert response.status_code == 400


@pytest.mark.anyio
async def test_status_reports_missing_toolchain(client) -> None:
  app.dependency_overrides[get_compiler] = lambda: _Compiler(compile_ok(), available=False)

  response = await client.get("/v1/latex/status", headers=OWNER_HEADERS)

  assert response.json() == {"installed": False, "message": "pdflatex is not installed. Please install MacTeX or TeX Live."}
