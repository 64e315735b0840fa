"""pdflatex subprocess wrapper: toolchain discovery, per-attempt workspaces and output parsing."""

from __future__ import annotations

import asyncio
import logging
import os
import re
import shutil
import sys
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Final

from rector.pipeline.errors import ToolchainMissingError

logger = logging.getLogger(__name__)

TOOLCHAIN_COMMAND: Final[str] = "pdflatex"
DEFAULT_OUTPUT_CAP_BYTES: Final[int] = 10 * 1024 * 1024
DEFAULT_PASS_TIMEOUT_SECONDS: Final[float] = 120.0
COMPILE_PASSES: Final[int] = 2
GENERIC_ERROR_EXCERPT: Final[str] = "LaTeX compilation encountered errors. Please check your LaTeX syntax."

_READ_CHUNK_BYTES: Final[int] = 64 * 1024

# Well-known install locations checked after PATH lookup, per platform.
_PLATFORM_CANDIDATES: Final[dict[str, tuple[str, ...]]] = {
  "darwin": (
    "/Library/TeX/texbin/pdflatex",
    "/usr/local/texlive/2024/bin/universal-darwin/pdflatex",
    "/usr/local/texlive/2024/bin/x86_64-darwin/pdflatex",
    "/usr/local/texlive/2023/bin/x86_64-darwin/pdflatex",
    "/opt/homebrew/bin/pdflatex",
    "/usr/local/bin/pdflatex",
  ),
  "linux": (
    "/usr/bin/pdflatex",
    "/usr/local/bin/pdflatex",
    "/usr/local/texlive/2024/bin/x86_64-linux/pdflatex",
    "/usr/local/texlive/2023/bin/x86_64-linux/pdflatex",
  ),
  "win32": (
    r"C:\texlive\2024\bin\windows\pdflatex.exe",
    r"C:\texlive\2023\bin\windows\pdflatex.exe",
    r"C:\Program Files\MiKTeX\miktex\bin\x64\pdflatex.exe",
  ),
}

# First match wins.
_ERROR_PATTERNS: Final[tuple[re.Pattern[str], ...]] = (
  re.compile(r"^! (.+)", re.MULTILINE),
  re.compile(r"Error: (.+)", re.IGNORECASE),
  re.compile(r"Fatal error: (.+)", re.IGNORECASE),
)
_WARNING_RE = re.compile(r"(?:LaTeX|Package|Class)\s+(?:\w+\s+)?Warning[:\s]*(.*?)(?:\n(?!\s)|$)", re.DOTALL)

_REQUIRED_MARKERS: Final[tuple[tuple[str, str], ...]] = (
  (r"\documentclass", "LaTeX content must include \\documentclass"),
  (r"\begin{document}", "LaTeX content must include \\begin{document} and \\end{document}"),
  (r"\end{document}", "LaTeX content must include \\begin{document} and \\end{document}"),
)


@dataclass(frozen=True)
class CompilationResult:
  """Outcome of one compile attempt (both passes)."""

  success: bool
  pdf_bytes: bytes | None = None
  error_excerpt: str | None = None
  warnings: tuple[str, ...] = ()
  exit_codes: tuple[int | None, ...] = ()
  output: str = ""


@dataclass
class _PassOutcome:
  exit_code: int | None
  output: str
  timed_out: bool = False
  truncated: bool = False


def extract_error_excerpt(output: str) -> str:
  """Return a short human-readable error from compiler output."""
  for pattern in _ERROR_PATTERNS:
    match = pattern.search(output)
    if match:
      return match.group(1).strip()
  return GENERIC_ERROR_EXCERPT


def extract_warnings(output: str) -> tuple[str, ...]:
  """Collect distinct, non-fatal warnings in the order they appear."""
  seen: dict[str, None] = {}
  for match in _WARNING_RE.finditer(output):
    message = " ".join(match.group(1).split())
    if message:
      seen.setdefault(message, None)
  return tuple(seen)


def validate_markup(markup: str | None) -> str | None:
  """Return a reason when markup is missing the document skeleton, else None."""
  if not markup or not markup.strip():
    return "LaTeX content must be a non-empty string"
  for marker, reason in _REQUIRED_MARKERS:
    if marker not in markup:
      return reason
  return None


class DocumentCompiler:
  """Compiles LaTeX markup to PDF with an external pdflatex executable.

  Success is decided by artifact presence, not by exit code: pdflatex in
  nonstopmode routinely exits non-zero on recoverable errors while still
  writing a usable PDF.
  """

  def __init__(
    self,
    *,
    configured_path: str | None = None,
    output_cap_bytes: int = DEFAULT_OUTPUT_CAP_BYTES,
    pass_timeout_seconds: float = DEFAULT_PASS_TIMEOUT_SECONDS,
    workspace_root: str | None = None,
  ) -> None:
    self._configured_path = configured_path
    self._output_cap_bytes = output_cap_bytes
    self._pass_timeout_seconds = pass_timeout_seconds
    self._workspace_root = workspace_root
    self._toolchain_path: str | None = None

  validate_markup = staticmethod(validate_markup)
  extract_error_excerpt = staticmethod(extract_error_excerpt)
  extract_warnings = staticmethod(extract_warnings)

  def locate_toolchain(self) -> str:
    """Resolve the pdflatex executable, caching the first hit."""
    if self._toolchain_path is not None:
      return self._toolchain_path

    for candidate in self._candidates():
      if candidate == TOOLCHAIN_COMMAND:
        resolved = shutil.which(TOOLCHAIN_COMMAND)
        if resolved:
          self._toolchain_path = resolved
          logger.info("Found %s in PATH at %s", TOOLCHAIN_COMMAND, resolved)
          return resolved
        continue

      if os.path.isfile(candidate) and os.access(candidate, os.X_OK):
        self._toolchain_path = candidate
        logger.info("Found %s at %s", TOOLCHAIN_COMMAND, candidate)
        return candidate

    # Misses are not cached so installing TeX does not require a restart.
    logger.error("No %s executable found; PDF compilation is unavailable.", TOOLCHAIN_COMMAND)
    raise ToolchainMissingError(f"{TOOLCHAIN_COMMAND} is not installed on this system. Please install MacTeX or TeX Live.")

  def is_available(self) -> bool:
    try:
      self.locate_toolchain()
    except ToolchainMissingError:
      return False
    return True

  def _candidates(self) -> list[str]:
    candidates: list[str] = []
    if self._configured_path:
      candidates.append(self._configured_path)
    candidates.append(TOOLCHAIN_COMMAND)
    platform_key = "win32" if sys.platform.startswith("win") else sys.platform
    if platform_key.startswith("linux"):
      platform_key = "linux"
    candidates.extend(_PLATFORM_CANDIDATES.get(platform_key, ()))
    return candidates

  async def compile(self, markup: str, job_id: str, *, base_name: str = "document") -> CompilationResult:
    """Run pdflatex twice in a fresh workspace and return the PDF or an error excerpt.

    Raises ToolchainMissingError when no executable can be found. The workspace
    is removed before returning on every path.
    """
    executable = self.locate_toolchain()

    with tempfile.TemporaryDirectory(prefix=f"rector-{job_id}-", dir=self._workspace_root) as workspace:
      workspace_path = Path(workspace)
      tex_path = workspace_path / f"{base_name}.tex"
      pdf_path = workspace_path / f"{base_name}.pdf"
      tex_path.write_text(markup, encoding="utf-8")
      logger.info("Starting LaTeX compilation job=%s workspace=%s", job_id, workspace_path)

      exit_codes: list[int | None] = []
      outputs: list[str] = []
      timed_out = False
      for pass_number in range(1, COMPILE_PASSES + 1):
        outcome = await self._run_pass(executable, tex_path, workspace_path)
        exit_codes.append(outcome.exit_code)
        outputs.append(outcome.output)
        timed_out = outcome.timed_out

        if outcome.timed_out:
          logger.warning("pdflatex pass %s timed out after %ss job=%s", pass_number, self._pass_timeout_seconds, job_id)
        if outcome.truncated:
          logger.warning("pdflatex pass %s output exceeded %s bytes; remainder discarded job=%s", pass_number, self._output_cap_bytes, job_id)

        if outcome.exit_code != 0 and not pdf_path.exists():
          # A pass that fails without an artifact is final; a second pass cannot recover it.
          break

        if outcome.exit_code != 0:
          logger.warning("pdflatex reported errors but PDF was generated job=%s pass=%s output=%s", job_id, pass_number, outcome.output[:500])

      combined = "\n".join(outputs)
      warnings = extract_warnings(combined)

      if pdf_path.exists():
        pdf_bytes = pdf_path.read_bytes()
        logger.info("LaTeX compilation succeeded job=%s size=%s warnings=%s", job_id, len(pdf_bytes), len(warnings))
        return CompilationResult(success=True, pdf_bytes=pdf_bytes, warnings=warnings, exit_codes=tuple(exit_codes), output=combined)

      excerpt = f"Compilation timed out after {self._pass_timeout_seconds:g}s" if timed_out else extract_error_excerpt(combined)
      logger.error("LaTeX compilation failed job=%s excerpt=%s", job_id, excerpt)
      return CompilationResult(success=False, error_excerpt=excerpt, warnings=warnings, exit_codes=tuple(exit_codes), output=combined)

  async def _run_pass(self, executable: str, tex_path: Path, workspace: Path) -> _PassOutcome:
    process = await asyncio.create_subprocess_exec(
      executable,
      "-interaction=nonstopmode",
      f"-output-directory={workspace}",
      str(tex_path),
      cwd=str(workspace),
      stdin=asyncio.subprocess.DEVNULL,
      stdout=asyncio.subprocess.PIPE,
      stderr=asyncio.subprocess.STDOUT,
    )

    captured = bytearray()
    truncated = False

    async def _consume() -> None:
      nonlocal truncated
      assert process.stdout is not None
      while True:
        chunk = await process.stdout.read(_READ_CHUNK_BYTES)
        if not chunk:
          break
        room = self._output_cap_bytes - len(captured)
        if room > 0:
          captured.extend(chunk[:room])
        if len(chunk) > room:
          truncated = True
      await process.wait()

    try:
      async with asyncio.timeout(self._pass_timeout_seconds):
        await _consume()
    except TimeoutError:
      if process.returncode is None:
        process.kill()
      await process.wait()
      return _PassOutcome(exit_code=None, output=captured.decode("utf-8", errors="replace"), timed_out=True, truncated=truncated)

    return _PassOutcome(exit_code=process.returncode, output=captured.decode("utf-8", errors="replace"), truncated=truncated)
