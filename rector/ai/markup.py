"""Text-generation client that produces and repairs LaTeX resume markup."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Final

from rector.ai.prompts import render_fix_prompt, render_markup_prompt
from rector.ai.providers.base import AIModel
from rector.jobs.models import TokenUsage
from rector.rendering.compiler import validate_markup

logger = logging.getLogger(__name__)

DEFAULT_TEMPERATURE: Final[float] = 0.1
DEFAULT_MAX_TOKENS: Final[int] = 12000
# DeepSeek rejects completions above this ceiling.
DEEPSEEK_MAX_TOKENS: Final[int] = 8192

_DEEPSEEK_RE = re.compile(r"deepseek", re.IGNORECASE)


class TextGenerationError(Exception):
  """Raised when the model call fails or returns unusable markup."""


@dataclass(frozen=True)
class MarkupResult:
  """Markup produced by one model call plus its token cost."""

  markup: str
  usage: TokenUsage


class TextGenerationClient:
  """Wraps one configured model for the two markup operations the pipeline needs."""

  def __init__(self, model: AIModel, *, temperature: float = DEFAULT_TEMPERATURE, max_tokens: int = DEFAULT_MAX_TOKENS) -> None:
    self._model = model
    self._temperature = temperature
    self._max_tokens = max_tokens
    if _DEEPSEEK_RE.search(getattr(model, "name", "") or ""):
      self._max_tokens = min(max_tokens, DEEPSEEK_MAX_TOKENS)

  @property
  def model_name(self) -> str:
    return getattr(self._model, "name", "unknown")

  async def generate_markup(self, document: dict[str, Any], hints: dict[str, Any] | None) -> MarkupResult:
    """Convert a structured resume into a complete LaTeX document."""
    prompt = render_markup_prompt(document, hints)
    logger.info("Requesting markup generation model=%s hints=%s", self.model_name, bool(hints))
    return await self._complete(prompt, operation="generate")

  async def fix_markup(self, markup: str, compiler_error: str) -> MarkupResult:
    """Ask the model to repair markup that failed to compile."""
    prompt = render_fix_prompt(markup, compiler_error)
    logger.info("Requesting markup fix model=%s error=%s", self.model_name, compiler_error[:120])
    return await self._complete(prompt, operation="fix")

  async def _complete(self, prompt: str, *, operation: str) -> MarkupResult:
    try:
      response = await self._model.generate(prompt, temperature=self._temperature, max_tokens=self._max_tokens)
    except Exception as exc:
      logger.error("Markup %s call failed: %s", operation, exc)
      raise TextGenerationError(f"Model call failed during {operation}: {exc}") from exc

    markup = AIModel.strip_code_fences(response.content)
    reason = validate_markup(markup)
    if reason is not None:
      logger.warning("Markup %s returned malformed output: %s", operation, reason)
      raise TextGenerationError(f"Model returned invalid LaTeX during {operation}: {reason}")

    usage = TokenUsage.from_provider(response.usage, prompt=prompt, response=response.content)
    logger.debug("Markup %s completed chars=%s tokens=%s", operation, len(markup), usage.total_tokens)
    return MarkupResult(markup=markup, usage=usage)
