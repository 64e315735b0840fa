"""Provider abstractions shared by the text-generation backends."""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

_FENCE_OPEN_RE = re.compile(r"^```[a-zA-Z]*\s*\n?")
_FENCE_CLOSE_RE = re.compile(r"\n?```\s*$")


@dataclass(frozen=True)
class ModelResponse:
  """Text returned by a model plus provider usage metadata."""

  content: str
  usage: dict[str, Any] | None


class AIModel(ABC):
  """One configured model on one provider."""

  name: str

  @abstractmethod
  async def generate(self, prompt: str, *, temperature: float = 0.1, max_tokens: int | None = None) -> ModelResponse:
    """Generate a completion for a single user prompt."""

  @staticmethod
  def strip_code_fences(raw: str) -> str:
    """Remove a surrounding markdown code fence (```latex ... ```) if present."""
    text = raw.strip()
    text = _FENCE_OPEN_RE.sub("", text, count=1)
    text = _FENCE_CLOSE_RE.sub("", text, count=1)
    return text.strip()


class Provider(ABC):
  """Factory for models hosted by one vendor."""

  name: str

  @abstractmethod
  def get_model(self, model: str | None = None) -> AIModel:
    """Return a model client."""
