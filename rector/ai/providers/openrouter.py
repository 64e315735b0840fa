"""OpenAI-compatible provider (OpenRouter, DeepSeek, LM Studio) using the openai SDK."""

from __future__ import annotations

import logging
import os
from typing import Final

from openai import AsyncOpenAI

from rector.ai.backoff import retry_with_backoff
from rector.ai.providers.base import AIModel, ModelResponse, Provider

logger = logging.getLogger(__name__)

_DEFAULT_BASE_URL: Final[str] = "https://openrouter.ai/api/v1"


class OpenRouterModel(AIModel):
  """Chat-completions model client for any OpenAI-compatible endpoint."""

  def __init__(self, name: str, api_key: str | None = None, base_url: str | None = None) -> None:
    self.name: str = name

    api_key = api_key or os.getenv("OPENROUTER_API_KEY")
    if not api_key:
      raise ValueError("OPENROUTER_API_KEY environment variable is required")

    # OpenRouter accepts optional attribution headers; other endpoints ignore them.
    default_headers = {}
    referer = os.getenv("OPENROUTER_HTTP_REFERER")
    if referer:
      default_headers["HTTP-Referer"] = referer
    title = os.getenv("OPENROUTER_TITLE")
    if title:
      default_headers["X-Title"] = title

    self._client = AsyncOpenAI(api_key=api_key, base_url=base_url or _DEFAULT_BASE_URL, default_headers=default_headers or None)

  async def generate(self, prompt: str, *, temperature: float = 0.1, max_tokens: int | None = None) -> ModelResponse:
    """Generate a text response through chat completions."""
    kwargs: dict[str, object] = {"model": self.name, "messages": [{"role": "user", "content": prompt}], "temperature": temperature}
    if max_tokens is not None:
      kwargs["max_tokens"] = max_tokens

    response = await retry_with_backoff(self._client.chat.completions.create, **kwargs)

    content = response.choices[0].message.content or ""
    logger.debug("OpenRouter response chars=%s", len(content))
    usage = None

    if response.usage:
      usage = {"prompt_tokens": response.usage.prompt_tokens, "completion_tokens": response.usage.completion_tokens, "total_tokens": response.usage.total_tokens}

    return ModelResponse(content=content, usage=usage)


class OpenRouterProvider(Provider):
  """OpenRouter provider; base_url lets it front DeepSeek or a local LM Studio server."""

  _DEFAULT_MODEL: Final[str] = "deepseek/deepseek-chat"

  def __init__(self, api_key: str | None = None, base_url: str | None = None) -> None:
    self.name: str = "openrouter"
    self._api_key = api_key
    self._base_url = base_url

  def get_model(self, model: str | None = None) -> AIModel:
    """Return a chat-completions model client."""
    return OpenRouterModel(model or self._DEFAULT_MODEL, api_key=self._api_key, base_url=self._base_url)
