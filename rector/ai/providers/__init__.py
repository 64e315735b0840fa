"""Provider implementations."""

from rector.ai.providers.base import AIModel, ModelResponse, Provider
from rector.ai.providers.gemini import GeminiModel, GeminiProvider
from rector.ai.providers.openrouter import OpenRouterModel, OpenRouterProvider
from rector.config import Settings


def build_model(settings: Settings) -> AIModel:
  """Resolve the configured provider and model."""
  if settings.llm_provider == "openrouter":
    return OpenRouterProvider(api_key=settings.openrouter_api_key, base_url=settings.llm_base_url).get_model(settings.llm_model)
  return GeminiProvider(api_key=settings.gemini_api_key).get_model(settings.llm_model)


__all__ = ["AIModel", "ModelResponse", "Provider", "GeminiModel", "GeminiProvider", "OpenRouterModel", "OpenRouterProvider", "build_model"]
