from __future__ import annotations

from app.ai.providers import GeminiProvider, OpenRouterProvider
from app.ai.providers.base import AIModel, Provider
from app.config import Settings

_GEMINI_PROVIDER = "gemini"
_OPENROUTER_PROVIDER = "openrouter"
_GEMINI_MODEL_PREFIX = "gemini-"


def _provider_for_model_hint(model_name: str | None, fallback_provider: str) -> str:
  """Resolve a provider from the model id with the configured provider as fallback."""
  if not model_name:
    return fallback_provider

  # Bare gemini-* ids only exist on Gemini; OpenRouter ids carry a vendor prefix.
  if model_name.startswith(_GEMINI_MODEL_PREFIX):
    return _GEMINI_PROVIDER

  if "/" in model_name:
    return _OPENROUTER_PROVIDER

  return fallback_provider


def get_provider(provider_name: str, settings: Settings) -> Provider:
  """Return the provider client for a configured provider name."""
  if provider_name == _GEMINI_PROVIDER:
    return GeminiProvider(api_key=settings.gemini_api_key)
  if provider_name == _OPENROUTER_PROVIDER:
    return OpenRouterProvider(api_key=settings.openrouter_api_key, base_url=settings.openrouter_base_url)
  raise ValueError(f"Unknown model provider '{provider_name}'.")


def get_model(provider_name: str, model_name: str | None, settings: Settings) -> AIModel:
  provider = _provider_for_model_hint(model_name, provider_name)
  return get_provider(provider, settings).get_model(model_name)


def get_primary_model(settings: Settings) -> AIModel:
  """Persona model that writes the replies."""
  return get_model(settings.primary_provider, settings.primary_model, settings)


def get_cleanup_model(settings: Settings) -> AIModel:
  """Secondary model used for reply cleanup and reaction vibes."""
  return get_model(settings.cleanup_provider, settings.cleanup_model, settings)
