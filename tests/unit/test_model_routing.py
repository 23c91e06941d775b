from __future__ import annotations

import pytest
from fakes import make_settings

from app.ai.providers import GeminiModel, OpenRouterModel
from app.services import model_routing


@pytest.mark.parametrize(
  ("model_name", "fallback", "expected"),
  [
    ("gemini-2.0-flash", "openrouter", "gemini"),
    ("meta-llama/llama-3.3-70b-instruct:free", "gemini", "openrouter"),
    (None, "gemini", "gemini"),
    ("custom-model", "openrouter", "openrouter"),
  ],
)
def test_provider_for_model_hint(model_name: str | None, fallback: str, expected: str) -> None:
  assert model_routing._provider_for_model_hint(model_name, fallback) == expected


def test_primary_and_cleanup_models_resolve_to_clients() -> None:
  settings = make_settings(
    primary_provider="openrouter",
    primary_model="gemini-2.0-flash",
    cleanup_provider="gemini",
    cleanup_model="allenai/olmo-3-32b-think:free",
    gemini_api_key="gemini-key",
    openrouter_api_key="openrouter-key",
  )

  primary = model_routing.get_primary_model(settings)
  cleanup = model_routing.get_cleanup_model(settings)

  assert isinstance(primary, GeminiModel)
  assert primary.supports_media
  assert isinstance(cleanup, OpenRouterModel)
  assert cleanup.name == "allenai/olmo-3-32b-think:free"


def test_unsupported_model_is_rejected() -> None:
  settings = make_settings(openrouter_api_key="openrouter-key")
  with pytest.raises(ValueError, match="Unsupported OpenRouter model"):
    model_routing.get_model("openrouter", "vendor/unknown-model", settings)


def test_unknown_provider_is_rejected() -> None:
  with pytest.raises(ValueError, match="Unknown model provider"):
    model_routing.get_provider("bogus", make_settings())


def test_missing_api_key_fails_fast(monkeypatch: pytest.MonkeyPatch) -> None:
  monkeypatch.delenv("OPENROUTER_API_KEY", raising=False)
  with pytest.raises(ValueError, match="OPENROUTER_API_KEY"):
    model_routing.get_model("openrouter", None, make_settings(openrouter_api_key=None))
