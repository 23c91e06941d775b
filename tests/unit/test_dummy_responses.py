"""Tests for deterministic dummy AI responses."""

from __future__ import annotations

import pytest

from app.ai.providers.base import AIModel
from app.ai.providers.openrouter import OpenRouterModel


def test_load_dummy_response_reads_agent_variable(monkeypatch: pytest.MonkeyPatch) -> None:
  monkeypatch.setenv("GEMMIE_DUMMY_OPENROUTER_RESPONSE", "hey there, whats up.")
  assert AIModel.load_dummy_response("openrouter") == "hey there, whats up."


def test_blank_dummy_response_is_ignored(monkeypatch: pytest.MonkeyPatch) -> None:
  monkeypatch.setenv("GEMMIE_DUMMY_GEMINI_RESPONSE", "   ")
  assert AIModel.load_dummy_response("GEMINI") is None


@pytest.mark.anyio
async def test_openrouter_model_short_circuits_to_dummy(monkeypatch: pytest.MonkeyPatch) -> None:
  # No request leaves the process when a dummy response is configured.
  monkeypatch.setenv("GEMMIE_DUMMY_OPENROUTER_RESPONSE", "lol nice.")
  model = OpenRouterModel("meta-llama/llama-3.3-70b-instruct:free", api_key="test-key")

  response = await model.generate("say hi")

  assert response.content == "lol nice."
  assert response.usage is None
