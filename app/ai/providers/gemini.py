"""Gemini provider implementation using the google-genai SDK."""

from __future__ import annotations

import logging
import os
from typing import Any, Final

from google import genai
from google.genai import types

from app.ai.backoff import retry_with_backoff
from app.ai.providers.base import AIModel, MediaPart, ModelResponse, Provider, SimpleModelResponse

logger = logging.getLogger(__name__)


class GeminiModel(AIModel):
  """Gemini model client with inline media support."""

  supports_media = True

  def __init__(self, name: str, api_key: str | None = None) -> None:
    self.name: str = name

    api_key = api_key or os.getenv("GEMINI_API_KEY")
    if not api_key:
      raise ValueError("GEMINI_API_KEY environment variable is required")

    self._client = genai.Client(api_key=api_key)

  def _config(self, max_tokens: int | None, temperature: float | None) -> types.GenerateContentConfig:
    return types.GenerateContentConfig(max_output_tokens=max_tokens, temperature=temperature)

  async def generate(self, prompt: str, *, max_tokens: int | None = None, temperature: float | None = None) -> ModelResponse:
    """Generate text response from Gemini."""
    dummy = AIModel.load_dummy_response("GEMINI")
    if dummy is not None:
      logger.info("Gemini dummy response:\n%s", dummy)
      return SimpleModelResponse(content=dummy, usage=None)

    # Use the async client to avoid blocking the asyncio event loop.
    response = await retry_with_backoff(self._client.aio.models.generate_content, model=self.name, contents=prompt, config=self._config(max_tokens, temperature))
    logger.info("Gemini response:\n%s", response.text)
    return SimpleModelResponse(content=response.text or "", usage=_usage(response))

  async def generate_with_media(self, prompt: str, media: list[MediaPart], *, max_tokens: int | None = None, temperature: float | None = None) -> ModelResponse:
    """Generate text from a prompt plus inline image/video bytes."""
    contents: list[Any] = [types.Part.from_bytes(data=part.data, mime_type=part.mime_type) for part in media]
    contents.append(prompt)
    response = await retry_with_backoff(self._client.aio.models.generate_content, model=self.name, contents=contents, config=self._config(max_tokens, temperature))
    logger.info("Gemini media response:\n%s", response.text)
    return SimpleModelResponse(content=response.text or "", usage=_usage(response))


def _usage(response: Any) -> dict[str, int] | None:
  metadata = response.usage_metadata
  if not metadata:
    return None
  return {"prompt_tokens": metadata.prompt_token_count or 0, "completion_tokens": metadata.candidates_token_count or 0, "total_tokens": metadata.total_token_count or 0}


class GeminiProvider(Provider):
  """Gemini provider."""

  _DEFAULT_MODEL: Final[str] = "gemini-2.0-flash"
  _AVAILABLE_MODELS: Final[set[str]] = {"gemini-2.5-pro", "gemini-2.5-flash", "gemini-2.5-flash-lite", "gemini-2.0-flash", "gemini-2.0-flash-lite"}

  def __init__(self, api_key: str | None = None) -> None:
    self.name: str = "gemini"
    self._api_key = api_key

  def get_model(self, model: str | None = None) -> AIModel:
    """Return a Gemini model client."""
    model_name = model or self._DEFAULT_MODEL
    if model_name not in self._AVAILABLE_MODELS:
      raise ValueError(f"Unsupported Gemini model '{model_name}'.")
    return GeminiModel(model_name, api_key=self._api_key)
