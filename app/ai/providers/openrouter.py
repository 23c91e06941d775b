"""OpenRouter provider implementation using the openai SDK."""

from __future__ import annotations

import logging
import os
from typing import Final

from openai import AsyncOpenAI

from app.ai.backoff import retry_with_backoff
from app.ai.providers.base import AIModel, ModelResponse, Provider, SimpleModelResponse

logger = logging.getLogger(__name__)


class OpenRouterModel(AIModel):
  """OpenRouter chat-completions client."""

  def __init__(self, name: str, api_key: str | None = None, base_url: str | None = None) -> None:
    self.name: str = name

    api_key = api_key or os.getenv("OPENROUTER_API_KEY")
    if not api_key:
      raise ValueError("OPENROUTER_API_KEY environment variable is required")

    # OpenRouter uses the OpenAI-compatible API; we add optional attribution headers.
    default_headers = {}
    referer = os.getenv("OPENROUTER_HTTP_REFERER")
    if referer:
      default_headers["HTTP-Referer"] = referer
    title = os.getenv("OPENROUTER_TITLE")
    if title:
      default_headers["X-Title"] = title

    self._client = AsyncOpenAI(api_key=api_key, base_url=base_url or "https://openrouter.ai/api/v1", default_headers=default_headers or None, timeout=30.0)

  async def generate(self, prompt: str, *, max_tokens: int | None = None, temperature: float | None = None) -> ModelResponse:
    """Generate text response from OpenRouter."""
    dummy = AIModel.load_dummy_response("OPENROUTER")
    if dummy is not None:
      logger.info("OpenRouter dummy response:\n%s", dummy)
      return SimpleModelResponse(content=dummy, usage=None)

    options: dict[str, float | int] = {}
    if max_tokens is not None:
      options["max_tokens"] = max_tokens
    if temperature is not None:
      options["temperature"] = temperature

    response = await retry_with_backoff(self._client.chat.completions.create, model=self.name, messages=[{"role": "user", "content": prompt}], **options)
    if not response.choices:
      raise RuntimeError(f"OpenRouter returned no choices for model '{self.name}'.")

    message = response.choices[0].message
    # Reasoning models sometimes leave content empty and put the answer in the reasoning field.
    content = (message.content or "").strip() or (getattr(message, "reasoning", None) or "").strip()
    logger.info("OpenRouter response:\n%s", content)
    usage = None

    if response.usage:
      usage = {"prompt_tokens": response.usage.prompt_tokens, "completion_tokens": response.usage.completion_tokens, "total_tokens": response.usage.total_tokens}

    return SimpleModelResponse(content=content, usage=usage)


class OpenRouterProvider(Provider):
  """OpenRouter provider."""

  _DEFAULT_MODEL: Final[str] = "meta-llama/llama-3.3-70b-instruct:free"
  _AVAILABLE_MODELS: Final[set[str]] = {
    # Persona options.
    "meta-llama/llama-3.3-70b-instruct:free",
    "google/gemma-3-27b-it:free",
    "deepseek/deepseek-chat-v3-0324:free",
    "z-ai/glm-4.5-air:free",
    # Cleanup and classification options.
    "allenai/olmo-3-32b-think:free",
    "openai/gpt-oss-20b:free",
    "mistralai/mistral-small-3.2-24b-instruct:free",
  }

  def __init__(self, api_key: str | None = None, base_url: str | None = None) -> None:
    self.name: str = "openrouter"
    self._api_key = api_key
    self._base_url = base_url

  def get_model(self, model: str | None = None) -> AIModel:
    """Return an OpenRouter model client."""
    model_name = model or self._DEFAULT_MODEL
    if model_name not in self._AVAILABLE_MODELS:
      raise ValueError(f"Unsupported OpenRouter model '{model_name}'.")
    return OpenRouterModel(model_name, api_key=self._api_key, base_url=self._base_url)
