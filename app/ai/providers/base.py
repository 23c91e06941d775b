"""Base interfaces for AI providers and models."""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Protocol


class ModelResponse(Protocol):
  """Response contract for model outputs."""

  content: str
  usage: dict[str, int] | None


@dataclass
class SimpleModelResponse:
  """Minimal model response structure."""

  content: str
  usage: dict[str, int] | None = None


@dataclass(frozen=True)
class MediaPart:
  """Inline media passed to multimodal models."""

  data: bytes
  mime_type: str


class AIModel(ABC):
  """Abstract base class for AI models."""

  name: str
  supports_media: bool = False

  @abstractmethod
  async def generate(self, prompt: str, *, max_tokens: int | None = None, temperature: float | None = None) -> ModelResponse:
    """Generate a response for the given prompt."""

  async def generate_with_media(self, prompt: str, media: list[MediaPart], *, max_tokens: int | None = None, temperature: float | None = None) -> ModelResponse:
    """Generate a response grounded on inline media."""
    raise RuntimeError(f"Model '{self.name}' does not accept media input.")

  @staticmethod
  def load_dummy_response(agent: str) -> str | None:
    """Return a canned response when GEMMIE_DUMMY_<AGENT>_RESPONSE is set."""
    # Lets local runs and smoke tests exercise the pipeline without provider credits.
    value = os.getenv(f"GEMMIE_DUMMY_{agent.upper()}_RESPONSE")
    if value is None or value.strip() == "":
      return None
    return value


class Provider(ABC):
  """Abstract base class for AI providers."""

  name: str

  @abstractmethod
  def get_model(self, model: str | None = None) -> AIModel:
    """Return the model client for the provider."""
