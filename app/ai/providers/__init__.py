"""Provider implementations."""

from app.ai.providers.base import AIModel, MediaPart, ModelResponse, Provider, SimpleModelResponse
from app.ai.providers.gemini import GeminiModel, GeminiProvider
from app.ai.providers.openrouter import OpenRouterModel, OpenRouterProvider

__all__ = ["AIModel", "MediaPart", "ModelResponse", "SimpleModelResponse", "Provider", "GeminiModel", "GeminiProvider", "OpenRouterModel", "OpenRouterProvider"]
