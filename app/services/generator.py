"""Persona reply generation with deterministic style enforcement."""

from __future__ import annotations

import logging
import random
import re
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

import httpx

from app.ai.prompting import render_reply_prompt
from app.ai.providers.base import AIModel, MediaPart
from app.config import Settings
from app.services.context import Transcript

logger = logging.getLogger(__name__)

DEFAULT_UTTERANCE = "hey there, how are you doing today."

FALLBACK_UTTERANCES: tuple[str, ...] = (
  "hey there, whats going on in your part of the world.",
  "hi, tell me something interesting about where you live.",
  "hello, what do you like to do for fun.",
  "hey, are you in school or working right now.",
)

_EMOJI_RE = re.compile("[\U0001f000-\U0001faff\u2600-\u27bf\ufe0f\u200d]+")
_DASH_RE = re.compile(r"[\u2014\u2013]|-(?=\s)|(?<=\s)-")
_DISALLOWED_RE = re.compile(r"[^\w\s,.]")
_SPACES_RE = re.compile(r"\s+")
_SENTENCE_SPLIT_RE = re.compile(r"[.!?]+")


def apply_style_rules(text: str) -> str:
  """Force the persona style regardless of what the model returned."""
  text = text.lower()
  text = _EMOJI_RE.sub("", text)
  text = _DASH_RE.sub("", text)
  text = text.replace(":", "")

  # Map sentence enders to periods before restricting the charset so sentence counting survives.
  text = text.replace("!", ".").replace("?", ".")
  text = _DISALLOWED_RE.sub("", text)
  text = _SPACES_RE.sub(" ", text).strip()

  sentences = [sentence.strip() for sentence in _SENTENCE_SPLIT_RE.split(text) if sentence.strip()]
  if not sentences:
    return ""
  text = ". ".join(sentences[:2])

  if not text.endswith((".", ",")):
    text += "."
  return text


@dataclass(frozen=True)
class GeneratedReply:
  """Model output as returned, plus the same text after the style rules."""

  raw: str
  text: str

  @classmethod
  def from_model_text(cls, raw: str) -> GeneratedReply:
    raw = raw.strip()
    return cls(raw=raw, text=apply_style_rules(raw) or DEFAULT_UTTERANCE)


class ResponseGenerator:
  """Produces one candidate reply per transcript; never raises for model failures."""

  def __init__(
    self,
    settings: Settings,
    model: AIModel,
    *,
    rng: random.Random | None = None,
    clock: Callable[[], datetime] | None = None,
    http_client_factory: Callable[[], httpx.AsyncClient] | None = None,
  ) -> None:
    self.settings = settings
    self._model = model
    self._rng = rng or random.Random()
    self._clock = clock or (lambda: datetime.now(UTC))
    self._http_client_factory = http_client_factory or (lambda: httpx.AsyncClient(timeout=15.0, follow_redirects=True))

  def fallback(self) -> str:
    return self._rng.choice(FALLBACK_UTTERANCES)

  async def generate(self, transcript: Transcript) -> GeneratedReply:
    prompt = render_reply_prompt(transcript, self._clock())
    options = {"max_tokens": self.settings.primary_max_tokens, "temperature": self.settings.primary_temperature}
    try:
      media = await self._load_media(transcript.media_url) if transcript.media_url and self._model.supports_media else None
      if media is not None:
        response = await self._model.generate_with_media(prompt, [media], **options)
      else:
        response = await self._model.generate(prompt, **options)
    except Exception as e:
      logger.error("Primary model %s failed, using fallback: %s", self._model.name, e, exc_info=True)
      return GeneratedReply.from_model_text(self.fallback())

    return GeneratedReply.from_model_text(response.content or "")

  async def _load_media(self, url: str) -> MediaPart | None:
    """Fetch the selected attachment for multimodal models; None when unusable."""
    try:
      async with self._http_client_factory() as client:
        response = await client.get(url)
        response.raise_for_status()
    except httpx.HTTPError as e:
      logger.warning("Failed to fetch media %s: %s", url, e)
      return None

    mime_type = response.headers.get("content-type", "").split(";")[0].strip()
    if not mime_type.startswith(("image/", "video/")):
      logger.info("Skipping media %s with content type %r", url, mime_type)
      return None
    if len(response.content) > self.settings.max_media_bytes:
      logger.info("Skipping media %s larger than %s bytes", url, self.settings.max_media_bytes)
      return None
    return MediaPart(data=response.content, mime_type=mime_type)
