"""Detect and repair replies that leaked prompt context or metadata."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Literal

from app.ai.prompting import render_cleaner_prompt
from app.ai.providers.base import AIModel
from app.config import Settings
from app.services.generator import DEFAULT_UTTERANCE, GeneratedReply, apply_style_rules

logger = logging.getLogger(__name__)

CandidateStatus = Literal["valid", "needs-cleaning"]
CleanMethod = Literal["passthrough", "local", "secondary", "original", "placeholder"]

MAX_WORDS = 50

# Ordered; the first match names the problem.
PROBLEM_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
  (re.compile(r"\b(?:mon|tue|wed|thu|fri|sat|sun)[a-z]*\s+(?:jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec)[a-z]*\s+\d{1,2}\s+\d{4}", re.I), "timestamp signature"),
  (re.compile(r"gemmie\s+from\s+\w+\s+\w+\s+\w+\s+\d+\s+\d+\s+\d+\s+gmt", re.I), "sender header"),
  (re.compile(r"\bgmt\s*[+-]?\d{4}\b", re.I), "timezone offset"),
  (re.compile(r"(?:coordinated\s+)?universal\s+time", re.I), "timezone name"),
  (re.compile(r"\d{4}-\d{2}-\d{2}t\d{2}:\d{2}:\d{2}", re.I), "iso timestamp"),
  (re.compile(r"\b\d{1,2}/\d{1,2}/\d{4}\b"), "date"),
  (re.compile(r"\b\d{1,2}:\d{2}:\d{2}\b"), "clock time"),
  (re.compile(r"\b(?:system|user|assistant|context|timestamp|model|role|content)\s*:", re.I), "role label"),
  (re.compile(r"choices?\[\d+\]", re.I), "api metadata"),
  (re.compile(r"message\s*:\s*\{", re.I), "json fragment"),
  (re.compile(r"\{.*\"content\"", re.I), "json fragment"),
  (re.compile(r"\"choices\"", re.I), "json fragment"),
  (re.compile(r"\b(?:response|status)\s+code\b", re.I), "api metadata"),
  (re.compile(r"\bopenrouter\b|\bapi\s+response\b", re.I), "api metadata"),
  (re.compile(r"recent\s+conversation|conversation\s+context|messages?\s+leading\s+up|their\s+message\s*:", re.I), "prompt echo"),
  (re.compile(r"new\s+messages\s+since\s+your\s+last\s+reply|earlier\s+conversation,?\s+for\s+background", re.I), "prompt echo"),
  (re.compile(r"\[.*\]\s*:.*message", re.I), "prompt echo"),
  (re.compile(r"<[^>]+>.*response", re.I), "markup"),
)

_SEPARATORS_RE = re.compile(r"\n|---+|\||\]|:|(?:coordinated\s+)?universal\s+time|\bgmt\s*[+-]?\d{4}\b", re.I)
_PLAIN_TEXT_RE = re.compile(r"[a-z ,.'?!]+", re.I)
_DIGITS_RE = re.compile(r"\d")
_JSON_RE = re.compile(r"[{}\[\]\"]|\w+\"?\s*:")
_SYSTEM_WORDS_RE = re.compile(r"\b(?:system|assistant|user|context|timestamp|gmt|utc|api|json|role|content|gemmie from)\b", re.I)

CONFIDENT_SCORE = 3
CONFIDENT_MARGIN = 2


@dataclass(frozen=True)
class ScanResult:
  flagged: bool
  reason: str


@dataclass(frozen=True)
class GeneratedCandidate:
  """A generated reply and what sanitizing did to it."""

  raw: str
  status: CandidateStatus
  cleaned_text: str
  reason: str
  method: CleanMethod


def scan(text: str) -> ScanResult:
  """Check a candidate against the problem signatures."""
  stripped = (text or "").strip()
  if not stripped:
    return ScanResult(flagged=True, reason="empty response")

  for pattern, label in PROBLEM_PATTERNS:
    if pattern.search(stripped):
      return ScanResult(flagged=True, reason=f"{label}: {pattern.pattern}")

  word_count = len(stripped.split())
  if word_count > MAX_WORDS:
    return ScanResult(flagged=True, reason=f"response too long: {word_count} words")

  return ScanResult(flagged=False, reason="response is valid")


def score_fragment(fragment: str) -> int:
  score = 0
  if _PLAIN_TEXT_RE.fullmatch(fragment):
    score += 2
  if 2 <= len(fragment.split()) <= 20:
    score += 2
  if fragment.endswith((".", "!", "?")):
    score += 1
  if _DIGITS_RE.search(fragment):
    score -= 3
  if _JSON_RE.search(fragment):
    score -= 3
  if _SYSTEM_WORDS_RE.search(fragment):
    score -= 3
  return score


def extract_locally(text: str) -> str | None:
  """Return the best fragment when it clearly beats the raw text, else None."""
  fragments = [fragment.strip(" \t\"',") for fragment in _SEPARATORS_RE.split(text)]
  fragments = [fragment for fragment in fragments if fragment]
  if not fragments:
    return None

  # Ties go to the later fragment; leaked context usually precedes the reply.
  best = max(reversed(fragments), key=score_fragment)
  best_score = score_fragment(best)
  if best_score >= CONFIDENT_SCORE and best_score - score_fragment(text.strip()) >= CONFIDENT_MARGIN and not scan(best).flagged:
    return best
  return None


def extract_last_lines(text: str) -> str | None:
  """Fallback: keep the last one or two lines that do not look like system output."""
  lines = [line.strip() for line in text.splitlines() if line.strip()]
  conversational = [line for line in lines if not scan(line).flagged and not _SYSTEM_WORDS_RE.search(line)]
  if not conversational:
    return None
  candidate = " ".join(conversational[-2:])
  return None if scan(candidate).flagged else candidate


def _strip_wrapping_quotes(text: str) -> str:
  text = text.strip()
  while len(text) >= 2 and text[0] == text[-1] and text[0] in {'"', "'", "`"}:
    text = text[1:-1].strip()
  return text


class ResponseSanitizer:
  """Pattern scan, local extraction, then a secondary cleanup model."""

  def __init__(self, settings: Settings, cleanup_model: AIModel) -> None:
    self.settings = settings
    self._cleanup_model = cleanup_model

  async def sanitize(self, reply: GeneratedReply) -> GeneratedCandidate:
    """Scan the raw model text, then the styled text, and repair from the raw text when flagged."""
    if not reply.raw:
      return GeneratedCandidate(raw=reply.raw, status="needs-cleaning", cleaned_text=DEFAULT_UTTERANCE, reason="empty response", method="placeholder")

    # Role labels and JSON only survive in the raw text; the style rules strip colons, quotes and braces.
    result = scan(reply.raw)
    if not result.flagged:
      result = scan(reply.text)
    if not result.flagged:
      return GeneratedCandidate(raw=reply.raw, status="valid", cleaned_text=reply.text, reason=result.reason, method="passthrough")

    logger.warning("Reply flagged (%s): %r", result.reason, reply.raw)

    cleaned = extract_locally(reply.raw) or extract_last_lines(reply.raw)
    if cleaned:
      return self._finish(reply.raw, cleaned, result.reason, "local")

    secondary = await self._clean_with_model(reply.raw)
    if secondary:
      return self._finish(reply.raw, secondary, result.reason, "secondary")

    return self._finish(reply.raw, reply.text, result.reason, "original")

  async def _clean_with_model(self, raw: str) -> str | None:
    try:
      response = await self._cleanup_model.generate(render_cleaner_prompt(raw), max_tokens=self.settings.cleanup_max_tokens, temperature=self.settings.cleanup_temperature)
    except Exception as e:
      logger.error("Cleanup model %s failed: %s", self._cleanup_model.name, e)
      return None
    cleaned = _strip_wrapping_quotes(response.content or "")
    logger.info("Cleanup model result: %r", cleaned)
    return cleaned or None

  def _finish(self, raw: str, cleaned: str, reason: str, method: CleanMethod) -> GeneratedCandidate:
    styled = apply_style_rules(cleaned)
    if not styled:
      return GeneratedCandidate(raw=raw, status="needs-cleaning", cleaned_text=DEFAULT_UTTERANCE, reason=reason, method="placeholder")
    return GeneratedCandidate(raw=raw, status="needs-cleaning", cleaned_text=styled, reason=reason, method=method)
