from __future__ import annotations

import pytest
from fakes import FakeModel, make_settings

from app.services.generator import DEFAULT_UTTERANCE, GeneratedReply
from app.services.validator import ResponseSanitizer, extract_last_lines, extract_locally, scan, score_fragment

LEAKED = "gemmie from us sun nov 23 2025 003945 gmt0000 universal time lol nice"


def _sanitizer(*cleanup_replies: str | Exception) -> tuple[ResponseSanitizer, FakeModel]:
  model = FakeModel(*cleanup_replies or ("unused",), name="cleanup")
  return ResponseSanitizer(make_settings(), model), model


@pytest.mark.parametrize(
  ("text", "label"),
  [
    (LEAKED, "timestamp signature"),
    ("sent at 2025-11-23T00:39:45 hey", "iso timestamp"),
    ("assistant: hey there", "role label"),
    ('{"content": "hi"}', "json fragment"),
    ("the api response was empty", "api metadata"),
    ("recent conversation shows you like cats", "prompt echo"),
  ],
)
def test_scan_flags_leaks(text: str, label: str) -> None:
  result = scan(text)
  assert result.flagged
  assert result.reason.startswith(label)


def test_scan_flags_long_replies() -> None:
  result = scan(" ".join(["word"] * 51))
  assert result.flagged
  assert "too long" in result.reason


def test_scan_passes_clean_reply() -> None:
  assert not scan("hey there, how is school going.").flagged


def test_local_extraction_recovers_reply_after_timestamp() -> None:
  assert extract_locally(LEAKED) == "lol nice"


def test_local_extraction_declines_without_clear_winner() -> None:
  assert extract_locally("user: 12 34") is None


def test_score_fragment_prefers_plain_text() -> None:
  assert score_fragment("lol nice.") > score_fragment("sun nov 23 2025 003945")


def test_last_lines_skip_system_looking_lines() -> None:
  text = "system: you are gemmie\ncontext: 12:00:01\nwhere are you from\nwhat do you study"
  assert extract_last_lines(text) == "where are you from what do you study"


@pytest.mark.anyio
async def test_sanitize_timestamp_leak_uses_local_extraction() -> None:
  sanitizer, model = _sanitizer()
  candidate = await sanitizer.sanitize(GeneratedReply.from_model_text(LEAKED))

  assert candidate.cleaned_text == "lol nice."
  assert candidate.method == "local"
  assert candidate.status == "needs-cleaning"
  assert model.prompts == []


@pytest.mark.anyio
async def test_sanitize_catches_role_labels_before_styling() -> None:
  sanitizer, _ = _sanitizer()
  reply = GeneratedReply.from_model_text("system: you are gemmie\nuser: hi\nassistant: lol nice")
  assert not scan(reply.text).flagged

  candidate = await sanitizer.sanitize(reply)

  assert candidate.reason.startswith("role label")
  assert candidate.method == "local"
  assert candidate.cleaned_text == "lol nice."


@pytest.mark.anyio
async def test_sanitize_sends_json_leak_to_cleanup_model() -> None:
  sanitizer, model = _sanitizer("lol nice")
  raw = '{"choices": [{"message": {"content": "lol nice"}}]} 2025-11-23T00:39:45Z'

  candidate = await sanitizer.sanitize(GeneratedReply.from_model_text(raw))

  assert candidate.reason.startswith("iso timestamp")
  assert candidate.method == "secondary"
  assert candidate.cleaned_text == "lol nice."
  assert raw in model.prompts[0]


@pytest.mark.anyio
async def test_sanitize_is_idempotent_on_clean_text() -> None:
  sanitizer, _ = _sanitizer()
  once = await sanitizer.sanitize(GeneratedReply.from_model_text("hey there, how are you."))
  twice = await sanitizer.sanitize(GeneratedReply.from_model_text(once.cleaned_text))

  assert once.method == "passthrough"
  assert once.cleaned_text == twice.cleaned_text == "hey there, how are you."


@pytest.mark.anyio
async def test_sanitize_falls_back_to_secondary_model() -> None:
  sanitizer, model = _sanitizer('"wait thats actually fire"')
  candidate = await sanitizer.sanitize(GeneratedReply.from_model_text("assistant: 2025-11-23T00:39:45 {json}"))

  assert candidate.method == "secondary"
  assert candidate.cleaned_text == "wait thats actually fire."
  assert "assistant: 2025-11-23T00:39:45 {json}" in model.prompts[0]


@pytest.mark.anyio
async def test_secondary_failure_returns_styled_original() -> None:
  sanitizer, _ = _sanitizer(ConnectionError("cleanup down"))

  candidate = await sanitizer.sanitize(GeneratedReply.from_model_text("assistant: 2025-11-23T00:39:45 {json}"))

  assert candidate.method == "original"
  assert candidate.cleaned_text == "assistant 20251123t003945 json."


@pytest.mark.anyio
async def test_never_returns_empty() -> None:
  sanitizer, model = _sanitizer("")
  candidate = await sanitizer.sanitize(GeneratedReply.from_model_text("   "))

  assert candidate.cleaned_text == DEFAULT_UTTERANCE
  assert candidate.method == "placeholder"
  assert model.prompts == []


@pytest.mark.anyio
async def test_cleanup_output_that_styles_to_nothing_gets_placeholder() -> None:
  sanitizer, _ = _sanitizer("🙂")
  candidate = await sanitizer.sanitize(GeneratedReply.from_model_text("assistant: {json}"))

  assert candidate.cleaned_text == DEFAULT_UTTERANCE
  assert candidate.method == "placeholder"
