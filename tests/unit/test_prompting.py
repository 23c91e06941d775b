from __future__ import annotations

from datetime import UTC, datetime

from app.ai.prompting import render_cleaner_prompt, render_reply_prompt, render_vibe_prompt
from app.services.context import Transcript
from app.services.response_timer import Trigger
from app.storage.messages_repo import MessageRecord

NOW = datetime(2025, 11, 23, 0, 39, tzinfo=UTC)


def _record(content: str, user_name: str = "kim") -> MessageRecord:
  return MessageRecord(id=content, content=content, user_name=user_name, user_country="FR", created_at=NOW)


def test_reply_prompt_separates_history_from_new_messages() -> None:
  transcript = Transcript(
    triggers=[Trigger.new(user_name="sam", message="anyone from japan", country="JP", sent_at=1)],
    history=[_record("bonjour"), _record("", user_name="lee")],
  )

  prompt = render_reply_prompt(transcript, NOW)

  assert "kim (FR): bonjour" in prompt
  assert "lee (FR): [attachment]" in prompt
  assert prompt.index("bonjour") < prompt.index('sam (JP): "anyone from japan"')
  assert "current time: Sunday 23 November 2025, 00:39 utc" in prompt
  assert "image or video" not in prompt


def test_reply_prompt_mentions_media() -> None:
  transcript = Transcript(triggers=[Trigger.new(user_name="sam", message="look", country="JP", sent_at=1)], media_url="https://cdn.example/cat.png")
  assert "image or video" in render_reply_prompt(transcript, NOW)


def test_cleaner_and_vibe_prompts_fill_placeholders() -> None:
  cleaner = render_cleaner_prompt("gemmie from us lol nice")
  vibe = render_vibe_prompt("my cat sneezed")

  assert "gemmie from us lol nice" in cleaner
  assert "{{CANDIDATE}}" not in cleaner
  assert "my cat sneezed" in vibe
  assert "{{MESSAGE}}" not in vibe
