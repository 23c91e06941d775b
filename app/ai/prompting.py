"""Prompt rendering for the chat persona, the reply cleaner and reaction vibes."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from functools import lru_cache
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
  from app.services.context import Transcript
  from app.storage.messages_repo import MessageRecord


@lru_cache(maxsize=8)
def _load_prompt(name: str) -> str:
  try:
    path = Path(__file__).parent / "prompts" / name
    return path.read_text(encoding="utf-8").strip()
  except (FileNotFoundError, PermissionError, UnicodeDecodeError) as exc:
    raise RuntimeError(f"Failed to load prompt '{name}': {exc}") from exc


def _replace_placeholders(template: str, values: dict[str, str]) -> str:
  """Substitute {{PLACEHOLDER}} markers with runtime values."""
  rendered = template
  for key, value in values.items():
    rendered = rendered.replace(f"{{{{{key}}}}}", value)

  return rendered


def _format_history(history: Sequence[MessageRecord]) -> str:
  if not history:
    return "-"
  lines = []
  for message in history:
    # Attachments-only messages still occupy a turn in the conversation.
    content = message.content or "[attachment]"
    lines.append(f"{message.user_name} ({message.user_country}): {content}")
  return "\n".join(lines)


def render_reply_prompt(transcript: Transcript, now: datetime) -> str:
  """Build the persona prompt for one aggregated burst."""
  persona = _load_prompt("persona.md")
  burst = "\n".join(f'{item.user_name} ({item.country}): "{item.message}"' for item in transcript.triggers)
  media_note = "\nthe latest message includes an image or video, react to it naturally." if transcript.media_url else ""
  return (
    f"{persona}\n\n"
    f"current time: {now.strftime('%A %d %B %Y, %H:%M')} utc\n\n"
    f"earlier conversation, for background only:\n{_format_history(transcript.history)}\n\n"
    f"new messages since your last reply, oldest first:\n{burst}{media_note}\n\n"
    "respond as gemmie to the new messages in one reply (no capitals, max 2 sentences, be curious about them):"
  )


def render_cleaner_prompt(candidate: str) -> str:
  return _replace_placeholders(_load_prompt("cleaner.md"), {"CANDIDATE": candidate})


def render_vibe_prompt(content: str) -> str:
  return _replace_placeholders(_load_prompt("emoji_vibe.md"), {"MESSAGE": content})
