"""Occasional emoji reactions from gemmie on user messages."""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from app.ai.prompting import render_vibe_prompt
from app.ai.providers.base import AIModel
from app.config import Settings
from app.services.publisher import GEMMIE_USER_NAME, NEW_REACTION_EVENT, Publisher
from app.services.tasks.interface import DeferredJobDispatcher
from app.storage.delay_queue import DelayQueueBackend
from app.storage.messages_repo import MessageRecord, MessagesRepository

logger = logging.getLogger(__name__)

REACTED_MESSAGES_KEY = "gemmie:reacted-messages"
LAST_REACTION_KEY = "gemmie:last-emoji-reaction"
REACTION_COUNT_KEY = "gemmie:reaction-count"
LAST_EMOJI_TIMESTAMP_KEY = "gemmie:last-emoji-timestamp"
EMOJI_PROCESS_PATH = "/api/gemmie/emoji-process"

DEFAULT_EMOJI = "❤️"
VIBE_EMOJIS: dict[str, str] = {"love": "❤️", "funny": "😂", "greeting": "👋", "sad": "😢", "approval": "👍"}

DELAY_JITTER_SECONDS = 10
MIN_SECONDS_BETWEEN_CALLBACKS = 25
DAY_SECONDS = 86400


def map_vibe_to_emoji(vibe: str) -> str | None:
  vibe = vibe.strip().strip(".\"'").lower()
  if not vibe:
    return None
  if vibe in VIBE_EMOJIS:
    return VIBE_EMOJIS[vibe]
  for key, emoji in VIBE_EMOJIS.items():
    if key in vibe or vibe in key:
      return emoji
  return None


@dataclass(frozen=True)
class ReactionResult:
  success: bool
  reason: str
  message_id: str
  emoji: str | None = None
  reactions: list[dict[str, str]] = field(default_factory=list)


class ReactionPlanner:
  """Decides when gemmie reacts and delivers reactions through the dispatcher."""

  def __init__(
    self,
    settings: Settings,
    backend: DelayQueueBackend,
    dispatcher: DeferredJobDispatcher,
    messages: MessagesRepository,
    publisher: Publisher,
    vibe_model: AIModel,
    *,
    rng: random.Random | None = None,
    clock: Callable[[], float] = time.time,
  ) -> None:
    self.settings = settings
    self._backend = backend
    self._dispatcher = dispatcher
    self._messages = messages
    self._publisher = publisher
    self._vibe_model = vibe_model
    self._rng = rng or random.Random()
    self._clock = clock

  def _daily_key(self) -> str:
    today = datetime.fromtimestamp(self._clock(), UTC).date().isoformat()
    return f"{REACTION_COUNT_KEY}:{today}"

  def _is_skipped_user(self, user_name: str) -> bool:
    name = user_name.strip().lower()
    return name == GEMMIE_USER_NAME or name in self.settings.admin_user_names

  async def should_react(self, message_id: str) -> bool:
    if await self._backend.set_contains(REACTED_MESSAGES_KEY, message_id):
      logger.debug("Message %s already reacted to", message_id)
      return False

    count = await self._backend.get(self._daily_key())
    if count and int(count) >= self.settings.reaction_daily_limit:
      logger.debug("Daily reaction limit reached")
      return False

    now = self._clock()
    multiplier = 1.0
    last = await self._backend.get(LAST_REACTION_KEY)
    if last:
      elapsed = now - int(last)
      if elapsed < self.settings.reaction_min_interval_seconds:
        logger.debug("Reaction cooldown active (%ss since last)", int(elapsed))
        return False
      # Longer silences make a reaction more likely, up to double the base chance.
      multiplier = min(1 + elapsed / self.settings.reaction_max_interval_seconds, 2.0)

    roll = self._rng.random()
    chance = self.settings.reaction_base_chance * multiplier
    logger.debug("Reaction roll %.3f against %.3f", roll, chance)
    return roll < chance

  def reaction_delay(self) -> int:
    base = self.settings.reaction_delay_seconds
    return max(1, round(base + self._rng.uniform(-DELAY_JITTER_SECONDS, DELAY_JITTER_SECONDS)))

  async def select_emoji(self, content: str) -> str:
    """Classify the message vibe with the cleanup model and map it to an emoji."""
    try:
      response = await self._vibe_model.generate(render_vibe_prompt(content), max_tokens=10, temperature=0.1)
    except Exception as e:
      logger.warning("Emoji selection failed, using default: %s", e)
      return DEFAULT_EMOJI
    return map_vibe_to_emoji(response.content or "") or DEFAULT_EMOJI

  async def record_reaction(self, message_id: str) -> int:
    now = int(self._clock())
    await self._backend.set_add(REACTED_MESSAGES_KEY, message_id)
    await self._backend.set(LAST_REACTION_KEY, str(now))
    count = await self._backend.incr(self._daily_key(), ttl_seconds=DAY_SECONDS)
    logger.info("Gemmie reacted to message %s; daily count %s", message_id, count)
    return count

  async def stats(self) -> dict[str, Any]:
    count = await self._backend.get(self._daily_key())
    last = await self._backend.get(LAST_REACTION_KEY)
    last_reaction = datetime.fromtimestamp(int(last), UTC).isoformat() if last else None
    return {"today": int(count or 0), "dailyLimit": self.settings.reaction_daily_limit, "lastReaction": last_reaction}

  async def clear(self) -> None:
    for key in (LAST_REACTION_KEY, LAST_EMOJI_TIMESTAMP_KEY, REACTED_MESSAGES_KEY, self._daily_key()):
      await self._backend.delete(key)
    logger.info("Cleared reaction data")

  async def maybe_schedule(self, message: MessageRecord) -> str | None:
    """Schedule a delayed reaction to a new user message when the dice say so."""
    if self._is_skipped_user(message.user_name) or not message.content.strip():
      return None
    if not self.settings.base_url or not await self.should_react(message.id):
      return None

    delay = self.reaction_delay()
    target = f"{self.settings.base_url.rstrip('/')}{EMOJI_PROCESS_PATH}"
    job_id = await self._dispatcher.schedule(target, {"messageId": message.id}, delay)
    if job_id:
      logger.info("Gemmie will react to message %s in %ss", message.id, delay)
    else:
      logger.warning("Failed to schedule reaction for message %s", message.id)
    return job_id

  async def process_reaction(self, message_id: str) -> ReactionResult:
    """Apply a scheduled reaction unless one of the skip rules holds."""
    now = int(self._clock())
    last = await self._backend.get(LAST_EMOJI_TIMESTAMP_KEY)
    if last and now - int(last) < MIN_SECONDS_BETWEEN_CALLBACKS:
      return ReactionResult(success=False, reason="too_soon", message_id=message_id)

    message = await self._messages.get_message(message_id)
    if message is None:
      return ReactionResult(success=False, reason="message_not_found", message_id=message_id)
    if any(reaction.get("userName") == GEMMIE_USER_NAME for reaction in message.reactions):
      return ReactionResult(success=False, reason="already_reacted", message_id=message_id)
    if self._is_skipped_user(message.user_name):
      return ReactionResult(success=False, reason="skip_user", message_id=message_id)

    emoji = await self.select_emoji(message.content)
    updated = await self._messages.add_reaction(message_id, emoji=emoji, user_name=GEMMIE_USER_NAME)
    if updated is None:
      return ReactionResult(success=False, reason="message_not_found", message_id=message_id)

    await self.record_reaction(message_id)
    await self._backend.set(LAST_EMOJI_TIMESTAMP_KEY, str(now))
    await self._publisher.broadcast(NEW_REACTION_EVENT, {"messageId": message_id, "reactions": updated.reactions})
    logger.info("Reaction %s sent for message %s", emoji, message_id)
    return ReactionResult(success=True, reason="reacted", message_id=message_id, emoji=emoji, reactions=updated.reactions)
