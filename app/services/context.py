"""Transcript assembly for one generation run."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from app.services.response_timer import SELECTED_MEDIA_KEY, ResponseTimer, Trigger
from app.storage.delay_queue import DelayQueueBackend
from app.storage.messages_repo import MessageRecord, MessagesRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Transcript:
  """The burst being answered plus older history kept apart as background."""

  triggers: list[Trigger]
  history: list[MessageRecord] = field(default_factory=list)
  media_url: str | None = None

  @property
  def latest(self) -> Trigger:
    return self.triggers[-1]


class ContextAggregator:
  """Merges the firing trigger with queued triggers and recent history."""

  def __init__(self, timer: ResponseTimer, backend: DelayQueueBackend, messages: MessagesRepository, history_limit: int) -> None:
    self._timer = timer
    self._backend = backend
    self._messages = messages
    self._history_limit = history_limit

  async def build_context(self, trigger: Trigger) -> Transcript:
    # Appends landing after this drain go to a fresh list and belong to the next window.
    queued = await self._timer.drain_queue()

    seen: set[str] = set()
    ordered: list[tuple[int, int, Trigger]] = []
    for index, item in enumerate([trigger, *queued]):
      if item.trigger_id in seen:
        continue
      seen.add(item.trigger_id)
      ordered.append((item.sent_at, index, item))
    ordered.sort(key=lambda entry: (entry[0], entry[1]))
    triggers = [item for _, _, item in ordered]

    try:
      history = await self._messages.recent_messages(self._history_limit)
    except Exception as e:
      # Background history is optional; the burst alone is enough to reply.
      logger.warning("Failed to load recent messages: %s", e)
      history = []

    burst_ids = {item.trigger_id for item in triggers}
    history = [message for message in history if message.id not in burst_ids]

    media_url = await self._backend.pop(SELECTED_MEDIA_KEY)
    logger.info("Built context with %s trigger(s), %s history message(s)", len(triggers), len(history))
    return Transcript(triggers=triggers, history=history, media_url=media_url)
