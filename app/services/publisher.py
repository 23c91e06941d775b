"""Persist gemmie replies and fan them out to realtime subscribers."""

from __future__ import annotations

import json
import logging
from typing import Any, Protocol

from redis.asyncio import Redis
from redis.exceptions import RedisError

from app.storage.messages_repo import MessageRecord, MessagesRepository

logger = logging.getLogger(__name__)

GEMMIE_USER_NAME = "gemmie"
GEMMIE_COUNTRY = "US"
NEW_MESSAGE_EVENT = "new-message"
NEW_REACTION_EVENT = "new-reaction"


class PublishError(Exception):
  """Raised when a reply could not be stored or broadcast."""


class Fanout(Protocol):
  """Realtime pub/sub channel used by chat clients."""

  async def publish(self, channel: str, event: str, payload: dict[str, Any]) -> None:
    """Broadcast event with payload on channel."""
    ...


class RedisFanout(Fanout):
  """Broadcast chat events through Redis PUBLISH."""

  def __init__(self, client: Redis) -> None:
    self._redis = client

  async def publish(self, channel: str, event: str, payload: dict[str, Any]) -> None:
    encoded = json.dumps({"event": event, "data": payload}, ensure_ascii=False)
    receivers = await self._redis.publish(channel, encoded)
    logger.debug("Published %s on %s to %s subscriber(s)", event, channel, receivers)


class Publisher:
  """Stores a reply as the gemmie user and broadcasts it."""

  def __init__(self, messages: MessagesRepository, fanout: Fanout, channel: str) -> None:
    self._messages = messages
    self._fanout = fanout
    self.channel = channel

  async def publish_reply(self, content: str) -> MessageRecord:
    try:
      record = await self._messages.create_message(content=content, user_name=GEMMIE_USER_NAME, user_country=GEMMIE_COUNTRY)
    except Exception as e:
      raise PublishError(f"Failed to store gemmie reply: {e}") from e

    await self.broadcast(NEW_MESSAGE_EVENT, record.to_payload())
    logger.info("Gemmie sent message %s: %s", record.id, content)
    return record

  async def broadcast(self, event: str, payload: dict[str, Any]) -> None:
    try:
      await self._fanout.publish(self.channel, event, payload)
    except (RedisError, OSError) as e:
      raise PublishError(f"Failed to publish {event}: {e}") from e
