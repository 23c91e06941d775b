"""Chat message persistence."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.schema.messages import ChatMessage


@dataclass
class MessageRecord:
  """A persisted chat message."""

  id: str
  content: str
  user_name: str
  user_country: str
  created_at: datetime
  attachments: list[dict[str, Any]] = field(default_factory=list)
  reply_to: str | None = None
  reactions: list[dict[str, str]] = field(default_factory=list)
  edited: bool = False
  edited_at: datetime | None = None

  def to_payload(self) -> dict[str, Any]:
    """Serialize for realtime subscribers and API clients."""
    return {
      "_id": self.id,
      "content": self.content,
      "userName": self.user_name,
      "userCountry": self.user_country,
      "timestamp": self.created_at.isoformat(),
      "attachments": list(self.attachments),
      "replyTo": self.reply_to,
      "reactions": list(self.reactions),
      "edited": self.edited,
      "editedAt": self.edited_at.isoformat() if self.edited_at else None,
    }


class MessagesRepository(Protocol):
  """Repository contract for chat messages."""

  async def create_message(self, *, content: str, user_name: str, user_country: str, attachments: list[dict[str, Any]] | None = None, reply_to: str | None = None) -> MessageRecord:
    """Persist a new message."""

  async def get_message(self, message_id: str) -> MessageRecord | None:
    """Fetch one message."""

  async def list_messages(self, *, limit: int, before: datetime | None = None) -> list[MessageRecord]:
    """Return up to limit messages older than before, newest first."""

  async def recent_messages(self, limit: int) -> list[MessageRecord]:
    """Return the latest limit messages, oldest first."""

  async def add_reaction(self, message_id: str, *, emoji: str, user_name: str) -> MessageRecord | None:
    """Append a reaction and return the updated message."""


class PostgresMessagesRepository(MessagesRepository):
  """Persist chat messages to Postgres using SQLAlchemy."""

  def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None) -> None:
    self._factory = session_factory

  def _session(self) -> AsyncSession:
    if self._factory is None:
      raise RuntimeError("Database connection is not configured (GEMMIE_PG_DSN is missing).")
    return self._factory()

  async def create_message(self, *, content: str, user_name: str, user_country: str, attachments: list[dict[str, Any]] | None = None, reply_to: str | None = None) -> MessageRecord:
    async with self._session() as session:
      row = ChatMessage(
        id=uuid.uuid4().hex,
        content=content,
        user_name=user_name,
        user_country=user_country,
        attachments=list(attachments or []),
        reply_to=reply_to,
        reactions=[],
        edited=False,
        created_at=datetime.now(UTC),
      )
      session.add(row)
      await session.commit()
      return _row_to_record(row)

  async def get_message(self, message_id: str) -> MessageRecord | None:
    async with self._session() as session:
      row = await session.get(ChatMessage, message_id)
      return _row_to_record(row) if row is not None else None

  async def list_messages(self, *, limit: int, before: datetime | None = None) -> list[MessageRecord]:
    async with self._session() as session:
      stmt = select(ChatMessage).order_by(ChatMessage.created_at.desc()).limit(limit)
      if before is not None:
        stmt = stmt.where(ChatMessage.created_at < before)
      result = await session.execute(stmt)
      return [_row_to_record(row) for row in result.scalars().all()]

  async def recent_messages(self, limit: int) -> list[MessageRecord]:
    newest_first = await self.list_messages(limit=limit)
    return list(reversed(newest_first))

  async def add_reaction(self, message_id: str, *, emoji: str, user_name: str) -> MessageRecord | None:
    async with self._session() as session:
      # Row lock so concurrent reactions on one message do not overwrite each other.
      stmt = select(ChatMessage).where(ChatMessage.id == message_id).with_for_update()
      result = await session.execute(stmt)
      row = result.scalar_one_or_none()
      if row is None:
        return None
      # Reassign the list so SQLAlchemy sees the JSONB column as dirty.
      row.reactions = [*row.reactions, {"emoji": emoji, "userName": user_name}]
      await session.commit()
      return _row_to_record(row)


def _row_to_record(row: ChatMessage) -> MessageRecord:
  return MessageRecord(
    id=row.id,
    content=row.content,
    user_name=row.user_name,
    user_country=row.user_country,
    created_at=row.created_at,
    attachments=list(row.attachments or []),
    reply_to=row.reply_to,
    reactions=list(row.reactions or []),
    edited=bool(row.edited),
    edited_at=row.edited_at,
  )
