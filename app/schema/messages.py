from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base


class ChatMessage(Base):
  __tablename__ = "messages"

  id: Mapped[str] = mapped_column(String, primary_key=True)
  content: Mapped[str] = mapped_column(Text, nullable=False, default="")
  user_name: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
  user_country: Mapped[str] = mapped_column(String(2), nullable=False, default="XX")
  attachments: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
  reply_to: Mapped[str | None] = mapped_column(String, nullable=True)
  reactions: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
  edited: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
  edited_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now(), index=True)
