from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, StrictStr, field_validator

MAX_MESSAGE_CHARS = 2000


class CamelModel(BaseModel):
  """Accepts both camelCase (wire) and snake_case field names."""

  model_config = ConfigDict(populate_by_name=True, extra="ignore")


class Attachment(CamelModel):
  type: str
  url: str
  name: str | None = None
  size: int | None = None


class CreateMessageRequest(CamelModel):
  """Request body for posting a chat message."""

  content: str = Field(default="", max_length=MAX_MESSAGE_CHARS)
  user_name: StrictStr = Field(alias="userName", min_length=1, max_length=50)
  user_country: str | None = Field(default=None, alias="userCountry")
  attachments: list[Attachment] = Field(default_factory=list)
  reply_to: str | None = Field(default=None, alias="replyTo")

  @field_validator("user_name")
  @classmethod
  def _strip_name(cls, value: str) -> str:
    value = value.strip()
    if not value:
      raise ValueError("userName must not be blank")
    return value

  @field_validator("user_country")
  @classmethod
  def _normalize_country(cls, value: str | None) -> str:
    # Unknown or malformed country codes render as the neutral XX.
    if not value or len(value.strip()) != 2 or not value.strip().isalpha():
      return "XX"
    return value.strip().upper()


class CreateMessageResponse(BaseModel):
  message: dict[str, Any]
  gemmie_scheduled: bool = Field(serialization_alias="gemmieScheduled")
  reaction_scheduled: bool = Field(serialization_alias="reactionScheduled")


class MessageListResponse(BaseModel):
  messages: list[dict[str, Any]]
  has_more: bool = Field(serialization_alias="hasMore")


class TriggerPayload(CamelModel):
  trigger_id: StrictStr = Field(alias="triggerId", min_length=1)
  user_name: StrictStr = Field(alias="userName", min_length=1)
  message: str = ""
  country: str = "XX"
  sent_at: int = Field(alias="sentAt", ge=0)
  media_url: str | None = Field(default=None, alias="mediaUrl")


class ProcessJobPayload(CamelModel):
  """Body the dispatcher posts to the process endpoint."""

  job_token: StrictStr = Field(alias="jobToken", min_length=1)
  trigger: TriggerPayload


class EmojiJobPayload(CamelModel):
  message_id: StrictStr = Field(alias="messageId", min_length=1)


class StatusUpdateRequest(CamelModel):
  enabled: bool
  user_name: StrictStr = Field(alias="userName", min_length=1)
