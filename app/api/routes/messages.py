from __future__ import annotations

import logging
from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Query, status

from app.api.deps import get_container
from app.api.models import CreateMessageRequest, CreateMessageResponse, MessageListResponse
from app.services.container import ServiceContainer
from app.services.publisher import GEMMIE_USER_NAME, NEW_MESSAGE_EVENT, PublishError
from app.services.response_timer import SchedulingError, Trigger
from app.storage.messages_repo import MessageRecord

router = APIRouter()
logger = logging.getLogger(__name__)

_MEDIA_TYPES = {"image", "video"}


def _media_url(message: MessageRecord) -> str | None:
  """Pick the first image or video attachment as the media gemmie may look at."""
  for attachment in message.attachments:
    if attachment.get("type") in _MEDIA_TYPES and attachment.get("url"):
      return attachment["url"]
  return None


@router.post("", status_code=status.HTTP_201_CREATED, response_model=CreateMessageResponse, response_model_by_alias=True)
async def create_message(request: CreateMessageRequest, container: Annotated[ServiceContainer, Depends(get_container)]) -> CreateMessageResponse:
  """Store a user message, broadcast it and restart gemmie's quiet-time window."""
  message = await container.messages.create_message(
    content=request.content.strip(),
    user_name=request.user_name,
    user_country=request.user_country or "XX",
    attachments=[attachment.model_dump(exclude_none=True) for attachment in request.attachments],
    reply_to=request.reply_to,
  )
  payload = message.to_payload()
  try:
    await container.publisher.broadcast(NEW_MESSAGE_EVENT, payload)
  except PublishError as e:
    # The message is stored; clients pick it up on their next fetch.
    logger.warning("Realtime broadcast failed for message %s: %s", message.id, e)

  if message.user_name.lower() == GEMMIE_USER_NAME:
    return CreateMessageResponse(message=payload, gemmie_scheduled=False, reaction_scheduled=False)

  gemmie_scheduled = False
  if await container.status.is_enabled():
    trigger = Trigger(trigger_id=message.id, user_name=message.user_name, message=message.content, country=message.user_country, sent_at=int(message.created_at.timestamp()), media_url=_media_url(message))
    try:
      await container.timer.on_user_message(trigger)
      gemmie_scheduled = True
    except SchedulingError as e:
      logger.error("Failed to schedule gemmie reply for message %s: %s", message.id, e)
  else:
    logger.info("Gemmie disabled; not scheduling a reply for message %s", message.id)

  reaction_scheduled = False
  try:
    reaction_scheduled = await container.reactions.maybe_schedule(message) is not None
  except Exception as e:
    logger.warning("Reaction scheduling failed for message %s: %s", message.id, e)

  return CreateMessageResponse(message=payload, gemmie_scheduled=gemmie_scheduled, reaction_scheduled=reaction_scheduled)


@router.get("", response_model=MessageListResponse, response_model_by_alias=True)
async def list_messages(
  container: Annotated[ServiceContainer, Depends(get_container)],
  limit: Annotated[int, Query(ge=1, le=100)] = 50,
  before: Annotated[datetime | None, Query()] = None,
) -> MessageListResponse:
  """Return messages oldest first, paging backwards with before."""
  messages = await container.messages.list_messages(limit=limit, before=before)
  return MessageListResponse(messages=[message.to_payload() for message in reversed(messages)], has_more=len(messages) == limit)
