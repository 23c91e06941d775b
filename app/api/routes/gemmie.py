from __future__ import annotations

import json
import logging
import re
from typing import Annotated, Any, TypeVar

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from pydantic import BaseModel, ValidationError

from app.api.deps import get_container, require_task_secret
from app.api.models import EmojiJobPayload, ProcessJobPayload, StatusUpdateRequest
from app.services.container import ServiceContainer
from app.services.response_timer import QUEUE_KEY, Trigger
from app.services.tasks.signing import SIGNATURE_HEADER

router = APIRouter()
logger = logging.getLogger(__name__)

PayloadT = TypeVar("PayloadT", bound=BaseModel)

_JSON_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)


def _parse_json_object(body: bytes) -> dict[str, Any]:
  """Parse a callback body, tolerating wrappers around a single JSON object."""
  text = body.decode("utf-8", errors="replace")
  try:
    parsed = json.loads(text)
  except json.JSONDecodeError:
    parsed = None

  if not isinstance(parsed, dict):
    match = _JSON_OBJECT_RE.search(text)
    if match:
      try:
        parsed = json.loads(match.group(0))
      except json.JSONDecodeError:
        parsed = None

  if not isinstance(parsed, dict):
    raise RequestValidationError([{"type": "json_invalid", "loc": ("body",), "msg": "Body must be a JSON object", "input": None}])
  return parsed


async def _verified_payload(request: Request, container: ServiceContainer, model: type[PayloadT]) -> PayloadT:
  body = await request.body()
  if not container.dispatcher.verify(body, request.headers.get(SIGNATURE_HEADER)):
    logger.warning("Rejected callback to %s with invalid signature", request.url.path)
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature.")
  try:
    return model.model_validate(_parse_json_object(body))
  except ValidationError as e:
    raise RequestValidationError(e.errors()) from e


@router.post("/process")
async def process_job(request: Request, container: Annotated[ServiceContainer, Depends(get_container)]) -> dict[str, str]:
  """Dispatcher callback: generate and publish one reply for the settled burst."""
  payload = await _verified_payload(request, container, ProcessJobPayload)
  trigger = Trigger.from_payload(payload.trigger.model_dump(by_alias=True))

  if not await container.status.is_enabled():
    await container.timer.settle(payload.job_token)
    logger.info("Gemmie disabled; dropping job token %s", payload.job_token)
    return {"outcome": "disabled"}

  outcome = await container.responder.process_scheduled_job(payload.job_token, trigger)
  logger.info("Processed job token %s: %s", payload.job_token, outcome.value)
  return {"outcome": outcome.value}


@router.post("/emoji-process")
async def process_emoji(request: Request, container: Annotated[ServiceContainer, Depends(get_container)]) -> dict[str, Any]:
  """Dispatcher callback for a delayed emoji reaction."""
  payload = await _verified_payload(request, container, EmojiJobPayload)
  result = await container.reactions.process_reaction(payload.message_id)
  return {"success": result.success, "reason": result.reason, "messageId": result.message_id, "emoji": result.emoji, "reactions": result.reactions}


@router.post("/cancel-pending", dependencies=[Depends(require_task_secret)])
async def cancel_pending(container: Annotated[ServiceContainer, Depends(get_container)]) -> dict[str, str | None]:
  job_id = await container.timer.cancel_all_pending()
  return {"cancelledJobId": job_id}


@router.post("/cleanup-orphans", dependencies=[Depends(require_task_secret)])
async def cleanup_orphans(container: Annotated[ServiceContainer, Depends(get_container)]) -> dict[str, Any]:
  sweep = await container.timer.cleanup_orphans()
  followup = await container.timer.schedule_followup() if sweep.orphaned else None
  return {"jobId": sweep.job_id, "orphaned": sweep.orphaned, "reason": sweep.reason, "followupJobId": followup.job_id if followup else None}


@router.get("/status")
async def get_status(container: Annotated[ServiceContainer, Depends(get_container)]) -> dict[str, Any]:
  """Report the switch plus the scheduler's current state."""
  record = await container.timer.pending_record()
  return {
    "enabled": await container.status.is_enabled(),
    "pendingJobId": record.job_id if record else None,
    "generationActive": await container.new_guard().is_held(),
    "queuedMessages": await container.backend.list_length(QUEUE_KEY),
    "lastActivity": await container.timer.last_activity(),
  }


@router.post("/status")
async def set_status(request: StatusUpdateRequest, container: Annotated[ServiceContainer, Depends(get_container)]) -> dict[str, bool]:
  if not await container.status.set_enabled(request.enabled, request.user_name):
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed to change gemmie status.")
  return {"enabled": request.enabled}


@router.get("/reactions/stats", dependencies=[Depends(require_task_secret)])
async def reaction_stats(container: Annotated[ServiceContainer, Depends(get_container)]) -> dict[str, Any]:
  return await container.reactions.stats()


@router.delete("/reactions", dependencies=[Depends(require_task_secret)])
async def clear_reactions(container: Annotated[ServiceContainer, Depends(get_container)]) -> dict[str, bool]:
  await container.reactions.clear()
  return {"cleared": True}
