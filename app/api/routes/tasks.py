from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status

from app.api.deps import get_container, require_task_secret
from app.services.container import ServiceContainer
from app.services.tasks.local import RedisDispatcher

router = APIRouter(prefix="/tasks", tags=["tasks"])
logger = logging.getLogger(__name__)


@router.post("/deliver-due", dependencies=[Depends(require_task_secret)])
async def deliver_due(container: Annotated[ServiceContainer, Depends(get_container)]) -> dict[str, int]:
  """Deliver jobs whose due time has passed when running the local Redis dispatcher."""
  dispatcher = container.dispatcher
  if not isinstance(dispatcher, RedisDispatcher):
    raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Local dispatcher is not active.")
  delivered = await dispatcher.deliver_due()
  if delivered:
    logger.info("Delivered %s due job(s)", delivered)
  return {"delivered": delivered}
