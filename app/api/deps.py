"""Shared FastAPI dependencies."""

from __future__ import annotations

import logging
import secrets
from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request, status

from app.config import Settings, get_settings
from app.services.container import ServiceContainer

logger = logging.getLogger(__name__)


def get_container(request: Request) -> ServiceContainer:
  """Return the services built during app startup."""
  container = getattr(request.app.state, "container", None)
  if container is None:
    raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Service is starting up.")
  return container


async def require_task_secret(settings: Annotated[Settings, Depends(get_settings)], x_gemmie_task_secret: str | None = Header(default=None), authorization: str | None = Header(default=None)) -> None:
  """Protect administrative and internal routes with the shared task secret."""
  # Secure by default: without a configured secret these routes stay closed.
  if not settings.task_secret:
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Task authentication is not configured.")
  shared_secret_valid = secrets.compare_digest((x_gemmie_task_secret or "").encode("utf-8"), settings.task_secret.encode("utf-8"))
  bearer_valid = secrets.compare_digest((authorization or "").encode("utf-8"), f"Bearer {settings.task_secret}".encode("utf-8"))
  if not shared_secret_valid and not bearer_valid:
    logger.warning("Rejected request with invalid task secret")
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid task secret.")
