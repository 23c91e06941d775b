from __future__ import annotations

from redis.asyncio import Redis

from app.config import Settings
from app.services.tasks.interface import DeferredJobDispatcher


def get_dispatcher(settings: Settings, redis_client: Redis) -> DeferredJobDispatcher:
  """Factory to get the configured deferred job dispatcher."""
  if settings.dispatcher == "gcp":
    from app.services.tasks.gcp import CloudTasksDispatcher

    return CloudTasksDispatcher(settings)

  from app.services.tasks.local import RedisDispatcher

  return RedisDispatcher(settings, redis_client)
