"""Shared Redis client construction."""

from __future__ import annotations

import logging

from redis.asyncio import Redis

from app.config import Settings

logger = logging.getLogger(__name__)


def build_redis_client(settings: Settings) -> Redis:
  """Create the process-wide async Redis client."""
  # decode_responses keeps every stored value a str, matching the JSON payloads written by the core.
  client = Redis.from_url(settings.redis_url, decode_responses=True, health_check_interval=30)
  logger.info("Redis client configured for %s", settings.redis_url.split("@")[-1])
  return client
