from __future__ import annotations

import logging
import time
import uuid
from datetime import UTC, datetime
from typing import Any
from urllib.parse import urlparse

import httpx
from redis.asyncio import Redis

from app.config import Settings
from app.services.tasks.interface import DeferredJobDispatcher, JobStatus
from app.services.tasks.signing import SIGNATURE_HEADER, encode_body, require_secret, sign_body, verify_signature

logger = logging.getLogger(__name__)

_DUE_KEY = "tasks:due"
_JOB_KEY_PREFIX = "tasks:job:"
_MAX_ATTEMPTS = 3
_RETRY_DELAY_SECONDS = 5
_JOB_RETENTION_SECONDS = 86400


class RedisDispatcher(DeferredJobDispatcher):
  """Local-development dispatcher: jobs wait in a Redis sorted set until deliver_due() posts them."""

  def __init__(self, settings: Settings, client: Redis) -> None:
    self.settings = settings
    self._redis = client

  def _job_key(self, job_id: str) -> str:
    return f"{_JOB_KEY_PREFIX}{job_id}"

  def _should_use_asgi_transport(self, target_url: str) -> bool:
    """Call the app in-process for local targets."""
    hostname = (urlparse(target_url).hostname or "").lower()
    return hostname in {"localhost", "127.0.0.1", "::1", "0.0.0.0"}

  def _build_client(self, target_url: str) -> httpx.AsyncClient:
    # Never trust environment proxy variables for internal task dispatch.
    if self._should_use_asgi_transport(target_url):
      from app.main import app

      return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), trust_env=False)
    return httpx.AsyncClient(trust_env=False)

  async def schedule(self, target_url: str, payload: dict[str, Any], delay_seconds: int) -> str | None:
    job_id = uuid.uuid4().hex
    due_at = time.time() + delay_seconds
    body = encode_body(payload).decode("utf-8")
    async with self._redis.pipeline(transaction=True) as pipe:
      pipe.hset(self._job_key(job_id), mapping={"url": target_url, "body": body, "due_at": str(due_at), "state": "scheduled", "attempts": "0"})
      pipe.expire(self._job_key(job_id), delay_seconds + _JOB_RETENTION_SECONDS)
      pipe.zadd(_DUE_KEY, {job_id: due_at})
      await pipe.execute()
    logger.info("Scheduled local job %s for %s in %ss", job_id, target_url, delay_seconds)
    return job_id

  async def cancel(self, job_id: str) -> bool:
    removed = await self._redis.zrem(_DUE_KEY, job_id)
    await self._redis.delete(self._job_key(job_id))
    return bool(removed)

  async def get_status(self, job_id: str) -> JobStatus | None:
    job = await self._redis.hgetall(self._job_key(job_id))
    if not job:
      return None
    scheduled_for = datetime.fromtimestamp(float(job["due_at"]), UTC) if job.get("due_at") else None
    return JobStatus(job_id=job_id, scheduled_for=scheduled_for, state=job.get("state", "scheduled"))

  def verify(self, body: bytes, signature: str | None) -> bool:
    return verify_signature(self.settings.task_secret, body, signature)

  async def deliver_due(self, now: float | None = None) -> int:
    """POST every job whose due time has passed; returns the number delivered."""
    now = time.time() if now is None else now
    delivered = 0
    for job_id in await self._redis.zrangebyscore(_DUE_KEY, "-inf", now):
      # ZREM is the claim: concurrent deliverers cannot both remove the same member.
      if not await self._redis.zrem(_DUE_KEY, job_id):
        continue
      job = await self._redis.hgetall(self._job_key(job_id))
      if not job:
        continue
      if await self._deliver(job_id, job):
        delivered += 1
    return delivered

  async def _deliver(self, job_id: str, job: dict[str, str]) -> bool:
    url = job["url"]
    body = job["body"].encode("utf-8")
    headers = {"Content-Type": "application/json", SIGNATURE_HEADER: sign_body(require_secret(self.settings.task_secret), body)}
    attempts = await self._redis.hincrby(self._job_key(job_id), "attempts", 1)
    try:
      async with self._build_client(url) as client:
        response = await client.post(url, content=body, headers=headers, timeout=120.0)
        response.raise_for_status()
    except httpx.HTTPError as e:
      logger.error("Local job %s delivery attempt %s to %s failed: %s", job_id, attempts, url, e)
      if attempts < _MAX_ATTEMPTS:
        await self._redis.zadd(_DUE_KEY, {job_id: time.time() + _RETRY_DELAY_SECONDS})
        await self._redis.hset(self._job_key(job_id), "state", "scheduled")
      else:
        await self._redis.hset(self._job_key(job_id), "state", "failed")
      return False

    await self._redis.hset(self._job_key(job_id), "state", "delivered")
    return True
