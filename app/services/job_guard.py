"""Single-holder lock around the reply generation pipeline."""

from __future__ import annotations

import logging
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from app.storage.delay_queue import DelayQueueBackend

logger = logging.getLogger(__name__)

ACTIVE_JOB_KEY = "gemmie:job-active"


class JobActivationGuard:
  """Lock with states absent and held; held ends on release or TTL expiry."""

  def __init__(self, backend: DelayQueueBackend, ttl_seconds: int) -> None:
    self._backend = backend
    self.ttl_seconds = ttl_seconds
    self._holder: str | None = None

  async def try_acquire(self) -> bool:
    """Become the holder with one set-if-absent call."""
    holder = uuid.uuid4().hex
    acquired = await self._backend.set(ACTIVE_JOB_KEY, holder, ttl_seconds=self.ttl_seconds, only_if_absent=True)
    if acquired:
      self._holder = holder
    return acquired

  async def is_held(self) -> bool:
    return await self._backend.get(ACTIVE_JOB_KEY) is not None

  async def release(self) -> None:
    """Release the lock if this guard still holds it; safe to repeat."""
    holder, self._holder = self._holder, None
    if holder is None:
      return
    if not await self._backend.delete_if_equals(ACTIVE_JOB_KEY, holder):
      logger.warning("Active job lock expired before release")

  @asynccontextmanager
  async def hold(self) -> AsyncIterator[bool]:
    """Yield whether the lock was acquired and release it on every exit path."""
    acquired = await self.try_acquire()
    try:
      yield acquired
    finally:
      if acquired:
        await self.release()
