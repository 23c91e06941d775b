from __future__ import annotations

import anyio
import pytest
from fakes import Clock, InMemoryDelayQueue

from app.services.job_guard import ACTIVE_JOB_KEY, JobActivationGuard


@pytest.mark.anyio
async def test_only_one_concurrent_acquire_succeeds() -> None:
  backend = InMemoryDelayQueue()
  guards = [JobActivationGuard(backend, ttl_seconds=60) for _ in range(5)]
  results: list[bool] = []

  async def attempt(guard: JobActivationGuard) -> None:
    results.append(await guard.try_acquire())

  async with anyio.create_task_group() as tg:
    for guard in guards:
      tg.start_soon(attempt, guard)

  assert results.count(True) == 1


@pytest.mark.anyio
async def test_release_is_idempotent_and_holder_only() -> None:
  backend = InMemoryDelayQueue()
  holder = JobActivationGuard(backend, ttl_seconds=60)
  other = JobActivationGuard(backend, ttl_seconds=60)

  assert await holder.try_acquire()
  await other.release()
  assert await holder.is_held()

  await holder.release()
  await holder.release()
  assert not await holder.is_held()


@pytest.mark.anyio
async def test_lock_expires_after_ttl() -> None:
  clock = Clock()
  backend = InMemoryDelayQueue(clock)
  guard = JobActivationGuard(backend, ttl_seconds=60)
  assert await guard.try_acquire()

  clock.advance(61)

  assert not await guard.is_held()
  assert await JobActivationGuard(backend, ttl_seconds=60).try_acquire()


@pytest.mark.anyio
async def test_release_after_expiry_leaves_new_holder_alone() -> None:
  clock = Clock()
  backend = InMemoryDelayQueue(clock)
  stale = JobActivationGuard(backend, ttl_seconds=60)
  assert await stale.try_acquire()
  clock.advance(61)
  fresh = JobActivationGuard(backend, ttl_seconds=60)
  assert await fresh.try_acquire()

  await stale.release()

  assert await backend.get(ACTIVE_JOB_KEY) is not None


@pytest.mark.anyio
async def test_hold_releases_on_exception() -> None:
  backend = InMemoryDelayQueue()
  guard = JobActivationGuard(backend, ttl_seconds=60)

  with pytest.raises(RuntimeError):
    async with guard.hold() as acquired:
      assert acquired
      raise RuntimeError("boom")

  assert not await guard.is_held()
