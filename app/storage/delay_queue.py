"""Delay queue backend: the shared key/list/set store behind the response scheduler."""

from __future__ import annotations

from typing import Protocol

from redis.asyncio import Redis

# Compare-and-delete so only the writer of a value may remove it.
_DELETE_IF_EQUALS = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
  return redis.call('DEL', KEYS[1])
end
return 0
"""


class DelayQueueBackend(Protocol):
  """Atomic primitives the scheduler needs from the shared store."""

  async def get(self, key: str) -> str | None:
    """Return the value stored at key."""

  async def set(self, key: str, value: str, *, ttl_seconds: int | None = None, only_if_absent: bool = False) -> bool:
    """Store value; with only_if_absent this is a single set-if-not-exists."""

  async def delete(self, key: str) -> bool:
    """Delete key, returning whether it existed."""

  async def pop(self, key: str) -> str | None:
    """Atomically read and delete key."""

  async def swap(self, key: str, value: str, *, ttl_seconds: int | None = None) -> str | None:
    """Atomically store value and return the previous one."""

  async def delete_if_equals(self, key: str, expected: str) -> bool:
    """Delete key only when it still holds expected."""

  async def list_append(self, key: str, value: str) -> int:
    """Append to the tail of a list, returning the new length."""

  async def list_read_all(self, key: str) -> list[str]:
    """Return the list, oldest first."""

  async def list_drain(self, key: str) -> list[str]:
    """Atomically read the whole list and clear it."""

  async def list_pop_last(self, key: str) -> str | None:
    """Remove and return the newest list entry."""

  async def list_length(self, key: str) -> int:
    """Return the list length."""

  async def set_add(self, key: str, member: str, *, ttl_seconds: int | None = None) -> bool:
    """Add member to a set, returning True when it was not present."""

  async def set_remove(self, key: str, member: str) -> bool:
    """Remove member from a set, returning whether it was present."""

  async def set_contains(self, key: str, member: str) -> bool:
    """Return whether member is in the set."""

  async def incr(self, key: str, *, ttl_seconds: int | None = None) -> int:
    """Increment a counter; ttl applies when the counter is created."""


class RedisDelayQueue(DelayQueueBackend):
  """Redis implementation of the delay queue backend."""

  def __init__(self, client: Redis) -> None:
    self._redis = client
    self._delete_if_equals = client.register_script(_DELETE_IF_EQUALS)

  async def get(self, key: str) -> str | None:
    return await self._redis.get(key)

  async def set(self, key: str, value: str, *, ttl_seconds: int | None = None, only_if_absent: bool = False) -> bool:
    # SET ... NX EX is one command, so acquisition cannot interleave with another writer.
    result = await self._redis.set(key, value, ex=ttl_seconds, nx=only_if_absent)
    return bool(result)

  async def delete(self, key: str) -> bool:
    return bool(await self._redis.delete(key))

  async def pop(self, key: str) -> str | None:
    return await self._redis.getdel(key)

  async def swap(self, key: str, value: str, *, ttl_seconds: int | None = None) -> str | None:
    return await self._redis.set(key, value, ex=ttl_seconds, get=True)

  async def delete_if_equals(self, key: str, expected: str) -> bool:
    deleted = await self._delete_if_equals(keys=[key], args=[expected])
    return bool(deleted)

  async def list_append(self, key: str, value: str) -> int:
    return int(await self._redis.rpush(key, value))

  async def list_read_all(self, key: str) -> list[str]:
    return list(await self._redis.lrange(key, 0, -1))

  async def list_drain(self, key: str) -> list[str]:
    # MULTI/EXEC: no append can land between the read and the delete.
    async with self._redis.pipeline(transaction=True) as pipe:
      pipe.lrange(key, 0, -1)
      pipe.delete(key)
      items, _ = await pipe.execute()
    return list(items)

  async def list_pop_last(self, key: str) -> str | None:
    return await self._redis.rpop(key)

  async def list_length(self, key: str) -> int:
    return int(await self._redis.llen(key))

  async def set_add(self, key: str, member: str, *, ttl_seconds: int | None = None) -> bool:
    async with self._redis.pipeline(transaction=True) as pipe:
      pipe.sadd(key, member)
      if ttl_seconds is not None:
        pipe.expire(key, ttl_seconds)
      results = await pipe.execute()
    return results[0] == 1

  async def set_remove(self, key: str, member: str) -> bool:
    return bool(await self._redis.srem(key, member))

  async def set_contains(self, key: str, member: str) -> bool:
    return bool(await self._redis.sismember(key, member))

  async def incr(self, key: str, *, ttl_seconds: int | None = None) -> int:
    value = int(await self._redis.incr(key))
    if value == 1 and ttl_seconds is not None:
      await self._redis.expire(key, ttl_seconds)
    return value
