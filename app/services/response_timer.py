"""Debounced scheduling of gemmie replies.

Every user message resets a quiet-time window: the pending deferred job is cancelled and a new one
is scheduled D seconds out. Triggers carried by cancelled jobs are queued so the job that finally
fires sees the whole burst.
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from app.config import Settings
from app.services.tasks.interface import DeferredJobDispatcher
from app.storage.delay_queue import DelayQueueBackend

logger = logging.getLogger(__name__)

PENDING_JOB_KEY = "gemmie:job-scheduled"
QUEUE_KEY = "gemmie:message-queue"
SELECTED_MEDIA_KEY = "gemmie:selected-media"
LAST_ACTIVITY_KEY = "gemmie:last-message-timestamp"
PROCESS_PATH = "/api/gemmie/process"


class SchedulingError(Exception):
  """Raised when the dispatcher does not hand back a job id."""


@dataclass(frozen=True)
class Trigger:
  """A user message that may cause gemmie to respond."""

  trigger_id: str
  user_name: str
  message: str
  country: str
  sent_at: int
  media_url: str | None = None

  @classmethod
  def new(cls, *, user_name: str, message: str, country: str | None, sent_at: int | None = None, media_url: str | None = None) -> Trigger:
    return cls(trigger_id=uuid.uuid4().hex, user_name=user_name, message=message, country=(country or "XX").upper(), sent_at=int(time.time()) if sent_at is None else sent_at, media_url=media_url)

  def to_payload(self) -> dict[str, Any]:
    return {"triggerId": self.trigger_id, "userName": self.user_name, "message": self.message, "country": self.country, "sentAt": self.sent_at, "mediaUrl": self.media_url}

  @classmethod
  def from_payload(cls, payload: dict[str, Any]) -> Trigger:
    return cls(
      trigger_id=str(payload["triggerId"]),
      user_name=str(payload["userName"]),
      message=str(payload.get("message") or ""),
      country=str(payload.get("country") or "XX"),
      sent_at=int(payload.get("sentAt") or 0),
      media_url=payload.get("mediaUrl"),
    )

  def to_json(self) -> str:
    return json.dumps(self.to_payload(), separators=(",", ":"))

  @classmethod
  def from_json(cls, raw: str) -> Trigger:
    return cls.from_payload(json.loads(raw))


@dataclass(frozen=True)
class PendingJobRecord:
  """The one deferred job currently expected to produce the next reply."""

  job_id: str
  job_token: str
  trigger: Trigger
  scheduled_at: int

  def to_json(self) -> str:
    return json.dumps({"job_id": self.job_id, "job_token": self.job_token, "trigger": self.trigger.to_payload(), "scheduled_at": self.scheduled_at}, separators=(",", ":"))

  @classmethod
  def from_json(cls, raw: str) -> PendingJobRecord:
    data = json.loads(raw)
    return cls(job_id=data["job_id"], job_token=data["job_token"], trigger=Trigger.from_payload(data["trigger"]), scheduled_at=int(data["scheduled_at"]))


@dataclass(frozen=True)
class OrphanSweep:
  """Result of one orphan cleanup pass."""

  job_id: str | None
  orphaned: bool
  reason: str


class ResponseTimer:
  """Owns the pending-job record, the trigger queue and the selected media reference."""

  def __init__(self, settings: Settings, backend: DelayQueueBackend, dispatcher: DeferredJobDispatcher, *, clock: Callable[[], float] = time.time) -> None:
    self.settings = settings
    self._backend = backend
    self._dispatcher = dispatcher
    self._clock = clock

  @property
  def delay_seconds(self) -> int:
    return self.settings.response_delay_seconds

  def _target_url(self) -> str:
    if not self.settings.base_url:
      raise SchedulingError("GEMMIE_BASE_URL is not configured.")
    return f"{self.settings.base_url.rstrip('/')}{PROCESS_PATH}"

  async def pending_record(self) -> PendingJobRecord | None:
    """The current pending-job record; None when absent or unreadable."""
    raw = await self._backend.get(PENDING_JOB_KEY)
    return _decode_record(raw)

  async def _cancel_quietly(self, job_id: str) -> None:
    # Best effort: the dispatcher may already be delivering; the activation guard covers that case.
    try:
      cancelled = await self._dispatcher.cancel(job_id)
    except Exception as e:
      logger.warning("Failed to cancel job %s: %s", job_id, e)
      return
    if not cancelled:
      logger.info("Job %s was already gone at cancellation", job_id)

  async def on_user_message(self, trigger: Trigger) -> PendingJobRecord:
    """Restart the quiet-time window for a new user message."""
    now = int(self._clock())
    await self._backend.set(LAST_ACTIVITY_KEY, str(now))

    previous = _decode_record(await self._backend.pop(PENDING_JOB_KEY))
    if previous is None:
      if not await self._backend.list_length(QUEUE_KEY):
        # No job in flight and nothing queued: the last window is resolved and its media choice no longer applies.
        await self._backend.delete(SELECTED_MEDIA_KEY)
    else:
      logger.info("Superseding job %s for new message from %s", previous.job_id, trigger.user_name)
      await self._cancel_quietly(previous.job_id)
      await self.enqueue_if_busy(previous.trigger)

    if trigger.media_url:
      await self._backend.set(SELECTED_MEDIA_KEY, trigger.media_url, ttl_seconds=self.settings.lock_ttl_seconds)

    job_token = uuid.uuid4().hex
    job_id = await self._dispatcher.schedule(self._target_url(), {"jobToken": job_token, "trigger": trigger.to_payload()}, self.delay_seconds)
    if not job_id:
      raise SchedulingError(f"Dispatcher returned no job id for message from {trigger.user_name}.")

    record = PendingJobRecord(job_id=job_id, job_token=job_token, trigger=trigger, scheduled_at=now)
    displaced = _decode_record(await self._backend.swap(PENDING_JOB_KEY, record.to_json()))
    if displaced is not None:
      # A concurrent message scheduled between our pop and swap.
      logger.info("Job %s displaced by concurrent schedule", displaced.job_id)
      await self._cancel_quietly(displaced.job_id)
      await self.enqueue_if_busy(displaced.trigger)

    logger.info("Scheduled gemmie job %s in %ss", job_id, self.delay_seconds)
    return record

  async def enqueue_if_busy(self, trigger: Trigger) -> int:
    """Queue a trigger for the next generation run."""
    length = await self._backend.list_append(QUEUE_KEY, trigger.to_json())
    logger.debug("Queued trigger %s (queue length %s)", trigger.trigger_id, length)
    return length

  async def restore_burst(self, triggers: list[Trigger], media_url: str | None = None) -> None:
    """Put a failed run's triggers and media choice back for the next run."""
    for trigger in triggers:
      await self.enqueue_if_busy(trigger)
    if media_url:
      # A newer selection made meanwhile wins.
      await self._backend.set(SELECTED_MEDIA_KEY, media_url, ttl_seconds=self.settings.lock_ttl_seconds, only_if_absent=True)
    logger.info("Restored %s trigger(s) after a failed run", len(triggers))

  async def drain_queue(self) -> list[Trigger]:
    """Atomically read and clear the queue, oldest first."""
    triggers = []
    for raw in await self._backend.list_drain(QUEUE_KEY):
      try:
        triggers.append(Trigger.from_json(raw))
      except (ValueError, KeyError, TypeError) as e:
        logger.warning("Dropping malformed queued trigger %r: %s", raw, e)
    return triggers

  async def settle(self, job_token: str) -> bool:
    """Remove the pending record if it still belongs to job_token."""
    raw = await self._backend.get(PENDING_JOB_KEY)
    record = _decode_record(raw)
    if raw is None or record is None or record.job_token != job_token:
      return False
    return await self._backend.delete_if_equals(PENDING_JOB_KEY, raw)

  async def is_superseded(self, job_token: str) -> bool:
    record = await self.pending_record()
    return record is not None and record.job_token != job_token

  async def schedule_followup(self) -> PendingJobRecord | None:
    """Schedule a job for triggers queued while a run was in progress."""
    if await self._backend.get(PENDING_JOB_KEY) is not None:
      return None

    raw = await self._backend.list_pop_last(QUEUE_KEY)
    if raw is None:
      return None

    trigger = Trigger.from_json(raw)
    try:
      return await self.on_user_message(trigger)
    except SchedulingError:
      # Keep the trigger so the next message still sees it.
      await self.enqueue_if_busy(trigger)
      raise

  async def cancel_all_pending(self) -> str | None:
    """Cancel the pending job without scheduling a replacement."""
    record = _decode_record(await self._backend.pop(PENDING_JOB_KEY))
    if record is None:
      return None
    await self._cancel_quietly(record.job_id)
    logger.info("Cancelled pending job %s", record.job_id)
    return record.job_id

  async def cleanup_orphans(self) -> OrphanSweep:
    """Drop the pending record when the dispatcher lost its job or it is long overdue."""
    raw = await self._backend.get(PENDING_JOB_KEY)
    record = _decode_record(raw)
    if raw is None or record is None:
      return OrphanSweep(job_id=None, orphaned=False, reason="no pending job")

    status = await self._dispatcher.get_status(record.job_id)
    now = self._clock()
    if status is None:
      reason = "dispatcher does not know the job"
    else:
      scheduled_at = status.scheduled_for.timestamp() - self.delay_seconds if status.scheduled_for else record.scheduled_at
      age = now - scheduled_at
      limit = 2 * self.delay_seconds + self.settings.orphan_buffer_seconds
      if age <= limit:
        return OrphanSweep(job_id=record.job_id, orphaned=False, reason=f"job {status.state}, age {int(age)}s")
      reason = f"job overdue by {int(age - limit)}s"

    logger.warning("Removing orphaned job %s: %s", record.job_id, reason)
    await self._cancel_quietly(record.job_id)
    if await self._backend.delete_if_equals(PENDING_JOB_KEY, raw):
      await self.enqueue_if_busy(record.trigger)
    return OrphanSweep(job_id=record.job_id, orphaned=True, reason=reason)

  async def last_activity(self) -> int | None:
    raw = await self._backend.get(LAST_ACTIVITY_KEY)
    return int(raw) if raw else None


def _decode_record(raw: str | None) -> PendingJobRecord | None:
  if raw is None:
    return None
  try:
    return PendingJobRecord.from_json(raw)
  except (ValueError, KeyError, TypeError) as e:
    logger.warning("Ignoring malformed pending job record: %s", e)
    return None
