"""Runs one delivered gemmie job end to end."""

from __future__ import annotations

import logging
from collections.abc import Callable
from enum import StrEnum

from app.services.context import ContextAggregator
from app.services.generator import ResponseGenerator
from app.services.job_guard import JobActivationGuard
from app.services.publisher import Publisher
from app.services.response_timer import ResponseTimer, SchedulingError, Trigger
from app.services.validator import ResponseSanitizer
from app.storage.delay_queue import DelayQueueBackend

logger = logging.getLogger(__name__)

CLAIMED_JOBS_KEY = "gemmie:claimed-jobs"
CLAIM_TTL_SECONDS = 86400


class ProcessOutcome(StrEnum):
  RESPONDED = "responded"
  QUEUED = "queued"
  SUPERSEDED = "superseded"
  DUPLICATE = "duplicate"


class ResponderService:
  """Guards, aggregates, generates, sanitizes and publishes."""

  def __init__(
    self,
    backend: DelayQueueBackend,
    timer: ResponseTimer,
    guard_factory: Callable[[], JobActivationGuard],
    aggregator: ContextAggregator,
    generator: ResponseGenerator,
    sanitizer: ResponseSanitizer,
    publisher: Publisher,
  ) -> None:
    self._backend = backend
    self._timer = timer
    self._guard_factory = guard_factory
    self._aggregator = aggregator
    self._generator = generator
    self._sanitizer = sanitizer
    self._publisher = publisher

  async def process_scheduled_job(self, job_token: str, trigger: Trigger) -> ProcessOutcome:
    """Handle a verified dispatcher callback."""
    # Dispatchers deliver at least once; a token is only ever worked once.
    if not await self._backend.set_add(CLAIMED_JOBS_KEY, job_token, ttl_seconds=CLAIM_TTL_SECONDS):
      logger.info("Ignoring duplicate delivery of job token %s", job_token)
      return ProcessOutcome.DUPLICATE

    if await self._timer.is_superseded(job_token):
      # The newer job carries this trigger in its queue.
      logger.info("Job token %s superseded by a newer message", job_token)
      return ProcessOutcome.SUPERSEDED

    guard = self._guard_factory()
    if not await guard.try_acquire():
      # Drop our record so the running job's follow-up can pick the trigger up.
      await self._timer.settle(job_token)
      await self._timer.enqueue_if_busy(trigger)
      logger.info("Generation already running; queued trigger %s", trigger.trigger_id)
      if not await guard.is_held():
        await self._schedule_followup()
      return ProcessOutcome.QUEUED

    transcript = None
    try:
      await self._timer.settle(job_token)
      transcript = await self._aggregator.build_context(trigger)
      reply = await self._generator.generate(transcript)
      candidate = await self._sanitizer.sanitize(reply)
      if candidate.method != "passthrough":
        logger.info("Reply cleaned via %s (%s)", candidate.method, candidate.reason)
      await self._publisher.publish_reply(candidate.cleaned_text)
    except Exception:
      # Hand the whole burst back; a retry or the next window answers it, and the context dedupes by trigger id.
      if transcript is None:
        await self._timer.restore_burst([trigger])
      else:
        await self._timer.restore_burst(transcript.triggers, transcript.media_url)
      await self._backend.set_remove(CLAIMED_JOBS_KEY, job_token)
      raise
    finally:
      await guard.release()

    await self._schedule_followup()
    return ProcessOutcome.RESPONDED

  async def _schedule_followup(self) -> None:
    try:
      await self._timer.schedule_followup()
    except SchedulingError as e:
      logger.error("Failed to schedule follow-up job: %s", e)
