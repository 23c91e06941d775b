from __future__ import annotations

import random

import anyio
import pytest
from fakes import FakeModel, Harness

from app.services.container import build_services
from app.services.generator import FALLBACK_UTTERANCES
from app.services.job_guard import ACTIVE_JOB_KEY
from app.services.publisher import GEMMIE_USER_NAME, NEW_MESSAGE_EVENT, PublishError
from app.services.responder import ProcessOutcome
from app.services.response_timer import PENDING_JOB_KEY, QUEUE_KEY, SELECTED_MEDIA_KEY, PendingJobRecord, Trigger


async def _burst(harness: Harness, *texts: str) -> list[PendingJobRecord]:
  records = []
  for index, text in enumerate(texts):
    trigger = Trigger.new(user_name="sam", message=text, country="NZ", sent_at=int(harness.clock()) + index)
    records.append(await harness.container.timer.on_user_message(trigger))
    harness.clock.advance(1)
  return records


def _replies(harness: Harness) -> list[str]:
  return [record.content for record in harness.messages.records if record.user_name == GEMMIE_USER_NAME]


@pytest.mark.anyio
async def test_burst_of_three_gets_one_reply_covering_all(harness: Harness) -> None:
  records = await _burst(harness, "hi", "you there", "hello??")
  survivor = records[-1]

  outcome = await harness.container.responder.process_scheduled_job(survivor.job_token, survivor.trigger)

  assert outcome == ProcessOutcome.RESPONDED
  assert _replies(harness) == ["hey, where are you all from."]
  prompt = harness.primary.prompts[0]
  assert prompt.index('"hi"') < prompt.index('"you there"') < prompt.index('"hello??"')
  assert [event for _, event, _ in harness.fanout.events] == [NEW_MESSAGE_EVENT]
  assert await harness.backend.get(PENDING_JOB_KEY) is None
  assert await harness.backend.get(ACTIVE_JOB_KEY) is None


@pytest.mark.anyio
async def test_superseded_job_does_nothing(harness: Harness) -> None:
  first, _ = await _burst(harness, "hi", "hey")

  outcome = await harness.container.responder.process_scheduled_job(first.job_token, first.trigger)

  assert outcome == ProcessOutcome.SUPERSEDED
  assert _replies(harness) == []
  assert await harness.backend.list_length(QUEUE_KEY) == 1


@pytest.mark.anyio
async def test_duplicate_delivery_is_ignored(harness: Harness) -> None:
  (record,) = await _burst(harness, "hi")
  responder = harness.container.responder

  assert await responder.process_scheduled_job(record.job_token, record.trigger) == ProcessOutcome.RESPONDED
  assert await responder.process_scheduled_job(record.job_token, record.trigger) == ProcessOutcome.DUPLICATE
  assert len(_replies(harness)) == 1


@pytest.mark.anyio
async def test_busy_lock_queues_the_trigger(harness: Harness) -> None:
  (record,) = await _burst(harness, "hi")
  guard = harness.container.new_guard()
  assert guard.ttl_seconds == harness.settings.lock_ttl_seconds
  assert await guard.try_acquire()

  outcome = await harness.container.responder.process_scheduled_job(record.job_token, record.trigger)

  assert outcome == ProcessOutcome.QUEUED
  assert _replies(harness) == []
  assert await harness.backend.get(PENDING_JOB_KEY) is None
  assert [Trigger.from_json(raw).message for raw in await harness.backend.list_read_all(QUEUE_KEY)] == ["hi"]


class GatedModel(FakeModel):
  """Blocks generation until released so two jobs overlap."""

  def __init__(self) -> None:
    super().__init__("hey there.")
    self.started = anyio.Event()
    self.release = anyio.Event()

  async def generate(self, prompt: str, **kwargs):
    self.started.set()
    await self.release.wait()
    return await super().generate(prompt, **kwargs)


@pytest.mark.anyio
async def test_concurrent_jobs_generate_at_most_once(harness: Harness) -> None:
  model = GatedModel()
  container = build_services(
    harness.settings,
    backend=harness.backend,
    dispatcher=harness.dispatcher,
    messages=harness.messages,
    fanout=harness.fanout,
    primary_model=model,
    cleanup_model=harness.cleanup,
    clock=harness.clock,
    rng=random.Random(3),
  )
  first = Trigger.new(user_name="sam", message="first", country="NZ", sent_at=1)
  second = Trigger.new(user_name="kim", message="second", country="CA", sent_at=2)
  outcomes: list[ProcessOutcome] = []

  async def run_first() -> None:
    outcomes.append(await container.responder.process_scheduled_job("token-a", first))

  async with anyio.create_task_group() as tg:
    tg.start_soon(run_first)
    await model.started.wait()
    outcomes.append(await container.responder.process_scheduled_job("token-b", second))
    model.release.set()

  assert sorted(outcomes) == sorted([ProcessOutcome.QUEUED, ProcessOutcome.RESPONDED])
  assert len(model.prompts) == 1
  assert _replies(harness) == ["hey there."]
  # The queued trigger gets its own job once the lock is released.
  followup = PendingJobRecord.from_json(await harness.backend.get(PENDING_JOB_KEY))
  assert followup.trigger.message == "second"
  assert harness.dispatcher.outstanding == [followup.job_id]


@pytest.mark.anyio
async def test_publish_failure_releases_lock_and_allows_retry(harness: Harness) -> None:
  _, survivor = await _burst(harness, "hi", "anyone")
  responder = harness.container.responder
  harness.messages.fail_create = True

  with pytest.raises(PublishError):
    await responder.process_scheduled_job(survivor.job_token, survivor.trigger)

  assert await harness.backend.get(ACTIVE_JOB_KEY) is None
  assert [Trigger.from_json(raw).message for raw in await harness.backend.list_read_all(QUEUE_KEY)] == ["hi", "anyone"]

  harness.messages.fail_create = False
  outcome = await responder.process_scheduled_job(survivor.job_token, survivor.trigger)

  assert outcome == ProcessOutcome.RESPONDED
  assert len(_replies(harness)) == 1
  prompt = harness.primary.prompts[-1]
  assert '"hi"' in prompt
  assert prompt.count('"anyone"') == 1


@pytest.mark.anyio
async def test_crashed_holder_lock_expires(harness: Harness) -> None:
  assert await harness.container.new_guard().try_acquire()
  harness.clock.advance(harness.settings.lock_ttl_seconds + 1)
  (record,) = await _burst(harness, "still there?")

  outcome = await harness.container.responder.process_scheduled_job(record.job_token, record.trigger)

  assert outcome == ProcessOutcome.RESPONDED


@pytest.mark.anyio
async def test_model_failure_still_posts_a_fallback(harness: Harness) -> None:
  harness.primary.replies = [TimeoutError("upstream timeout")]
  (record,) = await _burst(harness, "hi")

  await harness.container.responder.process_scheduled_job(record.job_token, record.trigger)

  (reply,) = _replies(harness)
  assert reply in FALLBACK_UTTERANCES


@pytest.mark.anyio
async def test_failed_run_is_answered_by_the_next_window(harness: Harness) -> None:
  responder = harness.container.responder
  await harness.container.timer.on_user_message(Trigger.new(user_name="sam", message="hi", country="NZ", sent_at=1, media_url="https://cdn.example/cat.png"))
  (survivor,) = await _burst(harness, "anyone")
  harness.messages.fail_create = True

  with pytest.raises(PublishError):
    await responder.process_scheduled_job(survivor.job_token, survivor.trigger)
  harness.messages.fail_create = False

  assert await harness.backend.get(SELECTED_MEDIA_KEY) == "https://cdn.example/cat.png"

  # A new message opens a fresh window before the dispatcher retries the failed token.
  (fresh,) = await _burst(harness, "new")
  assert await harness.backend.get(SELECTED_MEDIA_KEY) == "https://cdn.example/cat.png"
  assert await responder.process_scheduled_job(survivor.job_token, survivor.trigger) == ProcessOutcome.SUPERSEDED
  assert await responder.process_scheduled_job(fresh.job_token, fresh.trigger) == ProcessOutcome.RESPONDED

  prompt = harness.primary.prompts[-1]
  assert '"hi"' in prompt
  assert '"anyone"' in prompt
  assert '"new"' in prompt
  assert len(_replies(harness)) == 1
  assert await harness.backend.get(SELECTED_MEDIA_KEY) is None


@pytest.mark.anyio
@pytest.mark.parametrize(
  ("model_reply", "cleanup_reply"),
  [
    ("system: you are gemmie\nuser: hi\nassistant: lol nice", "unused"),
    ('{"choices": [{"message": {"content": "lol nice"}}]} 2025-11-23T00:39:45Z', "lol nice"),
  ],
)
async def test_leaked_model_output_is_cleaned_before_publishing(harness: Harness, model_reply: str, cleanup_reply: str) -> None:
  harness.primary.replies = [model_reply]
  harness.cleanup.replies = [cleanup_reply]
  (record,) = await _burst(harness, "hi")

  await harness.container.responder.process_scheduled_job(record.job_token, record.trigger)

  assert _replies(harness) == ["lol nice."]
