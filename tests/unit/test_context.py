from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from fakes import Clock, FakeDispatcher, InMemoryDelayQueue, InMemoryMessages, make_settings

from app.services.context import ContextAggregator
from app.services.response_timer import QUEUE_KEY, SELECTED_MEDIA_KEY, ResponseTimer, Trigger


def _aggregator(messages: InMemoryMessages | None = None) -> tuple[ContextAggregator, ResponseTimer, InMemoryDelayQueue]:
  clock = Clock()
  backend = InMemoryDelayQueue(clock)
  timer = ResponseTimer(make_settings(), backend, FakeDispatcher(clock), clock=clock)
  return ContextAggregator(timer, backend, messages or InMemoryMessages(), history_limit=3), timer, backend


def _trigger(message: str, sent_at: int) -> Trigger:
  return Trigger.new(user_name="sam", message=message, country="us", sent_at=sent_at)


@pytest.mark.anyio
async def test_empty_queue_yields_only_the_trigger() -> None:
  aggregator, _, _ = _aggregator()
  trigger = _trigger("hi", 10)

  transcript = await aggregator.build_context(trigger)

  assert transcript.triggers == [trigger]
  assert transcript.media_url is None


@pytest.mark.anyio
async def test_burst_is_ordered_by_arrival_and_deduplicated() -> None:
  aggregator, timer, backend = _aggregator()
  first, second, third = _trigger("hi", 10), _trigger("you there", 11), _trigger("hello??", 12)
  await timer.enqueue_if_busy(first)
  await timer.enqueue_if_busy(second)
  await timer.enqueue_if_busy(first)

  transcript = await aggregator.build_context(third)

  assert [item.message for item in transcript.triggers] == ["hi", "you there", "hello??"]
  assert await backend.list_length(QUEUE_KEY) == 0


@pytest.mark.anyio
async def test_append_after_drain_waits_for_next_window() -> None:
  aggregator, timer, backend = _aggregator()
  await timer.enqueue_if_busy(_trigger("early", 1))

  transcript = await aggregator.build_context(_trigger("trigger", 2))
  await timer.enqueue_if_busy(_trigger("late", 3))

  assert [item.message for item in transcript.triggers] == ["early", "trigger"]
  assert [Trigger.from_json(raw).message for raw in await backend.list_read_all(QUEUE_KEY)] == ["late"]


@pytest.mark.anyio
async def test_history_is_separate_and_bounded() -> None:
  messages = InMemoryMessages()
  for text in ["one", "two", "three", "four"]:
    await messages.create_message(content=text, user_name="kim", user_country="FR")
  aggregator, _, _ = _aggregator(messages)

  transcript = await aggregator.build_context(_trigger("hi", 10))

  assert [message.content for message in transcript.history] == ["two", "three", "four"]
  assert [item.message for item in transcript.triggers] == ["hi"]


@pytest.mark.anyio
async def test_history_excludes_messages_in_the_burst() -> None:
  messages = InMemoryMessages()
  stored = await messages.create_message(content="hi", user_name="sam", user_country="US")
  aggregator, _, _ = _aggregator(messages)
  trigger = Trigger(trigger_id=stored.id, user_name="sam", message="hi", country="US", sent_at=1)

  transcript = await aggregator.build_context(trigger)

  assert transcript.history == []


@pytest.mark.anyio
async def test_history_failure_still_builds_transcript() -> None:
  messages = InMemoryMessages()
  messages.recent_messages = AsyncMock(side_effect=ConnectionError("db down"))
  aggregator, _, _ = _aggregator(messages)

  transcript = await aggregator.build_context(_trigger("hi", 1))

  assert transcript.history == []


@pytest.mark.anyio
async def test_selected_media_is_attached_once() -> None:
  aggregator, _, backend = _aggregator()
  await backend.set(SELECTED_MEDIA_KEY, "https://cdn.example/dog.jpg")

  transcript = await aggregator.build_context(_trigger("look", 1))
  again = await aggregator.build_context(_trigger("look again", 2))

  assert transcript.media_url == "https://cdn.example/dog.jpg"
  assert again.media_url is None
