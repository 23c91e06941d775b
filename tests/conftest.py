"""Shared fixtures wiring the gemmie services to in-memory fakes."""

from __future__ import annotations

import random

import pytest
from fakes import Clock, FakeDispatcher, FakeModel, Harness, InMemoryDelayQueue, InMemoryMessages, RecordingFanout, make_settings
from httpx import ASGITransport, AsyncClient

from app.config import Settings, get_settings
from app.main import app
from app.services.container import build_services


@pytest.fixture
def anyio_backend() -> str:
  return "asyncio"


@pytest.fixture
def settings() -> Settings:
  return make_settings()


@pytest.fixture
def clock() -> Clock:
  return Clock()


@pytest.fixture
def harness(settings: Settings, clock: Clock) -> Harness:
  backend = InMemoryDelayQueue(clock)
  dispatcher = FakeDispatcher(clock, secret=settings.task_secret or "")
  messages = InMemoryMessages()
  fanout = RecordingFanout()
  primary = FakeModel("hey, where are you all from?")
  cleanup = FakeModel("love")
  container = build_services(
    settings,
    backend=backend,
    dispatcher=dispatcher,
    messages=messages,
    fanout=fanout,
    primary_model=primary,
    cleanup_model=cleanup,
    clock=clock,
    rng=random.Random(7),
  )
  return Harness(settings=settings, clock=clock, backend=backend, dispatcher=dispatcher, messages=messages, fanout=fanout, primary=primary, cleanup=cleanup, container=container)


@pytest.fixture
async def async_client(harness: Harness):
  app.dependency_overrides[get_settings] = lambda: harness.settings
  app.state.container = harness.container
  async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
    yield client
  app.dependency_overrides.clear()
  app.state.container = None
