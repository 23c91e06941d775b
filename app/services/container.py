"""Explicit wiring of the gemmie components for one process."""

from __future__ import annotations

import random
import time
from functools import partial
from collections.abc import Callable
from dataclasses import dataclass

from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.ai.providers.base import AIModel
from app.config import Settings
from app.services.context import ContextAggregator
from app.services.generator import ResponseGenerator
from app.services.job_guard import JobActivationGuard
from app.services.model_routing import get_cleanup_model, get_primary_model
from app.services.publisher import Fanout, Publisher, RedisFanout
from app.services.reactions import ReactionPlanner
from app.services.responder import ResponderService
from app.services.response_timer import ResponseTimer
from app.services.status import GemmieStatusService
from app.services.tasks.factory import get_dispatcher
from app.services.tasks.interface import DeferredJobDispatcher
from app.services.validator import ResponseSanitizer
from app.storage.delay_queue import DelayQueueBackend, RedisDelayQueue
from app.storage.messages_repo import MessagesRepository, PostgresMessagesRepository


@dataclass
class ServiceContainer:
  """Long-lived clients and services shared by all requests."""

  settings: Settings
  backend: DelayQueueBackend
  dispatcher: DeferredJobDispatcher
  messages: MessagesRepository
  publisher: Publisher
  timer: ResponseTimer
  responder: ResponderService
  reactions: ReactionPlanner
  status: GemmieStatusService
  guard_factory: Callable[[], JobActivationGuard]

  def new_guard(self) -> JobActivationGuard:
    return self.guard_factory()


def build_services(
  settings: Settings,
  *,
  backend: DelayQueueBackend,
  dispatcher: DeferredJobDispatcher,
  messages: MessagesRepository,
  fanout: Fanout,
  primary_model: AIModel,
  cleanup_model: AIModel,
  clock: Callable[[], float] = time.time,
  rng: random.Random | None = None,
) -> ServiceContainer:
  """Wire services from already-built clients."""
  publisher = Publisher(messages, fanout, settings.chat_channel)
  guard_factory = partial(JobActivationGuard, backend, settings.lock_ttl_seconds)
  timer = ResponseTimer(settings, backend, dispatcher, clock=clock)
  aggregator = ContextAggregator(timer, backend, messages, settings.history_limit)
  responder = ResponderService(
    backend,
    timer,
    guard_factory,
    aggregator,
    ResponseGenerator(settings, primary_model, rng=rng),
    ResponseSanitizer(settings, cleanup_model),
    publisher,
  )
  return ServiceContainer(
    settings=settings,
    backend=backend,
    dispatcher=dispatcher,
    messages=messages,
    publisher=publisher,
    timer=timer,
    responder=responder,
    reactions=ReactionPlanner(settings, backend, dispatcher, messages, publisher, cleanup_model, rng=rng, clock=clock),
    status=GemmieStatusService(backend, settings.admin_user_names),
    guard_factory=guard_factory,
  )


def build_container(settings: Settings, redis_client: Redis, session_factory: async_sessionmaker[AsyncSession] | None) -> ServiceContainer:
  """Build the production container from settings and connected clients."""
  return build_services(
    settings,
    backend=RedisDelayQueue(redis_client),
    dispatcher=get_dispatcher(settings, redis_client),
    messages=PostgresMessagesRepository(session_factory),
    fanout=RedisFanout(redis_client),
    primary_model=get_primary_model(settings),
    cleanup_model=get_cleanup_model(settings),
  )
