import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from urllib.parse import urlparse

from fastapi import FastAPI

from app.core.database import create_tables, dispose_engine, get_session_factory
from app.core.logging import initialize_logging
from app.core.redis_client import build_redis_client
from app.services.container import build_container


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
  """Set up logging and long-lived clients; close them on shutdown."""
  from app.config import get_settings

  settings = get_settings()
  logger = logging.getLogger("app.core.lifespan")

  initialize_logging(settings)
  logger.info("Starting gemmie service environment=%s dispatcher=%s", settings.environment, settings.dispatcher)

  if settings.pg_dsn:
    logger.info("Ensuring message tables on %s", _redact_dsn(settings.pg_dsn))
    await create_tables()
  else:
    logger.warning("GEMMIE_PG_DSN is not set; message routes will fail.")

  redis_client = build_redis_client(settings)
  app.state.redis = redis_client
  app.state.container = build_container(settings, redis_client, get_session_factory())
  logger.info("Startup complete.")

  try:
    yield
  finally:
    await redis_client.aclose()
    await dispose_engine()
    logger.info("Shutdown complete.")


def _redact_dsn(raw: str | None) -> str:
  """Redact credentials from a DSN while keeping host/db visible."""
  if not raw:
    return "<unset>"

  parsed = urlparse(raw)
  if not parsed.scheme:
    return "<invalid>"

  user = parsed.username or ""
  host = parsed.hostname or ""
  port = f":{parsed.port}" if parsed.port else ""
  netloc = f"{user}@{host}{port}" if user else f"{host}{port}"
  database = parsed.path.lstrip("/")
  path = f"/{database}" if database else ""
  return f"{parsed.scheme}://{netloc}{path}"
