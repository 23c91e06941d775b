"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv

load_dotenv(Path(__file__).resolve().parents[1] / ".env", override=False)

_PROVIDERS = {"gemini", "openrouter"}
_DISPATCHERS = {"gcp", "redis"}


@dataclass(frozen=True)
class Settings:
  """Typed settings for the gemmie chat service."""

  environment: str
  debug: bool
  allowed_origins: tuple[str, ...]
  log_max_bytes: int
  log_backup_count: int
  log_http_4xx: bool
  redis_url: str
  pg_dsn: str | None
  base_url: str | None
  task_secret: str | None
  dispatcher: str
  cloud_tasks_queue_path: str | None
  chat_channel: str
  response_delay_seconds: int
  lock_margin_seconds: int
  orphan_buffer_seconds: int
  history_limit: int
  max_media_bytes: int
  primary_provider: str
  primary_model: str
  primary_max_tokens: int
  primary_temperature: float
  cleanup_provider: str
  cleanup_model: str
  cleanup_max_tokens: int
  cleanup_temperature: float
  gemini_api_key: str | None
  openrouter_api_key: str | None
  openrouter_base_url: str | None
  admin_user_names: tuple[str, ...]
  reaction_min_interval_seconds: int
  reaction_max_interval_seconds: int
  reaction_daily_limit: int
  reaction_base_chance: float
  reaction_delay_seconds: int

  @property
  def lock_ttl_seconds(self) -> int:
    """Lock lifetime covering one delayed generation run."""
    return self.response_delay_seconds + self.lock_margin_seconds


@dataclass(frozen=True)
class DatabaseSettings:
  """Typed settings for database connectivity."""

  debug: bool
  pg_dsn: str | None
  pg_connect_timeout: int


def _parse_origins(raw: str | None) -> tuple[str, ...]:
  if not raw:
    return ("http://localhost:3000",)

  origins = [origin.strip() for origin in raw.split(",") if origin.strip()]

  if "*" in origins:
    raise ValueError("GEMMIE_ALLOWED_ORIGINS must not include wildcard origins.")

  return tuple(origins)


def _parse_bool(raw: str | None) -> bool:
  """Parse a boolean-ish string from environment variables."""

  if raw is None:
    return False

  normalized = raw.strip().lower()
  return normalized in {"1", "true", "yes", "on"}


def _parse_names(raw: str | None, default: tuple[str, ...]) -> tuple[str, ...]:
  if not raw:
    return default
  return tuple(name.strip().lower() for name in raw.split(",") if name.strip())


def _positive_int(name: str, default: str) -> int:
  value = int(os.getenv(name, default))
  if value <= 0:
    raise ValueError(f"{name} must be a positive integer.")
  return value


def _probability(name: str, default: str) -> float:
  value = float(os.getenv(name, default))
  if not 0.0 <= value <= 1.0:
    raise ValueError(f"{name} must be between 0 and 1.")
  return value


def _provider(name: str, default: str) -> str:
  value = (os.getenv(name) or default).strip().lower()
  if value not in _PROVIDERS:
    raise ValueError(f"{name} must be one of {sorted(_PROVIDERS)}.")
  return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  """Load settings once per process."""

  environment = os.getenv("GEMMIE_ENV", "development").lower()

  # Toggle verbose error output and SQL echo in non-production environments.
  debug = _parse_bool(os.getenv("GEMMIE_DEBUG"))

  log_backup_count = int(os.getenv("GEMMIE_LOG_BACKUP_COUNT", "10"))
  if log_backup_count < 0:
    raise ValueError("GEMMIE_LOG_BACKUP_COUNT must be zero or a positive integer.")

  dispatcher = (os.getenv("GEMMIE_DISPATCHER") or "redis").strip().lower()
  if dispatcher not in _DISPATCHERS:
    raise ValueError(f"GEMMIE_DISPATCHER must be one of {sorted(_DISPATCHERS)}.")

  cloud_tasks_queue_path = _optional_str(os.getenv("GEMMIE_CLOUD_TASKS_QUEUE_PATH"))
  if dispatcher == "gcp" and not cloud_tasks_queue_path:
    raise ValueError("GEMMIE_CLOUD_TASKS_QUEUE_PATH must be set when GEMMIE_DISPATCHER=gcp.")

  reaction_min_interval = _positive_int("GEMMIE_REACTION_MIN_INTERVAL_SECONDS", "180")
  reaction_max_interval = _positive_int("GEMMIE_REACTION_MAX_INTERVAL_SECONDS", "600")
  if reaction_max_interval < reaction_min_interval:
    raise ValueError("GEMMIE_REACTION_MAX_INTERVAL_SECONDS must not be below the minimum interval.")

  primary_temperature = float(os.getenv("GEMMIE_PRIMARY_TEMPERATURE", "0.8"))
  cleanup_temperature = float(os.getenv("GEMMIE_CLEANUP_TEMPERATURE", "0.1"))

  return Settings(
    environment=environment,
    debug=debug,
    allowed_origins=_parse_origins(os.getenv("GEMMIE_ALLOWED_ORIGINS")),
    log_max_bytes=_positive_int("GEMMIE_LOG_MAX_BYTES", "5242880"),
    log_backup_count=log_backup_count,
    log_http_4xx=_parse_bool(os.getenv("GEMMIE_LOG_HTTP_4XX")),
    redis_url=(os.getenv("GEMMIE_REDIS_URL") or os.getenv("REDIS_URL") or "redis://localhost:6379/0").strip(),
    pg_dsn=os.getenv("GEMMIE_PG_DSN") or os.getenv("DATABASE_URL"),
    base_url=_optional_str(os.getenv("GEMMIE_BASE_URL")),
    task_secret=_optional_str(os.getenv("GEMMIE_TASK_SECRET")),
    dispatcher=dispatcher,
    cloud_tasks_queue_path=cloud_tasks_queue_path,
    chat_channel=(os.getenv("GEMMIE_CHAT_CHANNEL") or "chat-room").strip(),
    response_delay_seconds=_positive_int("GEMMIE_RESPONSE_DELAY_SECONDS", "15"),
    lock_margin_seconds=_positive_int("GEMMIE_LOCK_MARGIN_SECONDS", "45"),
    orphan_buffer_seconds=_positive_int("GEMMIE_ORPHAN_BUFFER_SECONDS", "30"),
    history_limit=_positive_int("GEMMIE_HISTORY_LIMIT", "12"),
    max_media_bytes=_positive_int("GEMMIE_MAX_MEDIA_BYTES", str(8 * 1024 * 1024)),
    primary_provider=_provider("GEMMIE_PRIMARY_PROVIDER", "openrouter"),
    primary_model=os.getenv("GEMMIE_PRIMARY_MODEL", "meta-llama/llama-3.3-70b-instruct:free"),
    primary_max_tokens=_positive_int("GEMMIE_PRIMARY_MAX_TOKENS", "60"),
    primary_temperature=primary_temperature,
    cleanup_provider=_provider("GEMMIE_CLEANUP_PROVIDER", "openrouter"),
    cleanup_model=os.getenv("GEMMIE_CLEANUP_MODEL", "allenai/olmo-3-32b-think:free"),
    cleanup_max_tokens=_positive_int("GEMMIE_CLEANUP_MAX_TOKENS", "200"),
    cleanup_temperature=cleanup_temperature,
    gemini_api_key=_optional_str(os.getenv("GEMINI_API_KEY")),
    openrouter_api_key=_optional_str(os.getenv("OPENROUTER_API_KEY")),
    openrouter_base_url=_optional_str(os.getenv("OPENROUTER_BASE_URL")),
    admin_user_names=_parse_names(os.getenv("GEMMIE_ADMIN_USERS"), ("arham",)),
    reaction_min_interval_seconds=reaction_min_interval,
    reaction_max_interval_seconds=reaction_max_interval,
    reaction_daily_limit=_positive_int("GEMMIE_REACTION_DAILY_LIMIT", "5"),
    reaction_base_chance=_probability("GEMMIE_REACTION_BASE_CHANCE", "0.15"),
    reaction_delay_seconds=_positive_int("GEMMIE_REACTION_DELAY_SECONDS", "30"),
  )


@lru_cache(maxsize=1)
def get_database_settings() -> DatabaseSettings:
  """Load database settings without requiring web-runtime configuration."""
  debug = _parse_bool(os.getenv("GEMMIE_DEBUG"))
  pg_connect_timeout = int(os.getenv("GEMMIE_PG_CONNECT_TIMEOUT", "5"))
  if pg_connect_timeout <= 0:
    raise ValueError("GEMMIE_PG_CONNECT_TIMEOUT must be a positive integer.")

  # Support fallback to DATABASE_URL for hosted Postgres providers.
  pg_dsn = os.getenv("GEMMIE_PG_DSN") or os.getenv("DATABASE_URL")

  return DatabaseSettings(debug=debug, pg_dsn=pg_dsn, pg_connect_timeout=pg_connect_timeout)


def _optional_str(raw: str | None) -> str | None:
  if raw is None:
    return None
  value = raw.strip()
  if value == "":
    return None
  return value
