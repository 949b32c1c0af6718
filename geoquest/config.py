"""Application configuration loaded from environment variables."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any

from geoquest.utils.env import default_env_path, load_env_file

load_env_file(default_env_path(), override=False)

PROVIDER_PURPOSES = ("generation", "validation")

# Name -> (api key env var, default model, default base url).
KNOWN_PROVIDERS: dict[str, tuple[str, str, str | None]] = {
  "openai": ("OPENAI_API_KEY", "gpt-4o-mini", None),
  "gemini": ("GEMINI_API_KEY", "gemini-2.0-flash", None),
  "anthropic": ("ANTHROPIC_API_KEY", "claude-3-5-sonnet-20241022", "https://api.anthropic.com/v1/"),
  "mistral": ("MISTRAL_API_KEY", "mistral-small-latest", "https://api.mistral.ai/v1"),
  "openrouter": ("OPENROUTER_API_KEY", "openai/gpt-4o-mini", "https://openrouter.ai/api/v1"),
}


@dataclass(frozen=True)
class ProviderSettings:
  """Connection and routing settings for one AI provider."""

  name: str
  api_key: str
  model: str
  base_url: str | None
  max_items_per_request: int
  purposes: tuple[str, ...]

  def serves(self, purpose: str) -> bool:
    return purpose in self.purposes


@dataclass(frozen=True)
class WatchdogSettings:
  """Inactivity and total-runtime budgets for background tasks."""

  idle_ms: int
  min_total_ms: int
  per_item_ms: int
  check_interval_ms: int


@dataclass(frozen=True)
class Settings:
  """Typed settings for the GeoQuest engine."""

  environment: str
  allowed_origins: tuple[str, ...]
  debug: bool
  log_max_bytes: int
  log_backup_count: int
  log_http_4xx: bool
  pg_dsn: str | None
  pg_connect_timeout: int
  default_batch_size: int
  max_amount: int
  provider_call_timeout_seconds: float
  similarity_threshold: float
  feedback_window_days: int
  watchdog: WatchdogSettings
  providers: tuple[ProviderSettings, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class DatabaseSettings:
  """Typed settings for database connectivity."""

  debug: bool
  pg_dsn: str | None
  pg_connect_timeout: int


def _parse_origins(raw: str | None) -> tuple[str, ...]:
  if not raw:
    raise ValueError("GEOQUEST_ALLOWED_ORIGINS must be set to one or more origins.")

  origins = [origin.strip() for origin in raw.split(",") if origin.strip()]

  if not origins:
    raise ValueError("GEOQUEST_ALLOWED_ORIGINS must include at least one origin.")

  if "*" in origins:
    raise ValueError("GEOQUEST_ALLOWED_ORIGINS must not include wildcard origins.")

  return tuple(origins)


def _parse_json_dict(raw: str | None, default: dict[str, Any]) -> dict[str, Any]:
  if not raw:
    return default
  try:
    parsed = json.loads(raw)
  except json.JSONDecodeError:
    return default
  if not isinstance(parsed, dict):
    return default
  return parsed


def _parse_bool(raw: str | None) -> bool:
  """Parse a boolean-ish string from environment variables."""

  if raw is None:
    return False

  normalized = raw.strip().lower()
  return normalized in {"1", "true", "yes", "on"}


def _optional_str(raw: str | None) -> str | None:
  if raw is None:
    return None
  stripped = raw.strip()
  return stripped or None


def _positive_int(name: str, default: str) -> int:
  value = int(os.getenv(name, default))
  if value <= 0:
    raise ValueError(f"{name} must be a positive integer.")
  return value


def _parse_purposes(raw: Any) -> tuple[str, ...]:
  if not raw:
    return PROVIDER_PURPOSES
  if isinstance(raw, str):
    raw = [raw]
  purposes = tuple(str(item).strip().lower() for item in raw if str(item).strip().lower() in PROVIDER_PURPOSES)
  return purposes or PROVIDER_PURPOSES


def _load_providers(default_batch_size: int) -> tuple[ProviderSettings, ...]:
  """Build provider settings from API keys plus the optional JSON override."""

  overrides = _parse_json_dict(os.getenv("GEOQUEST_PROVIDER_SETTINGS"), {})
  providers: list[ProviderSettings] = []
  for name, (key_env, default_model, default_base_url) in KNOWN_PROVIDERS.items():
    api_key = _optional_str(os.getenv(key_env))
    if api_key is None:
      continue

    override = overrides.get(name) or {}
    if not isinstance(override, dict):
      raise ValueError(f"GEOQUEST_PROVIDER_SETTINGS entry for '{name}' must be an object.")
    if override.get("enabled") is False:
      continue

    max_items = int(override.get("maxItemsPerRequest") or default_batch_size)
    if max_items <= 0:
      raise ValueError(f"GEOQUEST_PROVIDER_SETTINGS maxItemsPerRequest for '{name}' must be positive.")

    providers.append(
      ProviderSettings(
        name=name,
        api_key=api_key,
        model=str(override.get("model") or default_model),
        base_url=_optional_str(override.get("baseUrl")) or default_base_url,
        max_items_per_request=max_items,
        purposes=_parse_purposes(override.get("purposes")),
      )
    )
  return tuple(providers)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  """Load settings once per process."""

  environment = os.getenv("GEOQUEST_ENV", "development").lower()
  # Toggle verbose error output and diagnostics in non-production environments.
  debug = _parse_bool(os.getenv("GEOQUEST_DEBUG"))

  log_max_bytes = _positive_int("GEOQUEST_LOG_MAX_BYTES", "5242880")  # 5MB default
  log_backup_count = int(os.getenv("GEOQUEST_LOG_BACKUP_COUNT", "10"))
  if log_backup_count < 0:
    raise ValueError("GEOQUEST_LOG_BACKUP_COUNT must be zero or a positive integer.")
  log_http_4xx = _parse_bool(os.getenv("GEOQUEST_LOG_HTTP_4XX"))

  default_batch_size = _positive_int("GEOQUEST_DEFAULT_BATCH_SIZE", "3")
  max_amount = _positive_int("GEOQUEST_MAX_AMOUNT", "50")
  provider_call_timeout_seconds = float(os.getenv("GEOQUEST_PROVIDER_CALL_TIMEOUT_SECONDS", "90"))
  if provider_call_timeout_seconds <= 0:
    raise ValueError("GEOQUEST_PROVIDER_CALL_TIMEOUT_SECONDS must be positive.")

  similarity_threshold = float(os.getenv("GEOQUEST_SIMILARITY_THRESHOLD", "90"))
  if not 0 < similarity_threshold <= 100:
    raise ValueError("GEOQUEST_SIMILARITY_THRESHOLD must be within (0, 100].")

  watchdog = WatchdogSettings(
    idle_ms=_positive_int("GEOQUEST_WATCHDOG_IDLE_MS", "120000"),
    min_total_ms=_positive_int("GEOQUEST_WATCHDOG_MIN_TOTAL_MS", "300000"),
    per_item_ms=_positive_int("GEOQUEST_WATCHDOG_PER_ITEM_MS", "45000"),
    check_interval_ms=_positive_int("GEOQUEST_WATCHDOG_CHECK_INTERVAL_MS", "5000"),
  )

  return Settings(
    environment=environment,
    allowed_origins=_parse_origins(os.getenv("GEOQUEST_ALLOWED_ORIGINS")),
    debug=debug,
    log_max_bytes=log_max_bytes,
    log_backup_count=log_backup_count,
    log_http_4xx=log_http_4xx,
    pg_dsn=_optional_str(os.getenv("GEOQUEST_PG_DSN")),
    pg_connect_timeout=int(os.getenv("GEOQUEST_PG_CONNECT_TIMEOUT", "5")),
    default_batch_size=default_batch_size,
    max_amount=max_amount,
    provider_call_timeout_seconds=provider_call_timeout_seconds,
    similarity_threshold=similarity_threshold,
    feedback_window_days=_positive_int("GEOQUEST_FEEDBACK_WINDOW_DAYS", "180"),
    watchdog=watchdog,
    providers=_load_providers(default_batch_size),
  )


@lru_cache(maxsize=1)
def get_database_settings() -> DatabaseSettings:
  """Load only the settings needed to reach the database."""

  return DatabaseSettings(debug=_parse_bool(os.getenv("GEOQUEST_DEBUG")), pg_dsn=_optional_str(os.getenv("GEOQUEST_PG_DSN")), pg_connect_timeout=int(os.getenv("GEOQUEST_PG_CONNECT_TIMEOUT", "5")))
