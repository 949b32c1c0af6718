"""Time-sensitivity and best-before resolution for questions."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, date, datetime, timedelta

from geoquest.pipeline.contracts import Candidate, FreshnessResult
from geoquest.pipeline.rules import FreshnessConfig


def parse_best_before(value: str | datetime | date | None) -> datetime | None:
  """Parse a provider best-before hint into an aware UTC datetime."""

  if value is None or value == "":
    return None
  if isinstance(value, datetime):
    return value if value.tzinfo else value.replace(tzinfo=UTC)
  if isinstance(value, date):
    return datetime(value.year, value.month, value.day, tzinfo=UTC)
  raw = str(value).strip()
  try:
    parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
  except ValueError:
    return None
  return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def _clamp(best_before_at: datetime, config: FreshnessConfig, now: datetime) -> datetime:
  if config.min_shelf_life_days > 0:
    best_before_at = max(best_before_at, now + timedelta(days=config.min_shelf_life_days))
  if config.max_shelf_life_days > 0:
    best_before_at = min(best_before_at, now + timedelta(days=config.max_shelf_life_days))
  return best_before_at


def resolve_freshness(candidate: Candidate, config: FreshnessConfig, now: datetime, *, extra_age_groups: Iterable[str] = (), time_sensitive_hint: bool | None = None, best_before_hint: str | datetime | None = None) -> FreshnessResult:
  """Decide whether a question is time-sensitive and when it expires.

  Hints (from a validation provider) take precedence over the candidate's own fields.
  A disabled config always yields a question that never expires.
  """

  if not config.enabled:
    return FreshnessResult(time_sensitive=False)

  flagged = time_sensitive_hint if time_sensitive_hint is not None else candidate.time_sensitive
  best_before_at = parse_best_before(best_before_hint) or parse_best_before(getattr(candidate, "best_before_at", None)) or parse_best_before(candidate.best_before_date)
  time_sensitive = bool(flagged) or best_before_at is not None

  if not time_sensitive:
    age_groups = {group.lower() for group in [*candidate.age_groups, *extra_age_groups] if group}
    time_sensitive = bool(age_groups.intersection(config.auto_time_sensitive_age_groups))

  if time_sensitive and best_before_at is None and config.default_shelf_life_days > 0:
    best_before_at = now + timedelta(days=config.default_shelf_life_days)

  if best_before_at is not None:
    best_before_at = _clamp(best_before_at, config, now)

  return FreshnessResult(time_sensitive=time_sensitive, best_before_at=best_before_at, best_before_date=best_before_at.date().isoformat() if best_before_at else None)


def is_expired(best_before_at: datetime | None, now: datetime) -> bool:
  return best_before_at is not None and best_before_at <= now
