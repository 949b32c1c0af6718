from __future__ import annotations

from datetime import timedelta

from geoquest.pipeline.freshness import is_expired, parse_best_before, resolve_freshness
from geoquest.pipeline.rules import FreshnessConfig
from tests.fakes import FIXED_NOW, make_candidate

NOW = FIXED_NOW


def test_disabled_config_is_never_time_sensitive() -> None:
  candidate = make_candidate("Vilken låt vann Melodifestivalen i år?", time_sensitive=True, best_before_date="2026-02-01")

  result = resolve_freshness(candidate, FreshnessConfig(enabled=False), NOW)

  assert not result.time_sensitive
  assert result.best_before_at is None


def test_flagged_without_date_gets_default_shelf_life() -> None:
  candidate = make_candidate("Vilken låt vann Melodifestivalen i år?", time_sensitive=True)

  result = resolve_freshness(candidate, FreshnessConfig(), NOW)

  assert result.time_sensitive
  assert result.best_before_at == NOW + timedelta(days=365)
  assert result.best_before_date == (NOW + timedelta(days=365)).date().isoformat()


def test_best_before_alone_makes_it_time_sensitive_and_is_clamped() -> None:
  candidate = make_candidate("Vem är statsminister just nu?", best_before_date="2026-01-20")

  result = resolve_freshness(candidate, FreshnessConfig(min_shelf_life_days=30), NOW)

  assert result.time_sensitive
  assert result.best_before_at == NOW + timedelta(days=30)


def test_far_future_date_is_clamped_to_max() -> None:
  candidate = make_candidate("Vem är statsminister just nu?", best_before_date="2099-01-01")

  result = resolve_freshness(candidate, FreshnessConfig(max_shelf_life_days=100), NOW)

  assert result.best_before_at == NOW + timedelta(days=100)


def test_zero_bounds_disable_clamping() -> None:
  candidate = make_candidate("Vem är statsminister just nu?", best_before_date="2026-01-16")

  result = resolve_freshness(candidate, FreshnessConfig(min_shelf_life_days=0, max_shelf_life_days=0), NOW)

  assert result.best_before_at == parse_best_before("2026-01-16")


def test_auto_age_group_marks_time_sensitive() -> None:
  candidate = make_candidate("Vilken app är populärast bland tonåringar?")

  result = resolve_freshness(candidate, FreshnessConfig(auto_time_sensitive_age_groups=["youth"]), NOW, extra_age_groups=["Youth"])

  assert result.time_sensitive


def test_provider_hints_override_candidate_fields() -> None:
  candidate = make_candidate("Vilken är Sveriges största sjö till ytan?", time_sensitive=False)

  result = resolve_freshness(candidate, FreshnessConfig(), NOW, time_sensitive_hint=True, best_before_hint="2026-06-01")

  assert result.time_sensitive
  assert result.best_before_date == "2026-06-01"


def test_not_time_sensitive_by_default() -> None:
  result = resolve_freshness(make_candidate("Vilken är Sveriges största sjö till ytan?"), FreshnessConfig(), NOW)
  assert not result.time_sensitive
  assert result.best_before_at is None


def test_is_expired() -> None:
  assert not is_expired(None, NOW)
  assert is_expired(NOW, NOW)
  assert is_expired(NOW - timedelta(seconds=1), NOW)
  assert not is_expired(NOW + timedelta(seconds=1), NOW)


def test_parse_best_before_handles_dates_and_garbage() -> None:
  assert parse_best_before("2026-03-01").tzinfo is not None
  assert parse_best_before("not a date") is None
  assert parse_best_before(None) is None
