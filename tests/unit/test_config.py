from __future__ import annotations

import json

import pytest

from geoquest.config import KNOWN_PROVIDERS, get_settings


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
  for key_env, _, _ in KNOWN_PROVIDERS.values():
    monkeypatch.delenv(key_env, raising=False)
  for name in ("GEOQUEST_PROVIDER_SETTINGS", "GEOQUEST_SIMILARITY_THRESHOLD", "GEOQUEST_DEFAULT_BATCH_SIZE", "GEOQUEST_PG_DSN"):
    monkeypatch.delenv(name, raising=False)
  monkeypatch.setenv("GEOQUEST_ALLOWED_ORIGINS", "http://localhost:3000, https://geoquest.example")
  return monkeypatch


def test_defaults(clean_env: pytest.MonkeyPatch) -> None:
  """Unset knobs fall back to their documented defaults."""
  settings = get_settings()

  assert settings.allowed_origins == ("http://localhost:3000", "https://geoquest.example")
  assert settings.default_batch_size == 3
  assert settings.similarity_threshold == 90.0
  assert settings.watchdog.idle_ms == 120000
  assert settings.watchdog.min_total_ms == 300000
  assert settings.providers == ()
  assert settings.pg_dsn is None


def test_missing_origins_are_rejected(clean_env: pytest.MonkeyPatch) -> None:
  clean_env.delenv("GEOQUEST_ALLOWED_ORIGINS")
  with pytest.raises(ValueError, match="GEOQUEST_ALLOWED_ORIGINS"):
    get_settings()


def test_wildcard_origin_is_rejected(clean_env: pytest.MonkeyPatch) -> None:
  clean_env.setenv("GEOQUEST_ALLOWED_ORIGINS", "*")
  with pytest.raises(ValueError, match="wildcard"):
    get_settings()


def test_similarity_threshold_must_be_a_percentage(clean_env: pytest.MonkeyPatch) -> None:
  clean_env.setenv("GEOQUEST_SIMILARITY_THRESHOLD", "150")
  with pytest.raises(ValueError, match="SIMILARITY"):
    get_settings()


def test_providers_come_from_api_keys_and_overrides(clean_env: pytest.MonkeyPatch) -> None:
  """Only providers with a key are configured; overrides adjust model, batch and purposes."""
  clean_env.setenv("OPENAI_API_KEY", "sk-test")
  clean_env.setenv("MISTRAL_API_KEY", "  ")
  clean_env.setenv("GEMINI_API_KEY", "g-test")
  clean_env.setenv("GEOQUEST_PROVIDER_SETTINGS", json.dumps({"openai": {"model": "gpt-test", "maxItemsPerRequest": 7, "purposes": ["validation"]}}))

  providers = {provider.name: provider for provider in get_settings().providers}

  assert set(providers) == {"openai", "gemini"}
  assert providers["openai"].model == "gpt-test"
  assert providers["openai"].max_items_per_request == 7
  assert providers["openai"].purposes == ("validation",)
  assert not providers["openai"].serves("generation")
  assert providers["gemini"].purposes == ("generation", "validation")
  assert providers["gemini"].max_items_per_request == 3


def test_disabled_provider_is_skipped(clean_env: pytest.MonkeyPatch) -> None:
  clean_env.setenv("ANTHROPIC_API_KEY", "a-test")
  clean_env.setenv("GEOQUEST_PROVIDER_SETTINGS", json.dumps({"anthropic": {"enabled": False}}))

  assert get_settings().providers == ()


def test_default_base_url_is_kept_for_compatible_endpoints(clean_env: pytest.MonkeyPatch) -> None:
  clean_env.setenv("OPENROUTER_API_KEY", "or-test")

  (provider,) = get_settings().providers

  assert provider.base_url == "https://openrouter.ai/api/v1"


def test_malformed_provider_override_is_rejected(clean_env: pytest.MonkeyPatch) -> None:
  clean_env.setenv("OPENAI_API_KEY", "sk-test")
  clean_env.setenv("GEOQUEST_PROVIDER_SETTINGS", json.dumps({"openai": "gpt-test"}))

  with pytest.raises(ValueError, match="must be an object"):
    get_settings()
