"""Test configuration shared by unit and integration tests."""

from __future__ import annotations

import os

# Required settings must exist before the application module is imported.
os.environ.setdefault("GEOQUEST_ALLOWED_ORIGINS", "http://localhost")
os.environ.pop("GEOQUEST_PG_DSN", None)

import pytest  # noqa: E402

from geoquest.config import get_database_settings, get_settings  # noqa: E402


@pytest.fixture
def anyio_backend() -> str:
  return "asyncio"


@pytest.fixture(autouse=True)
def _reset_settings_cache():
  get_settings.cache_clear()
  get_database_settings.cache_clear()
  yield
  get_settings.cache_clear()
  get_database_settings.cache_clear()
