import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from urllib.parse import urlparse

from fastapi import FastAPI

from geoquest.ai.providers.registry import build_provider_registry
from geoquest.core.database import dispose_engine
from geoquest.core.logging import initialize_logging
from geoquest.pipeline.context import PipelineServices
from geoquest.services.pipeline import PipelineService
from geoquest.storage.factory import build_repositories
from geoquest.tasks.runner import TaskRunner
from geoquest.tasks.watchdog import sweep_stale_tasks


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
  """Set up logging and the pipeline wiring; drain running tasks on shutdown."""
  from geoquest.config import get_settings

  settings = get_settings()
  logger = logging.getLogger("geoquest.core.lifespan")

  try:
    initialize_logging(settings)
  except Exception:  # noqa: BLE001
    # Keep serving with default logging rather than refusing to start.
    logger.warning("Initial logging setup failed; continuing with default handlers.", exc_info=True)

  runner = TaskRunner()
  app.state.pipeline = None
  try:
    repositories = build_repositories(settings)
  except RuntimeError:
    logger.error("Pipeline storage unavailable (GEOQUEST_PG_DSN=%s); task endpoints will return 503.", _redact_dsn(settings.pg_dsn), exc_info=True)
  else:
    providers = build_provider_registry(settings)
    app.state.pipeline = PipelineService(PipelineServices(settings=settings, repositories=repositories, providers=providers, runner=runner))
    # Tasks left active by a previous process can never finish; close them now.
    try:
      swept = await sweep_stale_tasks(repositories.tasks, settings.watchdog)
      if swept:
        logger.info("Closed %d stale tasks at startup", len(swept))
    except Exception:  # noqa: BLE001
      logger.warning("Startup sweep of stale tasks failed", exc_info=True)

  logger.info("Startup complete (environment=%s).", settings.environment)
  try:
    yield
  finally:
    await runner.shutdown()
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
