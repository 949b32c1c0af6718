from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from geoquest import __version__
from geoquest.api.routes import providers, questions, tasks
from geoquest.config import get_settings
from geoquest.core.exceptions import register_exception_handlers
from geoquest.core.json import GeoQuestJSONResponse
from geoquest.core.lifespan import lifespan
from geoquest.core.middleware import RequestLoggingMiddleware

settings = get_settings()

app = FastAPI(title="GeoQuest Engine", version=__version__, default_response_class=GeoQuestJSONResponse, lifespan=lifespan)

app.add_middleware(CORSMiddleware, allow_origins=settings.allowed_origins, allow_credentials=True, allow_methods=["GET", "POST", "OPTIONS"], allow_headers=["content-type", "x-request-id"], expose_headers=["x-request-id"])

register_exception_handlers(app)
app.add_middleware(RequestLoggingMiddleware)


@app.get("/health", include_in_schema=False)
async def health_check() -> dict[str, str]:
  """Return a simple health status."""
  return {"status": "ok", "version": __version__}


app.include_router(questions.router, prefix="/v1/questions", tags=["questions"])
app.include_router(tasks.router, prefix="/v1/tasks", tags=["tasks"])
app.include_router(providers.router, prefix="/v1/providers", tags=["providers"])
