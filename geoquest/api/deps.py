"""Shared FastAPI dependencies."""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from geoquest.services.pipeline import PipelineService


def get_pipeline_service(request: Request) -> PipelineService:
  """Return the pipeline service built by the lifespan."""
  service = getattr(request.app.state, "pipeline", None)
  if service is None:
    raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Pipeline is not configured.")
  return service
