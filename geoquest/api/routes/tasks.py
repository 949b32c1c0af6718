import logging
from typing import Literal

from fastapi import APIRouter, Depends, Query

from geoquest.api.deps import get_pipeline_service
from geoquest.api.models import TaskListResponse, TaskStatusResponse
from geoquest.services.pipeline import PipelineService

router = APIRouter()
logger = logging.getLogger("geoquest.api.routes.tasks")


@router.get("", response_model=TaskListResponse)
async def list_tasks(  # noqa: B008
  kind: Literal["generation", "validation"] | None = Query(default=None),  # noqa: B008
  limit: int = Query(default=50, ge=1, le=200),  # noqa: B008
  offset: int = Query(default=0, ge=0),  # noqa: B008
  service: PipelineService = Depends(get_pipeline_service),  # noqa: B008
) -> TaskListResponse:
  """List tasks, newest first, after failing any stale ones."""
  records = await service.list_tasks(kind=kind, limit=limit, offset=offset)
  return TaskListResponse(tasks=[TaskStatusResponse.from_record(record) for record in records], limit=limit, offset=offset)


@router.get("/{task_id}", response_model=TaskStatusResponse)
async def get_task(  # noqa: B008
  task_id: str,
  service: PipelineService = Depends(get_pipeline_service),  # noqa: B008
) -> TaskStatusResponse:
  """Fetch status, progress and result of one task."""
  return TaskStatusResponse.from_record(await service.get_task(task_id))


@router.post("/{task_id}/cancel", response_model=TaskStatusResponse)
async def cancel_task(  # noqa: B008
  task_id: str,
  service: PipelineService = Depends(get_pipeline_service),  # noqa: B008
) -> TaskStatusResponse:
  """Abort a running task at its next step and mark it failed."""
  return TaskStatusResponse.from_record(await service.cancel_task(task_id))
