import logging

from fastapi import APIRouter, Depends, status

from geoquest.api.deps import get_pipeline_service
from geoquest.api.models import TaskAcceptedResponse, ValidateQuestionsRequest
from geoquest.pipeline.contracts import NO_PREFERENCE, GenerationCriteria
from geoquest.services.pipeline import PipelineService

router = APIRouter()
logger = logging.getLogger("geoquest.api.routes.questions")


@router.post("/generate", response_model=TaskAcceptedResponse, status_code=status.HTTP_202_ACCEPTED)
async def generate_questions(  # noqa: B008
  criteria: GenerationCriteria,
  service: PipelineService = Depends(get_pipeline_service),  # noqa: B008
) -> TaskAcceptedResponse:
  """Start a background generation task; its validation task follows automatically."""
  record = await service.create_generation_task(criteria)
  return TaskAcceptedResponse(task_id=record.task_id, kind=record.kind)


@router.post("/validate", response_model=TaskAcceptedResponse, status_code=status.HTTP_202_ACCEPTED)
async def validate_questions(  # noqa: B008
  payload: ValidateQuestionsRequest,
  service: PipelineService = Depends(get_pipeline_service),  # noqa: B008
) -> TaskAcceptedResponse:
  """Start a background validation task for saved questions."""
  preferred = payload.provider.strip().lower() if payload.provider else None
  if preferred in NO_PREFERENCE:
    preferred = None
  # Duplicates in the request would be validated twice in the same pass.
  item_ids = list(dict.fromkeys(payload.question_ids))
  record = await service.create_validation_task(item_ids, preferred_provider=preferred)
  return TaskAcceptedResponse(task_id=record.task_id, kind=record.kind)
