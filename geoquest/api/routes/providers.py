from fastapi import APIRouter, Depends

from geoquest.api.deps import get_pipeline_service
from geoquest.api.models import ProviderStatusResponse, ProvidersStatusResponse
from geoquest.services.pipeline import PipelineService

router = APIRouter()


@router.get("/status", response_model=ProvidersStatusResponse)
async def providers_status(service: PipelineService = Depends(get_pipeline_service)) -> ProvidersStatusResponse:  # noqa: B008
  """Report configured providers and whether each is reachable right now."""
  statuses = await service.provider_status()
  return ProvidersStatusResponse(providers=[ProviderStatusResponse.model_validate(entry) for entry in statuses])
