from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, StrictStr
from pydantic.alias_generators import to_camel

from geoquest.pipeline.contracts import CamelModel
from geoquest.tasks.models import TaskRecord


class ValidateQuestionsRequest(CamelModel):
  """Request body for validating already saved questions."""

  model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

  question_ids: list[StrictStr] = Field(min_length=1, max_length=200, description="Ids of saved questions to validate.")
  provider: StrictStr | None = Field(default=None, description="Optional validation provider to try first.")


class TaskAcceptedResponse(CamelModel):
  """Response returned as soon as a task has been recorded and started."""

  task_id: str
  kind: Literal["generation", "validation"]
  status: Literal["accepted"] = "accepted"


class TaskProgressResponse(BaseModel):
  completed: int
  total: int
  phase: str
  details: dict[str, Any] = Field(default_factory=dict)


class TaskStatusResponse(CamelModel):
  """Public view of one task row."""

  task_id: str
  kind: str
  status: str
  payload: dict[str, Any] = Field(default_factory=dict)
  progress: TaskProgressResponse
  result: dict[str, Any] | None = None
  error: str | None = None
  created_at: str
  updated_at: str
  finished_at: str | None = None
  parent_task_id: str | None = None

  @classmethod
  def from_record(cls, record: TaskRecord) -> TaskStatusResponse:
    return cls.model_validate(record.to_dict())


class TaskListResponse(BaseModel):
  tasks: list[TaskStatusResponse]
  limit: int
  offset: int


class ProviderStatusResponse(CamelModel):
  name: str
  model: str
  max_items_per_request: int
  generation: bool
  validation: bool
  available: bool | None = None
  message: str | None = None


class ProvidersStatusResponse(BaseModel):
  providers: list[ProviderStatusResponse]
