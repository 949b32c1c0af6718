"""Task creation, dispatch and chaining for the question pipeline."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from fastapi import HTTPException, status

from geoquest.pipeline.context import PipelineServices
from geoquest.pipeline.contracts import GenerationCriteria
from geoquest.pipeline.errors import ProviderError, call_provider
from geoquest.pipeline.generation import GenerationOrchestrator
from geoquest.pipeline.validation import ValidationOrchestrator
from geoquest.tasks.control import TaskControl
from geoquest.tasks.dispatch import TaskHandlerRegistry
from geoquest.tasks.models import TaskKind, TaskProgress, TaskRecord
from geoquest.tasks.progress import utc_timestamp
from geoquest.tasks.watchdog import sweep_stale_tasks
from geoquest.utils.ids import generate_task_id

logger = logging.getLogger(__name__)

_TASK_NOT_FOUND_MSG = "Task not found."
CANCELLED_ERROR = "Cancelled by user"


class GenerationTaskHandler:
  """Runs a generation task and chains its validation task."""

  def __init__(self, service: PipelineService) -> None:
    self._service = service

  async def handle(self, record: TaskRecord, control: TaskControl) -> None:
    criteria = GenerationCriteria.model_validate(record.payload.get("criteria") or {})
    orchestrator = GenerationOrchestrator(self._service.services.context_for(record.task_id))
    outcome = await orchestrator.run(criteria, control)
    if outcome is None or not outcome.saved:
      return

    # Generators of this batch must not validate it.
    generators = sorted({item.provenance.provider for item in outcome.saved if item.provenance is not None})
    await self._service.create_validation_task(outcome.saved_ids, criteria=criteria, generator_providers=generators, parent_task_id=record.task_id)


class ValidationTaskHandler:
  """Loads the batch named in the payload and validates it."""

  def __init__(self, service: PipelineService) -> None:
    self._service = service

  async def handle(self, record: TaskRecord, control: TaskControl) -> None:
    services = self._service.services
    payload = record.payload
    raw_criteria = payload.get("criteria")
    criteria = GenerationCriteria.model_validate(raw_criteria) if raw_criteria else None
    try:
      items = await services.repositories.questions.get_items(list(payload.get("itemIds") or []))
    except Exception as exc:  # noqa: BLE001
      logger.error("Validation task %s could not load its questions", record.task_id, exc_info=True)
      if control.claim_terminal():
        now = utc_timestamp()
        await services.repositories.tasks.update_task(record.task_id, status="failed", error=f"Could not load questions: {exc}", finished_at=now, updated_at=now, if_active=True)
      return

    generators = list(payload.get("generatorProviders") or [])
    # Batches validated on request carry no generator list; use the stored provenance.
    if not generators:
      generators = sorted({item.provenance.provider for item in items if item.provenance is not None})
    orchestrator = ValidationOrchestrator(services.context_for(record.task_id))
    await orchestrator.run(items, generators, criteria, control, preferred_provider=payload.get("preferredProvider"))


class PipelineService:
  """Entry point used by the HTTP layer; owns no state beyond the shared services."""

  def __init__(self, services: PipelineServices) -> None:
    self.services = services
    self.handlers = TaskHandlerRegistry({"generation": GenerationTaskHandler(self), "validation": ValidationTaskHandler(self)})

  async def _start(self, record: TaskRecord) -> TaskRecord:
    await self.services.repositories.tasks.create_task(record)
    self.services.runner.spawn(record.task_id, lambda control: self.handlers.dispatch(record, control))
    logger.info("Started %s task %s", record.kind, record.task_id)
    return record

  def _new_record(self, kind: TaskKind, payload: dict[str, Any], total: int, parent_task_id: str | None = None) -> TaskRecord:
    now = utc_timestamp(self.services.clock())
    progress = TaskProgress(completed=0, total=total, phase="queued", details={"heartbeatAt": now, "lastMessage": "Task accepted"})
    return TaskRecord(task_id=generate_task_id(), kind=kind, status="processing", payload=payload, created_at=now, updated_at=now, progress=progress, parent_task_id=parent_task_id)

  async def create_generation_task(self, criteria: GenerationCriteria) -> TaskRecord:
    """Persist a generation task and start it detached from the caller."""

    if criteria.amount > self.services.settings.max_amount:
      raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_CONTENT, detail=f"amount must be at most {self.services.settings.max_amount}.")
    record = self._new_record("generation", {"criteria": criteria.dump()}, criteria.amount)
    return await self._start(record)

  async def create_validation_task(self, item_ids: Sequence[str], *, criteria: GenerationCriteria | None = None, generator_providers: Sequence[str] = (), parent_task_id: str | None = None, preferred_provider: str | None = None) -> TaskRecord:
    """Persist a validation task for saved questions and start it."""

    if not item_ids:
      raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_CONTENT, detail="At least one question id is required.")
    payload: dict[str, Any] = {"itemIds": list(item_ids), "generatorProviders": list(generator_providers), "criteria": criteria.dump() if criteria else None, "preferredProvider": preferred_provider}
    record = self._new_record("validation", payload, len(item_ids), parent_task_id=parent_task_id)
    return await self._start(record)

  async def _sweep(self) -> None:
    try:
      await sweep_stale_tasks(self.services.repositories.tasks, self.services.settings.watchdog, self.services.clock(), skip_ids=self.services.runner.active_ids)
    except Exception:  # noqa: BLE001
      logger.warning("Stale task sweep failed", exc_info=True)

  async def get_task(self, task_id: str) -> TaskRecord:
    await self._sweep()
    record = await self.services.repositories.tasks.get_task(task_id)
    if record is None:
      raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=_TASK_NOT_FOUND_MSG)
    return record

  async def list_tasks(self, *, kind: TaskKind | None = None, limit: int = 50, offset: int = 0) -> list[TaskRecord]:
    await self._sweep()
    return await self.services.repositories.tasks.list_tasks(limit=limit, offset=offset, kind=kind)

  async def cancel_task(self, task_id: str) -> TaskRecord:
    """Abort a task and mark it failed; a finished task is returned unchanged."""

    record = await self.services.repositories.tasks.get_task(task_id)
    if record is None:
      raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=_TASK_NOT_FOUND_MSG)
    if record.is_terminal:
      return record

    control = self.services.runner.cancel(task_id, CANCELLED_ERROR)
    # Without a local control the task belongs to a dead process; the row is still ours to close.
    if control is not None and not control.claim_terminal():
      return await self.services.repositories.tasks.get_task(task_id) or record

    progress = record.progress
    progress.phase = "failed"
    progress.details["lastMessage"] = CANCELLED_ERROR
    now = utc_timestamp(self.services.clock())
    updated = await self.services.repositories.tasks.update_task(task_id, status="failed", progress=progress, error=CANCELLED_ERROR, finished_at=now, updated_at=now, if_active=True)
    logger.info("Task %s cancelled", task_id)
    return updated or record

  async def provider_status(self) -> list[dict[str, Any]]:
    """Report configuration and reachability of every registered provider."""

    statuses: list[dict[str, Any]] = []
    registry = self.services.providers
    for name in registry.names:
      provider = registry.get(name)
      if provider is None:
        continue
      entry: dict[str, Any] = {
        "name": provider.name,
        "model": provider.model_name,
        "maxItemsPerRequest": provider.max_items_per_request,
        "generation": provider in registry.for_purpose("generation"),
        "validation": provider in registry.for_purpose("validation"),
        "available": None,
        "message": None,
      }
      if provider.supports_availability_check:
        try:
          result = await call_provider(provider.name, "check_availability", provider.check_availability, timeout_seconds=self.services.settings.provider_call_timeout_seconds)
          entry.update(available=result.available, message=result.message)
        except ProviderError as exc:
          entry.update(available=False, message=exc.message)
      statuses.append(entry)
    return statuses
