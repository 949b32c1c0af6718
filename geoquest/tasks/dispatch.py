"""Routing of task records to their handlers."""

from __future__ import annotations

from typing import Protocol

from geoquest.tasks.control import TaskControl
from geoquest.tasks.models import TaskKind, TaskRecord


class TaskHandler(Protocol):
  """Handler contract for one task kind."""

  async def handle(self, record: TaskRecord, control: TaskControl) -> None:
    """Drive the task to a terminal status."""


class TaskHandlerRegistry:
  """Registry mapping task kinds to handlers."""

  def __init__(self, handlers: dict[TaskKind, TaskHandler]) -> None:
    self._handlers = handlers

  def resolve(self, kind: str) -> TaskHandler:
    handler = self._handlers.get(kind)  # type: ignore[call-overload]
    if handler is None:
      raise ValueError(f"Unsupported task kind: {kind}")
    return handler

  async def dispatch(self, record: TaskRecord, control: TaskControl) -> None:
    await self.resolve(record.kind).handle(record, control)
