"""Storage interface for background tasks."""

from __future__ import annotations

from typing import Any, Protocol

from geoquest.tasks.models import TaskKind, TaskProgress, TaskRecord, TaskStatus


class TasksRepository(Protocol):
  """Repository contract for task persistence."""

  async def create_task(self, record: TaskRecord) -> None:
    """Persist an initial task record."""

  async def get_task(self, task_id: str) -> TaskRecord | None:
    """Fetch a task by identifier."""

  async def update_task(
    self,
    task_id: str,
    *,
    status: TaskStatus | None = None,
    progress: TaskProgress | None = None,
    result: dict[str, Any] | None = None,
    error: str | None = None,
    finished_at: str | None = None,
    updated_at: str | None = None,
    if_active: bool = False,
  ) -> TaskRecord | None:
    """Apply a partial update and return the stored record.

    With `if_active=True` the update is skipped when the row already has a terminal
    status; the current record is still returned so callers can notice it.
    """

  async def list_tasks(self, *, limit: int = 50, offset: int = 0, kind: TaskKind | None = None) -> list[TaskRecord]:
    """List tasks, newest first."""

  async def list_active_tasks(self) -> list[TaskRecord]:
    """List tasks that are queued or processing."""
