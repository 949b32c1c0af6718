"""Postgres-backed repository for background tasks using SQLAlchemy."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import select

from geoquest.core.database import get_session_factory
from geoquest.schema.sql import BackgroundTask
from geoquest.storage.tasks_repo import TasksRepository
from geoquest.tasks.models import TERMINAL_STATUSES, TaskKind, TaskProgress, TaskRecord, TaskStatus


def _now_iso() -> str:
  return datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


class PostgresTasksRepository(TasksRepository):
  """Persist task rows to Postgres."""

  def __init__(self) -> None:
    self._session_factory = get_session_factory()
    if self._session_factory is None:
      raise RuntimeError("Database not initialized")

  async def create_task(self, record: TaskRecord) -> None:
    async with self._session_factory() as session:
      session.add(
        BackgroundTask(
          task_id=record.task_id,
          kind=record.kind,
          status=record.status,
          payload=record.payload,
          progress=record.progress.to_dict(),
          result=record.result,
          error=record.error,
          parent_task_id=record.parent_task_id,
          created_at=record.created_at,
          updated_at=record.updated_at,
          finished_at=record.finished_at,
        )
      )
      await session.commit()

  async def get_task(self, task_id: str) -> TaskRecord | None:
    async with self._session_factory() as session:
      row = await session.get(BackgroundTask, task_id)
      return self._model_to_record(row) if row is not None else None

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
    async with self._session_factory() as session:
      # Row lock keeps a concurrent terminal write from being overwritten.
      row = (await session.execute(select(BackgroundTask).where(BackgroundTask.task_id == task_id).with_for_update())).scalar_one_or_none()
      if row is None:
        return None
      if if_active and row.status in TERMINAL_STATUSES:
        await session.rollback()
        return self._model_to_record(row)
      if status is not None:
        row.status = status
      if progress is not None:
        row.progress = progress.to_dict()
      if result is not None:
        row.result = result
      if error is not None:
        row.error = error
      if finished_at is not None:
        row.finished_at = finished_at
      row.updated_at = updated_at or _now_iso()
      await session.commit()
      await session.refresh(row)
      return self._model_to_record(row)

  async def list_tasks(self, *, limit: int = 50, offset: int = 0, kind: TaskKind | None = None) -> list[TaskRecord]:
    async with self._session_factory() as session:
      stmt = select(BackgroundTask).order_by(BackgroundTask.created_at.desc()).limit(limit).offset(offset)
      if kind:
        stmt = stmt.where(BackgroundTask.kind == kind)
      rows = (await session.execute(stmt)).scalars().all()
      return [self._model_to_record(row) for row in rows]

  async def list_active_tasks(self) -> list[TaskRecord]:
    async with self._session_factory() as session:
      stmt = select(BackgroundTask).where(BackgroundTask.status.in_(("queued", "processing"))).order_by(BackgroundTask.created_at.asc())
      rows = (await session.execute(stmt)).scalars().all()
      return [self._model_to_record(row) for row in rows]

  def _model_to_record(self, row: BackgroundTask) -> TaskRecord:
    return TaskRecord(
      task_id=row.task_id,
      kind=row.kind,  # type: ignore[arg-type]
      status=row.status,  # type: ignore[arg-type]
      payload=dict(row.payload or {}),
      progress=TaskProgress.from_dict(row.progress),
      result=row.result,
      error=row.error,
      created_at=row.created_at,
      updated_at=row.updated_at,
      finished_at=row.finished_at,
      parent_task_id=row.parent_task_id,
    )
