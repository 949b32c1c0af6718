"""Progress tracking for a running task."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from geoquest.pipeline.errors import WatchdogAbort
from geoquest.storage.tasks_repo import TasksRepository
from geoquest.tasks.control import TaskControl
from geoquest.tasks.models import TaskProgress, TaskRecord

logger = logging.getLogger(__name__)


def utc_timestamp(moment: datetime | None = None) -> str:
  return (moment or datetime.now(UTC)).strftime("%Y-%m-%dT%H:%M:%SZ")


class TaskProgressTracker:
  """The single writer for a running task row.

  Progress only moves forward: `completed` never decreases and `details` keys are
  merged. The terminal status is written at most once, guarded by the task's
  `TaskControl`, so the watchdog and the task body cannot both finish the task.
  """

  def __init__(self, *, task_id: str, tasks_repo: TasksRepository, control: TaskControl, total: int, clock: Callable[[], float] = time.monotonic) -> None:
    self._task_id = task_id
    self._tasks_repo = tasks_repo
    self._control = control
    self._clock = clock
    self._progress = TaskProgress(total=max(total, 0), phase="queued")
    self._started_at = clock()
    self._last_activity = self._started_at

  @property
  def task_id(self) -> str:
    return self._task_id

  @property
  def progress(self) -> TaskProgress:
    return TaskProgress(completed=self._progress.completed, total=self._progress.total, phase=self._progress.phase, details=dict(self._progress.details))

  def idle_ms(self) -> int:
    return int((self._clock() - self._last_activity) * 1000)

  def elapsed_ms(self) -> int:
    return int((self._clock() - self._started_at) * 1000)

  def _merge(self, *, phase: str | None, completed: int | None, total: int | None, message: str | None, details: dict[str, Any] | None) -> TaskProgress:
    if phase is not None:
      self._progress.phase = phase
    if total is not None:
      self._progress.total = max(total, 0)
    if completed is not None:
      self._progress.completed = max(self._progress.completed, completed)
    if details:
      self._progress.details.update(details)
    if message is not None:
      self._progress.details["lastMessage"] = message
    self._progress.details["heartbeatAt"] = utc_timestamp()
    return self.progress

  async def update(self, *, phase: str | None = None, completed: int | None = None, total: int | None = None, message: str | None = None, details: dict[str, Any] | None = None) -> TaskRecord | None:
    """Record progress and refresh the heartbeat."""

    self._control.raise_if_aborted()
    progress = self._merge(phase=phase, completed=completed, total=total, message=message, details=details)
    record = await self._tasks_repo.update_task(self._task_id, progress=progress, updated_at=utc_timestamp(), if_active=True)
    self._last_activity = self._clock()

    # Someone else (stale sweep, cancel from another worker) finished the row.
    if record is not None and record.is_terminal:
      reason = record.error or f"Task was marked {record.status} externally"
      self._control.claim_terminal()
      self._control.abort(reason)
      raise WatchdogAbort(reason)
    return record

  async def complete(self, result: dict[str, Any], *, completed: int | None = None, message: str | None = None) -> TaskRecord | None:
    """Write the completed status; `completed` is the final count of delivered items, not the requested total."""

    if not self._control.claim_terminal():
      logger.info("Task %s already finalized; skipping completion write", self._task_id)
      return None
    if completed is not None:
      self._progress.completed = max(completed, 0)
    progress = self._merge(phase="completed", completed=None, total=None, message=message, details=None)
    now = utc_timestamp()
    return await self._tasks_repo.update_task(self._task_id, status="completed", progress=progress, result=result, finished_at=now, updated_at=now, if_active=True)

  async def fail(self, error: str, *, details: dict[str, Any] | None = None, result: dict[str, Any] | None = None) -> TaskRecord | None:
    if not self._control.claim_terminal():
      logger.info("Task %s already finalized; skipping failure write", self._task_id)
      return None
    progress = self._merge(phase="failed", completed=None, total=None, message=error, details=details)
    now = utc_timestamp()
    return await self._tasks_repo.update_task(self._task_id, status="failed", progress=progress, result=result, error=error, finished_at=now, updated_at=now, if_active=True)
