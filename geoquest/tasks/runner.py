"""Detached execution of background tasks on the service event loop."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from geoquest.tasks.control import TaskControl

logger = logging.getLogger(__name__)

TaskWork = Callable[[TaskControl], Awaitable[object]]


class TaskRunner:
  """Spawns task coroutines and keeps a handle for each until it finishes."""

  def __init__(self) -> None:
    self._tasks: dict[str, asyncio.Task[None]] = {}
    self._controls: dict[str, TaskControl] = {}

  @property
  def active_ids(self) -> frozenset[str]:
    return frozenset(self._tasks)

  def control_for(self, task_id: str) -> TaskControl | None:
    return self._controls.get(task_id)

  def spawn(self, task_id: str, work: TaskWork) -> asyncio.Task[None]:
    """Start `work` detached from the caller; the runner owns its lifetime."""

    if task_id in self._tasks:
      raise ValueError(f"Task {task_id} is already running")

    control = TaskControl(task_id)
    task = asyncio.create_task(self._run(task_id, work, control), name=f"geoquest-task-{task_id}")
    self._tasks[task_id] = task
    self._controls[task_id] = control
    task.add_done_callback(lambda _: self._forget(task_id))
    logger.info("Spawned task %s", task_id)
    return task

  def _forget(self, task_id: str) -> None:
    self._tasks.pop(task_id, None)
    self._controls.pop(task_id, None)

  async def _run(self, task_id: str, work: TaskWork, control: TaskControl) -> None:
    try:
      await work(control)
    except asyncio.CancelledError:
      logger.warning("Task %s was cancelled", task_id)
      raise
    except Exception:  # noqa: BLE001
      # Handlers record their own failures; this only keeps the loop from losing the traceback.
      logger.exception("Task %s crashed outside its handler", task_id)

  def cancel(self, task_id: str, reason: str) -> TaskControl | None:
    """Signal a running task to stop at its next step boundary."""

    control = self._controls.get(task_id)
    if control is not None:
      control.abort(reason)
    return control

  async def join(self, task_id: str) -> None:
    task = self._tasks.get(task_id)
    if task is not None:
      await asyncio.shield(task)

  async def join_all(self) -> None:
    # Tasks can spawn follow-up tasks, so drain until nothing is left.
    while self._tasks:
      await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

  async def shutdown(self, timeout_seconds: float = 10.0) -> None:
    """Abort every task, give them a grace period, then cancel stragglers."""

    if not self._tasks:
      return
    for control in list(self._controls.values()):
      control.abort("Service shutting down")
    pending = list(self._tasks.values())
    _, still_running = await asyncio.wait(pending, timeout=timeout_seconds)
    for task in still_running:
      task.cancel()
    if still_running:
      await asyncio.gather(*still_running, return_exceptions=True)
    logger.info("Task runner stopped (%d cancelled)", len(still_running))
