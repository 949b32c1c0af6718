"""Idle and total-runtime supervision for background tasks."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from geoquest.config import WatchdogSettings
from geoquest.storage.tasks_repo import TasksRepository
from geoquest.tasks.control import TaskControl
from geoquest.tasks.progress import TaskProgressTracker, utc_timestamp

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WatchdogLimits:
  idle_ms: int
  total_ms: int
  check_interval_ms: int = 5000

  @classmethod
  def for_amount(cls, amount: int, settings: WatchdogSettings) -> WatchdogLimits:
    total_ms = max(settings.min_total_ms, max(amount, 1) * settings.per_item_ms)
    return cls(idle_ms=settings.idle_ms, total_ms=total_ms, check_interval_ms=settings.check_interval_ms)


@dataclass
class WatchdogDiagnostics:
  """Last known activity, written into the failure record when the watchdog trips."""

  last_provider: str | None = None
  last_batch_size: int | None = None
  last_item_id: str | None = None
  round: int | None = None

  def to_dict(self) -> dict[str, Any]:
    return {"lastProvider": self.last_provider, "lastBatchSize": self.last_batch_size, "lastItemId": self.last_item_id, "round": self.round}


class Watchdog:
  """Aborts a task that stops reporting progress or runs past its budget.

  Tripping never cancels an in-flight provider call. It sets the abort flag that
  the task checks between steps and writes the failure immediately.
  """

  def __init__(self, *, tracker: TaskProgressTracker, control: TaskControl, limits: WatchdogLimits, diagnostics: WatchdogDiagnostics | None = None) -> None:
    self._tracker = tracker
    self._control = control
    self._limits = limits
    self.diagnostics = diagnostics or WatchdogDiagnostics()

  def _trip_reason(self, idle_ms: int, total_ms: int) -> str | None:
    # Idle is checked first so a stuck task reports the more specific cause.
    if idle_ms >= self._limits.idle_ms:
      return f"Watchdog timeout: idle for {idle_ms}ms without progress (limit {self._limits.idle_ms}ms)"
    if total_ms >= self._limits.total_ms:
      return f"Watchdog timeout: total runtime {total_ms}ms exceeded (limit {self._limits.total_ms}ms)"
    return None

  async def check_once(self) -> str | None:
    """Run one check; return the trip reason when the task was aborted."""

    if self._control.terminal_claimed:
      return None

    idle_ms = self._tracker.idle_ms()
    total_ms = self._tracker.elapsed_ms()
    reason = self._trip_reason(idle_ms, total_ms)
    if reason is None:
      return None

    self._control.abort(reason)
    watchdog = {"idleMs": idle_ms, "totalMs": total_ms, "idleLimitMs": self._limits.idle_ms, "totalLimitMs": self._limits.total_ms, "elapsedMs": total_ms, **self.diagnostics.to_dict()}
    logger.warning("Task %s aborted by watchdog: %s", self._tracker.task_id, reason)
    await self._tracker.fail(reason, details={"watchdog": watchdog}, result={"error": reason, "watchdog": watchdog})
    return reason

  async def run(self) -> None:
    interval = self._limits.check_interval_ms / 1000
    while not self._control.terminal_claimed:
      await asyncio.sleep(interval)
      try:
        if await self.check_once() is not None:
          return
      except Exception:  # noqa: BLE001
        logger.exception("Watchdog check failed for task %s", self._tracker.task_id)


class WatchdogHandle:
  def __init__(self, watchdog: Watchdog, task: asyncio.Task[None]) -> None:
    self.watchdog = watchdog
    self._task = task

  async def stop(self) -> None:
    if self._task.done():
      return
    self._task.cancel()
    try:
      await self._task
    except asyncio.CancelledError:
      pass


def attach_watchdog(*, tracker: TaskProgressTracker, control: TaskControl, limits: WatchdogLimits, diagnostics: WatchdogDiagnostics | None = None) -> WatchdogHandle:
  """Start supervising a task on the running event loop."""

  watchdog = Watchdog(tracker=tracker, control=control, limits=limits, diagnostics=diagnostics)
  task = asyncio.create_task(watchdog.run(), name=f"watchdog-{tracker.task_id}")
  return WatchdogHandle(watchdog, task)


def _parse_timestamp(raw: Any) -> datetime | None:
  if not raw:
    return None
  try:
    parsed = datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
  except ValueError:
    return None
  return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


async def sweep_stale_tasks(tasks_repo: TasksRepository, settings: WatchdogSettings, now: datetime | None = None, *, skip_ids: set[str] | frozenset[str] = frozenset()) -> list[str]:
  """Fail active tasks whose process died, judged by heartbeat age and total runtime."""

  now = now or datetime.now(UTC)
  swept: list[str] = []
  for record in await tasks_repo.list_active_tasks():
    if record.task_id in skip_ids:
      continue

    heartbeat = _parse_timestamp(record.progress.details.get("heartbeatAt")) or _parse_timestamp(record.updated_at) or _parse_timestamp(record.created_at)
    created = _parse_timestamp(record.created_at)
    if heartbeat is None or created is None:
      continue

    amount = int(record.progress.total or (record.payload.get("criteria") or {}).get("amount") or 1)
    limits = WatchdogLimits.for_amount(amount, settings)
    idle_ms = int((now - heartbeat).total_seconds() * 1000)
    total_ms = int((now - created).total_seconds() * 1000)

    if idle_ms >= limits.idle_ms:
      reason = f"Watchdog timeout: idle for {idle_ms}ms without progress (limit {limits.idle_ms}ms)"
    elif total_ms >= limits.total_ms:
      reason = f"Watchdog timeout: total runtime {total_ms}ms exceeded (limit {limits.total_ms}ms)"
    else:
      continue

    watchdog = {"idleMs": idle_ms, "totalMs": total_ms, "idleLimitMs": limits.idle_ms, "totalLimitMs": limits.total_ms, "stale": True}
    progress = record.progress
    progress.phase = "failed"
    progress.details.update({"watchdog": watchdog, "lastMessage": reason})
    stamp = utc_timestamp(now)
    await tasks_repo.update_task(record.task_id, status="failed", progress=progress, result={"error": reason, "watchdog": watchdog}, error=reason, finished_at=stamp, updated_at=stamp, if_active=True)
    logger.warning("Swept stale task %s: %s", record.task_id, reason)
    swept.append(record.task_id)
  return swept
