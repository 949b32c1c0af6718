from __future__ import annotations

import pytest

from geoquest.pipeline.errors import WatchdogAbort
from geoquest.tasks.control import TaskControl
from geoquest.tasks.progress import TaskProgressTracker
from tests.fakes import FakeClock, InMemoryTasksRepository, make_services, seed_task


async def _tracker(total: int = 4):
  services = make_services()
  await seed_task(services, "task-1", total=total)
  repo: InMemoryTasksRepository = services.repositories.tasks
  control = TaskControl("task-1")
  return repo, control, TaskProgressTracker(task_id="task-1", tasks_repo=repo, control=control, total=total, clock=FakeClock())


@pytest.mark.anyio
async def test_completed_never_moves_backwards() -> None:
  repo, _, tracker = await _tracker()

  await tracker.update(phase="generating", completed=3, message="three")
  await tracker.update(completed=1)

  progress = repo.tasks["task-1"].progress
  assert progress.completed == 3
  assert progress.phase == "generating"
  assert progress.details["lastMessage"] == "three"
  assert "heartbeatAt" in progress.details


@pytest.mark.anyio
async def test_details_are_merged() -> None:
  repo, _, tracker = await _tracker()

  await tracker.update(details={"round": 1})
  await tracker.update(details={"provider": "alpha"})

  details = repo.tasks["task-1"].progress.details
  assert details["round"] == 1
  assert details["provider"] == "alpha"


@pytest.mark.anyio
async def test_terminal_status_is_written_once() -> None:
  repo, control, tracker = await _tracker()

  completed = await tracker.complete({"saved": 4}, completed=4, message="done")
  failed = await tracker.fail("late failure")

  assert completed is not None and completed.status == "completed"
  assert completed.progress.completed == 4
  assert failed is None
  assert control.terminal_claimed
  assert repo.status_writes == [("task-1", "completed")]
  assert repo.tasks["task-1"].error is None


@pytest.mark.anyio
async def test_external_terminal_write_aborts_the_task() -> None:
  repo, control, tracker = await _tracker()
  await repo.update_task("task-1", status="failed", error="Watchdog timeout: swept")

  with pytest.raises(WatchdogAbort) as excinfo:
    await tracker.update(completed=1)

  assert excinfo.value.reason == "Watchdog timeout: swept"
  assert control.aborted
  assert await tracker.complete({}) is None


@pytest.mark.anyio
async def test_update_after_abort_raises() -> None:
  _, control, tracker = await _tracker()
  control.abort("Cancelled by user")

  with pytest.raises(WatchdogAbort):
    await tracker.update(completed=1)


@pytest.mark.anyio
async def test_idle_time_resets_on_update() -> None:
  services = make_services()
  await seed_task(services, "task-1")
  clock = FakeClock()
  tracker = TaskProgressTracker(task_id="task-1", tasks_repo=services.repositories.tasks, control=TaskControl("task-1"), total=1, clock=clock)

  clock.advance(10)
  assert tracker.idle_ms() == 10000
  await tracker.update(message="tick")
  clock.advance(2)

  assert tracker.idle_ms() == 2000
  assert tracker.elapsed_ms() == 12000


@pytest.mark.anyio
async def test_completion_reports_the_delivered_count() -> None:
  """A run that fell short stays short in the final progress."""
  repo, _, tracker = await _tracker(total=5)

  await tracker.update(phase="generating", completed=1)
  await tracker.complete({"saved": 1, "shortfall": 4}, completed=1, message="Saved 1 of 5 questions")

  progress = repo.tasks["task-1"].progress
  assert (progress.completed, progress.total) == (1, 5)
  assert progress.phase == "completed"


@pytest.mark.anyio
async def test_completion_without_count_keeps_last_progress() -> None:
  repo, _, tracker = await _tracker(total=5)

  await tracker.update(completed=3)
  await tracker.complete({})

  assert repo.tasks["task-1"].progress.completed == 3
