"""Cooperative cancellation shared by a task and its watchdog."""

from __future__ import annotations

import asyncio

from geoquest.pipeline.errors import WatchdogAbort


class TaskControl:
  """Abort signal plus a one-shot claim on writing the terminal status.

  The task coroutine and its watchdog run on the same event loop, so the claim
  needs no lock: whoever calls `claim_terminal()` first owns the final write.
  """

  def __init__(self, task_id: str) -> None:
    self.task_id = task_id
    self._aborted = asyncio.Event()
    self._reason: str | None = None
    self._terminal_claimed = False

  @property
  def aborted(self) -> bool:
    return self._aborted.is_set()

  @property
  def reason(self) -> str | None:
    return self._reason

  def abort(self, reason: str) -> None:
    if self._aborted.is_set():
      return
    self._reason = reason
    self._aborted.set()

  def raise_if_aborted(self) -> None:
    if self._aborted.is_set():
      raise WatchdogAbort(self._reason or "Task aborted")

  async def wait_aborted(self) -> None:
    await self._aborted.wait()

  def claim_terminal(self) -> bool:
    if self._terminal_claimed:
      return False
    self._terminal_claimed = True
    return True

  @property
  def terminal_claimed(self) -> bool:
    return self._terminal_claimed
