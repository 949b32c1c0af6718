"""Explicit collaborators handed to each pipeline run."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from geoquest.ai.providers.registry import ProviderRegistry
from geoquest.config import Settings
from geoquest.storage.factory import Repositories
from geoquest.tasks.runner import TaskRunner


def utc_now() -> datetime:
  return datetime.now(UTC)


@dataclass(frozen=True)
class PipelineServices:
  """Long-lived wiring owned by the application (one per process)."""

  settings: Settings
  repositories: Repositories
  providers: ProviderRegistry
  runner: TaskRunner
  clock: Callable[[], datetime] = utc_now
  monotonic: Callable[[], float] = field(default=time.monotonic)

  def context_for(self, task_id: str) -> PipelineContext:
    """Build the context for one task invocation."""

    return PipelineContext(task_id=task_id, services=self)


@dataclass(frozen=True)
class PipelineContext:
  """Everything one orchestrator run may touch; nothing is read from module globals."""

  task_id: str
  services: PipelineServices

  @property
  def settings(self) -> Settings:
    return self.services.settings

  @property
  def repositories(self) -> Repositories:
    return self.services.repositories

  @property
  def providers(self) -> ProviderRegistry:
    return self.services.providers

  def now(self) -> datetime:
    return self.services.clock()

  def monotonic(self) -> float:
    return self.services.monotonic()
