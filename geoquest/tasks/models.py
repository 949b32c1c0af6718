"""Domain models for background question tasks."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

TaskStatus = Literal["queued", "processing", "completed", "failed"]
TaskKind = Literal["generation", "validation"]

TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "failed"})


@dataclass
class TaskProgress:
  """Progress snapshot stored as JSON on the task row."""

  completed: int = 0
  total: int = 0
  phase: str = "queued"
  details: dict[str, Any] = field(default_factory=dict)

  def to_dict(self) -> dict[str, Any]:
    return {"completed": self.completed, "total": self.total, "phase": self.phase, "details": dict(self.details)}

  @classmethod
  def from_dict(cls, raw: dict[str, Any] | None) -> TaskProgress:
    raw = raw or {}
    return cls(completed=int(raw.get("completed") or 0), total=int(raw.get("total") or 0), phase=str(raw.get("phase") or "queued"), details=dict(raw.get("details") or {}))


@dataclass
class TaskRecord:
  """Represents one generation or validation run."""

  task_id: str
  kind: TaskKind
  status: TaskStatus
  payload: dict[str, Any]
  created_at: str
  updated_at: str
  progress: TaskProgress = field(default_factory=TaskProgress)
  result: dict[str, Any] | None = None
  error: str | None = None
  finished_at: str | None = None
  parent_task_id: str | None = None

  @property
  def is_terminal(self) -> bool:
    return self.status in TERMINAL_STATUSES

  def to_dict(self) -> dict[str, Any]:
    return {
      "taskId": self.task_id,
      "kind": self.kind,
      "status": self.status,
      "payload": self.payload,
      "progress": self.progress.to_dict(),
      "result": self.result,
      "error": self.error,
      "createdAt": self.created_at,
      "updatedAt": self.updated_at,
      "finishedAt": self.finished_at,
      "parentTaskId": self.parent_task_id,
    }
