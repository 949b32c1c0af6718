"""Read-only source of historical question feedback."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol


@dataclass(frozen=True)
class ProviderScore:
  avg_rating: float
  count: int


@dataclass(frozen=True)
class FeedbackInsights:
  """Aggregate of recent ratings and the most frequent reported issues."""

  total: int = 0
  avg_rating: float | None = None
  negative_count: int = 0
  positive_count: int = 0
  top_issues: list[tuple[str, int]] = field(default_factory=list)


class FeedbackSource(Protocol):
  async def provider_scores(self, window_days: int) -> dict[str, ProviderScore]:
    """Average question rating per provider within the window."""

  async def insights(self, window_days: int) -> FeedbackInsights:
    """Rating summary and top issues within the window."""

