"""Storage interface for persisted questions."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from geoquest.pipeline.contracts import ProposedEdits, QuestionItem, ValidationResult


class QuestionsRepository(Protocol):
  """Corpus reads and per-item writes used by the pipeline."""

  async def list_existing_texts(self) -> list[dict[str, str]]:
    """Return `{id, text}` for every stored question."""

  async def insert(self, item: QuestionItem) -> str:
    """Persist a new question and return its id."""

  async def get_items(self, item_ids: Sequence[str]) -> list[QuestionItem]:
    """Fetch questions in the order of `item_ids`, skipping unknown ids."""

  async def update_validation(self, item_id: str, result: ValidationResult) -> None:
    """Replace the stored validation result and the fields derived from it."""

  async def update_content(self, item_id: str, edits: ProposedEdits) -> None:
    """Apply provider-proposed content edits."""
