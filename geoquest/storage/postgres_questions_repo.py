"""Postgres-backed question corpus."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from geoquest.core.database import get_session_factory
from geoquest.pipeline.contracts import ProposedEdits, Provenance, QuestionItem, ValidationResult
from geoquest.pipeline.errors import PersistenceError
from geoquest.schema.sql import Question
from geoquest.storage.questions_repo import QuestionsRepository

logger = logging.getLogger(__name__)

# Item field -> column name.
_CONTENT_COLUMNS = {
  "text": "question_sv",
  "text_en": "question_en",
  "options": "options_sv",
  "options_en": "options_en",
  "correct_index": "correct_option",
  "explanation": "explanation_sv",
  "explanation_en": "explanation_en",
  "background": "background_sv",
  "background_en": "background_en",
}


class PostgresQuestionsRepository(QuestionsRepository):
  def __init__(self) -> None:
    self._session_factory = get_session_factory()
    if self._session_factory is None:
      raise RuntimeError("Database not initialized")

  async def list_existing_texts(self) -> list[dict[str, str]]:
    async with self._session_factory() as session:
      rows = (await session.execute(select(Question.id, Question.question_sv))).all()
      return [{"id": row.id, "text": row.question_sv} for row in rows]

  async def insert(self, item: QuestionItem) -> str:
    row = Question(
      id=item.id,
      category=item.category,
      difficulty=item.difficulty,
      emoji=item.emoji,
      age_groups=list(item.age_groups),
      target_audience=item.target_audience,
      provider=item.provenance.provider if item.provenance else None,
      model=item.provenance.model if item.provenance else None,
      validated=item.validated,
      quarantined=item.quarantined,
      time_sensitive=item.time_sensitive,
      best_before_at=item.best_before_at,
      created_at=item.created_at,
    )
    for field_name, column in _CONTENT_COLUMNS.items():
      setattr(row, column, getattr(item, field_name))
    try:
      async with self._session_factory() as session:
        session.add(row)
        await session.commit()
    except SQLAlchemyError as exc:
      raise PersistenceError(f"Failed to insert question {item.id}: {exc}") from exc
    return item.id

  async def get_items(self, item_ids: Sequence[str]) -> list[QuestionItem]:
    if not item_ids:
      return []
    async with self._session_factory() as session:
      rows = (await session.execute(select(Question).where(Question.id.in_(list(item_ids))))).scalars().all()
    by_id = {row.id: row for row in rows}
    return [self._model_to_item(by_id[item_id]) for item_id in item_ids if item_id in by_id]

  async def update_validation(self, item_id: str, result: ValidationResult) -> None:
    try:
      async with self._session_factory() as session:
        row = await session.get(Question, item_id)
        if row is None:
          raise PersistenceError(f"Question {item_id} not found")
        row.validation = result.dump()
        row.validated = result.is_valid
        row.quarantined = result.quarantined
        if result.freshness is not None:
          row.time_sensitive = result.freshness.time_sensitive
          row.best_before_at = result.freshness.best_before_at
        await session.commit()
    except SQLAlchemyError as exc:
      raise PersistenceError(f"Failed to store validation for question {item_id}: {exc}") from exc

  async def update_content(self, item_id: str, edits: ProposedEdits) -> None:
    changes = edits.changes()
    if not changes:
      return
    try:
      async with self._session_factory() as session:
        row = await session.get(Question, item_id)
        if row is None:
          raise PersistenceError(f"Question {item_id} not found")
        for field_name, value in changes.items():
          setattr(row, _CONTENT_COLUMNS[field_name], value)
        await session.commit()
    except SQLAlchemyError as exc:
      raise PersistenceError(f"Failed to apply edits to question {item_id}: {exc}") from exc

  def _model_to_item(self, row: Question) -> QuestionItem:
    return QuestionItem(
      id=row.id,
      text=row.question_sv,
      text_en=row.question_en,
      options=list(row.options_sv or []),
      options_en=list(row.options_en) if row.options_en is not None else None,
      correct_index=row.correct_option,
      explanation=row.explanation_sv,
      explanation_en=row.explanation_en,
      background=row.background_sv,
      background_en=row.background_en,
      emoji=row.emoji,
      category=row.category,
      difficulty=row.difficulty,
      age_groups=list(row.age_groups or []),
      target_audience=row.target_audience,
      provenance=Provenance(provider=row.provider, model=row.model) if row.provider else None,
      validated=row.validated,
      quarantined=row.quarantined,
      time_sensitive=row.time_sensitive,
      best_before_at=row.best_before_at,
      created_at=row.created_at,
      validation=ValidationResult.model_validate(row.validation) if row.validation else None,
    )
