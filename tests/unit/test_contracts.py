from __future__ import annotations

import pytest
from pydantic import ValidationError

from geoquest.pipeline.contracts import GenerationCriteria, QuestionItem
from tests.fakes import FIXED_NOW, QUESTION_TEXTS, make_candidate


def test_question_from_unflagged_candidate_is_not_time_sensitive() -> None:
  data = make_candidate(QUESTION_TEXTS[0]).model_dump()
  assert data["time_sensitive"] is None

  item = QuestionItem.model_validate({**data, "id": "q1", "created_at": FIXED_NOW})

  assert item.time_sensitive is False


def test_question_keeps_an_explicit_time_sensitive_flag() -> None:
  item = QuestionItem.model_validate({**make_candidate(QUESTION_TEXTS[0]).model_dump(), "id": "q1", "created_at": FIXED_NOW, "time_sensitive": True})

  assert item.time_sensitive is True


def test_amount_upper_bound_is_left_to_settings() -> None:
  """The configured maximum is enforced when the task is created, not by the model."""
  assert GenerationCriteria(amount=120).amount == 120

  with pytest.raises(ValidationError):
    GenerationCriteria(amount=0)


def test_blank_preferences_mean_no_preference() -> None:
  criteria = GenerationCriteria(amount=2, provider=" Random ", age_group="  ")

  assert criteria.preferred_provider is None
  assert criteria.age_group is None
