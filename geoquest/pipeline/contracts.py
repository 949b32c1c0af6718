"""Shared data contracts for the question pipeline."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

OPTION_COUNT = 4
MIN_TEXT_LENGTH = 10
NO_PREFERENCE = {"", "random", "any"}


class CamelModel(BaseModel):
  """Base model that reads and writes camelCase JSON."""

  model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

  def dump(self) -> dict[str, Any]:
    return self.model_dump(mode="json", by_alias=True)


class GenerationCriteria(CamelModel):
  """Immutable input for one generation task."""

  model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True, extra="forbid")

  amount: int = Field(ge=1)
  category: str | None = None
  age_group: str | None = None
  difficulty: str = "medium"
  target_audience: str | None = None
  provider: str | None = None

  @field_validator("age_group", "target_audience", "category", "provider", mode="before")
  @classmethod
  def _strip_blank(cls, value: Any) -> Any:
    if isinstance(value, str):
      value = value.strip()
      return value or None
    return value

  @property
  def preferred_provider(self) -> str | None:
    if self.provider is None or self.provider.lower() in NO_PREFERENCE:
      return None
    return self.provider.lower()

  @property
  def audience_key(self) -> str | None:
    return self.target_audience.lower() if self.target_audience else None


class Provenance(CamelModel):
  provider: str
  model: str | None = None


class Candidate(CamelModel):
  """A generated question that has not been persisted."""

  text: str
  text_en: str | None = None
  options: list[str]
  options_en: list[str] | None = None
  correct_index: int
  explanation: str | None = None
  explanation_en: str | None = None
  background: str | None = None
  background_en: str | None = None
  emoji: str | None = None
  age_groups: list[str] = Field(default_factory=list)
  target_audience: str | None = None
  time_sensitive: bool | None = None
  best_before_date: str | None = None
  provenance: Provenance | None = None

  def correct_option(self, *, english: bool = False) -> str | None:
    options = self.options_en if english else self.options
    if not options or not 0 <= self.correct_index < len(options):
      return None
    return options[self.correct_index]

  def shape_issues(self) -> list[str]:
    """Return structural problems that make the question unusable."""

    issues: list[str] = []
    if len(self.text.strip()) < MIN_TEXT_LENGTH:
      issues.append(f"Question text must be at least {MIN_TEXT_LENGTH} characters.")
    if len(self.options) != OPTION_COUNT:
      issues.append(f"Question must have exactly {OPTION_COUNT} options.")
    if any(not option.strip() for option in self.options):
      issues.append("Options must not be empty.")
    if not 0 <= self.correct_index < len(self.options):
      issues.append("Correct option index is out of range.")
    if self.options_en is not None and len(self.options_en) != len(self.options):
      issues.append("English options must match the Swedish options.")
    return issues


class FreshnessResult(CamelModel):
  time_sensitive: bool = False
  best_before_at: datetime | None = None
  best_before_date: str | None = None


class ProposedEdits(CamelModel):
  """Partial content replacement suggested by a provider."""

  text: str | None = None
  text_en: str | None = None
  options: list[str] | None = None
  options_en: list[str] | None = None
  correct_index: int | None = None
  explanation: str | None = None
  explanation_en: str | None = None
  background: str | None = None
  background_en: str | None = None

  @model_validator(mode="after")
  def _check_options(self) -> ProposedEdits:
    for options in (self.options, self.options_en):
      if options is not None and len(options) != OPTION_COUNT:
        raise ValueError(f"Edited options must contain exactly {OPTION_COUNT} entries.")
    if self.correct_index is not None and not 0 <= self.correct_index < OPTION_COUNT:
      raise ValueError("Edited correct index is out of range.")
    return self

  def changes(self) -> dict[str, Any]:
    return self.model_dump(exclude_none=True)

  def is_empty(self) -> bool:
    return not self.changes()


class ProviderVerdict(CamelModel):
  """What a provider says about one persisted question."""

  is_valid: bool
  issues: list[str] = Field(default_factory=list)
  suggestions: list[str] = Field(default_factory=list)
  time_sensitive: bool | None = None
  best_before_date: str | None = None


class AmbiguityResult(CamelModel):
  ambiguous: bool = False
  alternative_correct_options: list[str] = Field(default_factory=list)
  reason: str | None = None


class AvailabilityResult(CamelModel):
  available: bool
  message: str | None = None


class ValidationResult(CamelModel):
  """Final verdict attached to a persisted question."""

  is_valid: bool
  issues: list[str] = Field(default_factory=list)
  suggestions: list[str] = Field(default_factory=list)
  proposed_edits: ProposedEdits | None = None
  alternative_correct_options: list[str] = Field(default_factory=list)
  freshness: FreshnessResult | None = None
  quarantined: bool = False
  validation_context: dict[str, Any] = Field(default_factory=dict)


class QuestionItem(Candidate):
  """A persisted question with identity and lifecycle fields."""

  id: str
  category: str | None = None
  difficulty: str | None = None
  validated: bool = False
  quarantined: bool = False
  time_sensitive: bool = False
  best_before_at: datetime | None = None
  created_at: datetime
  validation: ValidationResult | None = None

  @field_validator("time_sensitive", mode="before")
  @classmethod
  def _unknown_is_not_time_sensitive(cls, value: Any) -> Any:
    # Rows and candidates without a verdict carry null.
    return False if value is None else value

  def with_edits(self, edits: ProposedEdits) -> QuestionItem:
    return self.model_copy(update=edits.changes())


class RuleEvaluation(CamelModel):
  is_valid: bool
  issues: list[str] = Field(default_factory=list)
