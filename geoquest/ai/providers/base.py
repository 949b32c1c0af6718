"""Provider interface for question generation and review."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

from pydantic import ValidationError

from geoquest.ai import prompts
from geoquest.pipeline.contracts import AmbiguityResult, AvailabilityResult, Candidate, GenerationCriteria, ProposedEdits, Provenance, ProviderVerdict, QuestionItem

logger = logging.getLogger(__name__)


class QuestionProvider(ABC):
  """One AI backend that can write and review quiz questions.

  `generate` and `validate` are required. The optional capabilities are declared
  by the `supports_*` flags; callers check the flag before calling the method.
  """

  supports_edits: bool = False
  supports_ambiguity_check: bool = False
  supports_availability_check: bool = False

  def __init__(self, *, name: str, model_name: str, max_items_per_request: int) -> None:
    self.name = name
    self.model_name = model_name
    self.max_items_per_request = max(max_items_per_request, 1)

  @abstractmethod
  async def generate(self, amount: int, criteria: GenerationCriteria, guidance: str = "") -> list[Candidate]:
    """Return up to `amount` candidates."""

  @abstractmethod
  async def validate(self, item: QuestionItem, criteria: GenerationCriteria | None) -> ProviderVerdict:
    """Review one persisted question."""

  async def propose_edits(self, item: QuestionItem, criteria: GenerationCriteria | None, issues: list[str]) -> ProposedEdits | None:
    raise NotImplementedError(f"{self.name} does not propose edits")

  async def check_ambiguity(self, item: QuestionItem, criteria: GenerationCriteria | None) -> AmbiguityResult:
    raise NotImplementedError(f"{self.name} does not check ambiguity")

  async def check_availability(self) -> AvailabilityResult:
    raise NotImplementedError(f"{self.name} does not report availability")

  def __repr__(self) -> str:
    return f"{type(self).__name__}(name={self.name!r}, model={self.model_name!r})"


def _strings(value: Any) -> list[str]:
  if not isinstance(value, list):
    return []
  return [str(entry) for entry in value if entry is not None and str(entry).strip()]


def _optional_text(value: Any) -> str | None:
  if value is None:
    return None
  text = str(value).strip()
  return text or None


def _index(value: Any) -> int | None:
  try:
    return int(value)
  except (TypeError, ValueError):
    return None


class LLMQuestionProvider(QuestionProvider):
  """Implements every capability on top of a single JSON completion call."""

  supports_edits = True
  supports_ambiguity_check = True
  supports_availability_check = True

  @abstractmethod
  async def complete_json(self, prompt: str, schema: dict[str, Any]) -> Any:
    """Send one prompt and return the parsed JSON response."""

  @abstractmethod
  async def ping(self) -> None:
    """Raise when the backend cannot be reached."""

  def _to_candidate(self, raw: Any, criteria: GenerationCriteria) -> Candidate | None:
    if not isinstance(raw, dict):
      return None
    correct_index = _index(raw.get("correctOption", raw.get("correct_option")))
    text = _optional_text(raw.get("question_sv") or raw.get("question"))
    if text is None or correct_index is None:
      return None
    try:
      candidate = Candidate(
        text=text,
        text_en=_optional_text(raw.get("question_en")),
        options=_strings(raw.get("options_sv") or raw.get("options")),
        options_en=_strings(raw.get("options_en")) or None,
        correct_index=correct_index,
        explanation=_optional_text(raw.get("explanation_sv") or raw.get("explanation")),
        explanation_en=_optional_text(raw.get("explanation_en")),
        background=_optional_text(raw.get("background_sv") or raw.get("background")),
        background_en=_optional_text(raw.get("background_en")),
        emoji=_optional_text(raw.get("emoji")),
        age_groups=_strings(raw.get("ageGroups")) or ([criteria.age_group] if criteria.age_group else []),
        target_audience=criteria.target_audience,
        time_sensitive=raw.get("timeSensitive") if isinstance(raw.get("timeSensitive"), bool) else None,
        best_before_date=_optional_text(raw.get("bestBeforeDate")),
        provenance=Provenance(provider=self.name, model=self.model_name),
      )
    except ValidationError:
      return None
    issues = candidate.shape_issues()
    if issues:
      logger.info("%s returned a malformed question (%s): %s", self.name, "; ".join(issues), text)
      return None
    return candidate

  async def generate(self, amount: int, criteria: GenerationCriteria, guidance: str = "") -> list[Candidate]:
    payload = await self.complete_json(prompts.build_generation_prompt(amount, criteria, guidance), prompts.GENERATION_SCHEMA)
    raw_items = payload.get("questions") if isinstance(payload, dict) else payload
    if not isinstance(raw_items, list):
      raise ValueError(f"{self.name} returned no question list")
    candidates = [candidate for candidate in (self._to_candidate(raw, criteria) for raw in raw_items) if candidate is not None]
    return candidates[:amount]

  async def validate(self, item: QuestionItem, criteria: GenerationCriteria | None) -> ProviderVerdict:
    payload = await self.complete_json(prompts.build_validation_prompt(item, criteria), prompts.VALIDATION_SCHEMA)
    if not isinstance(payload, dict) or not isinstance(payload.get("isValid"), bool):
      raise ValueError(f"{self.name} returned an unreadable validation verdict")
    return ProviderVerdict(
      is_valid=payload["isValid"],
      issues=_strings(payload.get("issues")),
      suggestions=_strings(payload.get("suggestions")),
      time_sensitive=payload.get("timeSensitive") if isinstance(payload.get("timeSensitive"), bool) else None,
      best_before_date=_optional_text(payload.get("bestBeforeDate")),
    )

  async def propose_edits(self, item: QuestionItem, criteria: GenerationCriteria | None, issues: list[str]) -> ProposedEdits | None:
    payload = await self.complete_json(prompts.build_edit_prompt(item, criteria, issues), prompts.EDITS_SCHEMA)
    raw = payload.get("proposedEdits") if isinstance(payload, dict) else None
    if not isinstance(raw, dict):
      return None
    try:
      edits = ProposedEdits(
        text=_optional_text(raw.get("question_sv")),
        text_en=_optional_text(raw.get("question_en")),
        options=_strings(raw.get("options_sv")) or None,
        options_en=_strings(raw.get("options_en")) or None,
        correct_index=_index(raw.get("correctOption")),
        explanation=_optional_text(raw.get("explanation_sv")),
        explanation_en=_optional_text(raw.get("explanation_en")),
        background=_optional_text(raw.get("background_sv")),
        background_en=_optional_text(raw.get("background_en")),
      )
    except ValidationError as exc:
      logger.info("%s proposed unusable edits for %s: %s", self.name, item.id, exc)
      return None
    return None if edits.is_empty() else edits

  async def check_ambiguity(self, item: QuestionItem, criteria: GenerationCriteria | None) -> AmbiguityResult:
    payload = await self.complete_json(prompts.build_ambiguity_prompt(item, criteria), prompts.AMBIGUITY_SCHEMA)
    if not isinstance(payload, dict):
      raise ValueError(f"{self.name} returned an unreadable ambiguity verdict")
    return AmbiguityResult(ambiguous=bool(payload.get("ambiguous")), alternative_correct_options=_strings(payload.get("alternativeCorrectOptions")), reason=_optional_text(payload.get("reason")))

  async def check_availability(self) -> AvailabilityResult:
    try:
      await self.ping()
    except Exception as exc:  # noqa: BLE001
      return AvailabilityResult(available=False, message=f"{type(exc).__name__}: {exc}")
    return AvailabilityResult(available=True, message=None)
