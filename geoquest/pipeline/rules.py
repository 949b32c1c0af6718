"""Content rules applied to generated questions.

Rule configuration has a global rule set and optional per-target-audience rule
sets. Evaluation is a pure function of (candidate, criteria, config) and collects
every issue instead of stopping at the first one.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

from pydantic import Field, field_validator

from geoquest.pipeline.contracts import CamelModel, Candidate, GenerationCriteria, RuleEvaluation

ANSWER_LEAK_ISSUE = "The question reveals the answer in its text."
DEFINITION_HINT_ISSUE = "The question explains the term it asks about."
TOO_LONG_ISSUE = "The question text is too long for the age group."
DEFAULT_BLOCKLIST_ISSUE = "The question breaks a content rule."

_SV_DEFINITION_HINT = re.compile(r"\b(d\.?\s*v\.?\s*s\.?|dvs|det vill säga|vilket betyder|som betyder|det betyder)\b", re.IGNORECASE)
_EN_DEFINITION_HINT = re.compile(r"\b(i\.?\s*e\.?|that is|which means|meaning)\b", re.IGNORECASE)

FRESHNESS_GUIDANCE = "Mark questions as time-sensitive when they depend on trends, news, current children's shows or other time-bound events, and give a reasonable best-before date."


class BlocklistRule(CamelModel):
  pattern: str
  issue: str = DEFAULT_BLOCKLIST_ISSUE
  age_groups: list[str] = Field(default_factory=list)
  enabled: bool = True

  @field_validator("age_groups", mode="before")
  @classmethod
  def _lower_age_groups(cls, value: Any) -> list[str]:
    if not isinstance(value, list):
      return []
    return [str(item).strip().lower() for item in value if str(item).strip()]

  def applies_to(self, age_groups: set[str]) -> bool:
    if not self.enabled:
      return False
    return not self.age_groups or bool(age_groups.intersection(self.age_groups))


class AnswerInQuestionConfig(CamelModel):
  enabled: bool = True
  min_answer_length: int = 4


class AutoCorrectionConfig(CamelModel):
  enabled: bool = False


class FreshnessConfig(CamelModel):
  enabled: bool = True
  default_shelf_life_days: int = 365
  min_shelf_life_days: int = 30
  max_shelf_life_days: int = 1825
  auto_time_sensitive_age_groups: list[str] = Field(default_factory=lambda: ["youth"])
  guidance: str = FRESHNESS_GUIDANCE

  @field_validator("auto_time_sensitive_age_groups", mode="before")
  @classmethod
  def _lower_age_groups(cls, value: Any) -> list[str]:
    if not isinstance(value, list):
      return []
    return [str(item).strip().lower() for item in value if str(item).strip()]


class RuleSet(CamelModel):
  enabled: bool = True
  answer_in_question: AnswerInQuestionConfig | None = None
  auto_correction: AutoCorrectionConfig | None = None
  freshness: FreshnessConfig | None = None
  max_question_length_by_age_group: dict[str, int] = Field(default_factory=dict)
  blocklist: list[BlocklistRule] = Field(default_factory=list)

  @field_validator("max_question_length_by_age_group", mode="before")
  @classmethod
  def _lower_length_keys(cls, value: Any) -> dict[str, int]:
    if not isinstance(value, Mapping):
      return {}
    limits: dict[str, int] = {}
    for key, limit in value.items():
      try:
        limits[str(key).lower()] = int(limit)
      except (TypeError, ValueError):
        continue
    return limits

  @field_validator("blocklist", mode="before")
  @classmethod
  def _drop_empty_rules(cls, value: Any) -> list[Any]:
    if not isinstance(value, list):
      return []
    return [entry for entry in value if isinstance(entry, BlocklistRule) or (isinstance(entry, Mapping) and entry.get("pattern"))]


def _child_rule(pattern: str, issue: str) -> BlocklistRule:
  return BlocklistRule(pattern=pattern, issue=issue, age_groups=["children"])


DEFAULT_CHILD_BLOCKLIST = (
  _child_rule(r"\bkonstn(?:a|ä)r(?:er|en|et|erna|s)?\b", "Questions about artists are too advanced for children."),
  _child_rule(r"\bm(?:a|å)l(?:a|ä)(?:de|r|re|ri)?\b", "Questions about painting are too advanced for children."),
  _child_rule(r"\b(impressionism|ren(?:a|ä)ssans|barock|expressionism|surrealism|kubism|realism|modernism)\b", "Art history is too advanced for children."),
  _child_rule(r"\b(munch|picasso|da vinci|van gogh|monet|rembrandt|michelangelo|dali)\b", "Named painters are too advanced for children."),
  _child_rule(r"\b(politik|riksdag|statsminister|regering|parlament|valsystem)\b", "Politics is too advanced for children."),
  _child_rule(r"\b(v(?:a|ä)rldskrig|kalla kriget|krig)\b", "Questions about war are too advanced for children."),
  _child_rule(r"\b(inflation|r(?:a|ä)nta|budget|skatt|ekonomi)\b", "Economics is too advanced for children."),
  _child_rule(r"\b(molekyl|genetik|dna|kvant|relativitet|atom)\b", "Advanced science is too advanced for children."),
  _child_rule(r"\b(opera|symfoni|komposit(?:o|ö)r|dirigent)\b", "Advanced music history is too advanced for children."),
)


def default_global_rules() -> RuleSet:
  return RuleSet(
    answer_in_question=AnswerInQuestionConfig(),
    auto_correction=AutoCorrectionConfig(),
    freshness=FreshnessConfig(),
    max_question_length_by_age_group={"children": 180},
    blocklist=list(DEFAULT_CHILD_BLOCKLIST),
  )


class RuleConfig(CamelModel):
  """Global rules plus per-target-audience overrides, keyed by lowercase audience id."""

  global_rules: RuleSet = Field(default_factory=default_global_rules, alias="global")
  target_audiences: dict[str, RuleSet] = Field(default_factory=dict)

  @classmethod
  def from_raw(cls, raw: Mapping[str, Any] | None) -> RuleConfig:
    """Normalize a stored `{global, targetAudiences}` mapping over the defaults."""

    raw = raw or {}
    defaults = default_global_rules()
    raw_global = raw.get("global") or {}
    merged = RuleSet.model_validate(raw_global)

    # Global sections fall back to defaults piecewise.
    global_rules = RuleSet(
      enabled=merged.enabled,
      answer_in_question=AnswerInQuestionConfig.model_validate({**defaults.answer_in_question.dump(), **(raw_global.get("answerInQuestion") or {})}),
      auto_correction=merged.auto_correction or defaults.auto_correction,
      freshness=FreshnessConfig.model_validate({**defaults.freshness.dump(), **(raw_global.get("freshness") or {})}),
      max_question_length_by_age_group={**defaults.max_question_length_by_age_group, **merged.max_question_length_by_age_group},
      blocklist=merged.blocklist if isinstance(raw_global.get("blocklist"), list) else defaults.blocklist,
    )

    target_audiences: dict[str, RuleSet] = {}
    for key, value in (raw.get("targetAudiences") or {}).items():
      target_audiences[str(key).lower()] = RuleSet.model_validate(value or {})

    return cls(global_rules=global_rules, target_audiences=target_audiences)

  def for_audience(self, audience: str | None) -> RuleSet | None:
    if not audience:
      return None
    return self.target_audiences.get(audience.lower())

  def freshness_for(self, audience: str | None) -> FreshnessConfig:
    """Resolve freshness settings, letting a target audience override individual fields."""

    base = self.global_rules.freshness or FreshnessConfig()
    target = self.for_audience(audience)
    if target is None or target.freshness is None:
      return base
    overrides = target.freshness.model_dump(by_alias=True, exclude_unset=True)
    return FreshnessConfig.model_validate({**base.dump(), **overrides})

  def auto_correction_for(self, audience: str | None) -> AutoCorrectionConfig:
    target = self.for_audience(audience)
    if target is not None and target.auto_correction is not None:
      return target.auto_correction
    return self.global_rules.auto_correction or AutoCorrectionConfig()

  def answer_in_question_for(self, audience: str | None) -> AnswerInQuestionConfig:
    target = self.for_audience(audience)
    if target is not None and target.enabled and target.answer_in_question is not None:
      return target.answer_in_question
    return self.global_rules.answer_in_question or AnswerInQuestionConfig()


DEFAULT_RULE_CONFIG = RuleConfig()


def resolve_age_groups(candidate: Candidate, criteria: GenerationCriteria | None) -> list[str]:
  """Return the candidate's age groups followed by the requested one, lowercased and unique."""

  groups: list[str] = []
  for value in [*candidate.age_groups, criteria.age_group if criteria else None]:
    if value and value.lower() not in groups:
      groups.append(value.lower())
  return groups


def resolve_audience(candidate: Candidate, criteria: GenerationCriteria | None) -> str | None:
  audience = candidate.target_audience or (criteria.target_audience if criteria else None)
  return audience.lower() if audience else None


def text_blob(candidate: Candidate) -> str:
  """Concatenate every user-visible field in both languages, lowercased."""

  parts: list[str] = []
  for value in (candidate.text, candidate.text_en, candidate.explanation, candidate.explanation_en, candidate.background, candidate.background_en):
    if value:
      parts.append(value)
  for options in (candidate.options, candidate.options_en):
    parts.extend(option for option in options or [] if option)
  return " ".join(parts).lower()


@lru_cache(maxsize=512)
def _compile(pattern: str) -> re.Pattern[str] | None:
  try:
    return re.compile(pattern, re.IGNORECASE)
  except re.error:
    return None


def pattern_matches(pattern: str, text: str) -> bool:
  """Match a blocklist pattern, degrading to a literal substring check when it does not compile."""

  if not pattern or not text:
    return False
  compiled = _compile(pattern)
  if compiled is None:
    return pattern.lower() in text.lower()
  return compiled.search(text) is not None


def _answer_leaks(question: str | None, answer: str | None, min_length: int) -> bool:
  if not question or not answer:
    return False
  answer = answer.strip()
  if len(answer) < min_length:
    return False
  return answer.lower() in question.lower()


def _has_definition_hint(candidate: Candidate) -> bool:
  return bool(_SV_DEFINITION_HINT.search(candidate.text or "")) or bool(_EN_DEFINITION_HINT.search(candidate.text_en or ""))


def _answer_issues(candidate: Candidate, config: AnswerInQuestionConfig) -> list[str]:
  if not config.enabled:
    return []
  min_length = config.min_answer_length if config.min_answer_length > 0 else 4
  if _answer_leaks(candidate.text, candidate.correct_option(), min_length) or _answer_leaks(candidate.text_en, candidate.correct_option(english=True), min_length):
    return [ANSWER_LEAK_ISSUE]
  if _has_definition_hint(candidate):
    return [DEFINITION_HINT_ISSUE]
  return []


def _length_issues(candidate: Candidate, rule_set: RuleSet, age_group: str | None) -> list[str]:
  if not age_group:
    return []
  limit = rule_set.max_question_length_by_age_group.get(age_group)
  if limit is not None and len(candidate.text) > limit:
    return [TOO_LONG_ISSUE]
  return []


def _blocklist_issues(blob: str, rule_set: RuleSet, age_groups: set[str]) -> list[str]:
  return [rule.issue for rule in rule_set.blocklist if rule.applies_to(age_groups) and pattern_matches(rule.pattern, blob)]


def evaluate_rules(candidate: Candidate, criteria: GenerationCriteria | None, config: RuleConfig = DEFAULT_RULE_CONFIG) -> RuleEvaluation:
  """Evaluate every content rule and return the merged verdict."""

  age_groups = resolve_age_groups(candidate, criteria)
  primary_age_group = age_groups[0] if age_groups else None
  audience = resolve_audience(candidate, criteria)
  target = config.for_audience(audience)
  blob = text_blob(candidate)
  scoped = set(age_groups)

  issues: list[str] = []
  if config.global_rules.enabled:
    issues.extend(_answer_issues(candidate, config.answer_in_question_for(audience)))
    issues.extend(_length_issues(candidate, config.global_rules, primary_age_group))
    issues.extend(_blocklist_issues(blob, config.global_rules, scoped))
  elif target is not None and target.enabled and target.answer_in_question is not None:
    issues.extend(_answer_issues(candidate, target.answer_in_question))

  if target is not None and target.enabled:
    issues.extend(_length_issues(candidate, target, primary_age_group))
    issues.extend(_blocklist_issues(blob, target, scoped))

  merged = list(dict.fromkeys(issues))
  return RuleEvaluation(is_valid=not merged, issues=merged)


@dataclass(frozen=True)
class RuleFilterOutcome:
  accepted: list[Candidate]
  rejected: list[tuple[Candidate, list[str]]]


def filter_by_rules(candidates: Iterable[Candidate], criteria: GenerationCriteria | None, config: RuleConfig = DEFAULT_RULE_CONFIG) -> RuleFilterOutcome:
  accepted: list[Candidate] = []
  rejected: list[tuple[Candidate, list[str]]] = []
  for candidate in candidates:
    verdict = evaluate_rules(candidate, criteria, config)
    if verdict.is_valid:
      accepted.append(candidate)
    else:
      rejected.append((candidate, verdict.issues))
  return RuleFilterOutcome(accepted=accepted, rejected=rejected)


def build_freshness_guidance(freshness: FreshnessConfig, criteria: GenerationCriteria | None = None) -> str:
  """Render the time-sensitivity instructions for generation prompts."""

  if not freshness.enabled:
    return ""

  requested = {criteria.age_group.lower()} if criteria and criteria.age_group else set()
  auto_groups = [group for group in freshness.auto_time_sensitive_age_groups if not requested or group in requested]
  include_guidance = freshness.guidance.strip() and (not requested or auto_groups)

  day_hints = []
  if freshness.min_shelf_life_days > 0:
    day_hints.append(f"at least {freshness.min_shelf_life_days} days")
  if freshness.max_shelf_life_days > 0:
    day_hints.append(f"at most {freshness.max_shelf_life_days} days")
  if freshness.default_shelf_life_days > 0:
    day_hints.append(f"{freshness.default_shelf_life_days} days if unsure")

  lines = ["FRESHNESS / BEST BEFORE:"]
  if include_guidance:
    lines.append(f"- Guideline: {freshness.guidance.strip()}")
  if day_hints:
    lines.append(f"- Best-before range: {', '.join(day_hints)}.")
  if auto_groups:
    lines.append(f"- For age groups ({', '.join(auto_groups)}) prefer timeSensitive=true.")
  lines.append("- Set timeSensitive=true when the question is time-sensitive.")
  lines.append("- Set bestBeforeDate (YYYY-MM-DD) when timeSensitive=true, otherwise null.")
  return "\n".join(lines)


def build_answer_guidance(config: AnswerInQuestionConfig) -> str:
  if not config.enabled:
    return ""
  min_length = config.min_answer_length if config.min_answer_length > 0 else 4
  return "\n".join(
    [
      "ANSWER IN QUESTION:",
      "- The answer must not appear in the question text or in explanatory asides (i.e., that is, dvs, det vill säga, vilket betyder).",
      "- Do not define the term inside the question itself.",
      f"- Treat a match of at least {min_length} characters as the answer being visible in the question.",
    ]
  )
