"""Prompt templates and response schemas for question providers."""

from __future__ import annotations

import json
from typing import Any

from geoquest.pipeline.contracts import GenerationCriteria, QuestionItem
from geoquest.storage.feedback_repo import FeedbackInsights

QUESTION_ITEM_SCHEMA: dict[str, Any] = {
  "type": "object",
  "properties": {
    "question_sv": {"type": "string"},
    "question_en": {"type": "string"},
    "options_sv": {"type": "array", "items": {"type": "string"}, "minItems": 4, "maxItems": 4},
    "options_en": {"type": "array", "items": {"type": "string"}, "minItems": 4, "maxItems": 4},
    "correctOption": {"type": "integer", "minimum": 0, "maximum": 3},
    "explanation_sv": {"type": "string"},
    "explanation_en": {"type": "string"},
    "background_sv": {"type": "string"},
    "background_en": {"type": "string"},
    "emoji": {"type": "string"},
    "ageGroups": {"type": "array", "items": {"type": "string"}},
    "timeSensitive": {"type": "boolean"},
    "bestBeforeDate": {"type": "string"},
  },
  "required": ["question_sv", "question_en", "options_sv", "options_en", "correctOption", "explanation_sv"],
}

GENERATION_SCHEMA: dict[str, Any] = {"type": "object", "properties": {"questions": {"type": "array", "items": QUESTION_ITEM_SCHEMA}}, "required": ["questions"]}

VALIDATION_SCHEMA: dict[str, Any] = {
  "type": "object",
  "properties": {
    "isValid": {"type": "boolean"},
    "issues": {"type": "array", "items": {"type": "string"}},
    "suggestions": {"type": "array", "items": {"type": "string"}},
    "timeSensitive": {"type": "boolean"},
    "bestBeforeDate": {"type": "string"},
  },
  "required": ["isValid", "issues"],
}

EDITS_SCHEMA: dict[str, Any] = {
  "type": "object",
  "properties": {
    "proposedEdits": {
      "type": "object",
      "properties": {key: QUESTION_ITEM_SCHEMA["properties"][key] for key in ("question_sv", "question_en", "options_sv", "options_en", "correctOption", "explanation_sv", "explanation_en", "background_sv", "background_en")},
    }
  },
  "required": ["proposedEdits"],
}

AMBIGUITY_SCHEMA: dict[str, Any] = {
  "type": "object",
  "properties": {"ambiguous": {"type": "boolean"}, "alternativeCorrectOptions": {"type": "array", "items": {"type": "string"}}, "reason": {"type": "string"}},
  "required": ["ambiguous"],
}


def _criteria_lines(criteria: GenerationCriteria) -> list[str]:
  lines = [f"- Difficulty: {criteria.difficulty}"]
  if criteria.category:
    lines.append(f"- Category: {criteria.category}")
  if criteria.age_group:
    lines.append(f"- Age group: {criteria.age_group}")
  if criteria.target_audience:
    lines.append(f"- Target audience: {criteria.target_audience}")
  return lines


def item_payload(item: QuestionItem) -> dict[str, Any]:
  """Render a stored question in the same shape providers generate."""

  return {
    "question_sv": item.text,
    "question_en": item.text_en,
    "options_sv": item.options,
    "options_en": item.options_en,
    "correctOption": item.correct_index,
    "explanation_sv": item.explanation,
    "explanation_en": item.explanation_en,
    "background_sv": item.background,
    "background_en": item.background_en,
    "ageGroups": item.age_groups,
  }


def build_generation_prompt(amount: int, criteria: GenerationCriteria, guidance: str = "") -> str:
  parts = [
    f"Create {amount} multiple-choice quiz questions for a Swedish geography and general knowledge game.",
    "Write every question in Swedish (question_sv) with an English translation (question_en).",
    "Each question has exactly four options in both languages and one correct option (correctOption, 0-3).",
    "Add a short explanation and optional background in both languages, and a fitting emoji.",
    "Questions must be factually correct, unambiguous and distinct from each other.",
    "",
    "CRITERIA:",
    *_criteria_lines(criteria),
  ]
  if guidance:
    parts.extend(["", guidance])
  parts.extend(["", 'Respond with JSON only: {"questions": [...]}', f"Schema: {json.dumps(GENERATION_SCHEMA)}"])
  return "\n".join(parts)


def build_validation_prompt(item: QuestionItem, criteria: GenerationCriteria | None) -> str:
  parts = [
    "You review quiz questions for a Swedish geography game.",
    "Check that the marked option is correct, that no other option is also correct, that both languages agree,",
    "that the question does not give away its answer, and that it suits the audience.",
  ]
  if criteria is not None:
    parts.extend(["", "CRITERIA:", *_criteria_lines(criteria)])
  parts.extend(
    [
      "",
      "QUESTION:",
      json.dumps(item_payload(item), ensure_ascii=False),
      "",
      "Report timeSensitive and bestBeforeDate (YYYY-MM-DD) when the answer may change over time.",
      f"Respond with JSON only matching: {json.dumps(VALIDATION_SCHEMA)}",
    ]
  )
  return "\n".join(parts)


def build_edit_prompt(item: QuestionItem, criteria: GenerationCriteria | None, issues: list[str]) -> str:
  parts = ["A quiz question failed review. Propose the smallest edits that fix every issue.", "", "ISSUES:", *(f"- {issue}" for issue in issues)]
  if criteria is not None:
    parts.extend(["", "CRITERIA:", *_criteria_lines(criteria)])
  parts.extend(
    [
      "",
      "QUESTION:",
      json.dumps(item_payload(item), ensure_ascii=False),
      "",
      "Only include fields you change. Options must stay four entries long.",
      f"Respond with JSON only matching: {json.dumps(EDITS_SCHEMA)}",
    ]
  )
  return "\n".join(parts)


def build_ambiguity_prompt(item: QuestionItem, criteria: GenerationCriteria | None) -> str:
  _ = criteria
  return "\n".join(
    [
      "Decide whether more than one option of this quiz question could reasonably be considered correct.",
      "",
      "QUESTION:",
      json.dumps(item_payload(item), ensure_ascii=False),
      "",
      f"Respond with JSON only matching: {json.dumps(AMBIGUITY_SCHEMA)}",
    ]
  )


MIN_FEEDBACK_FOR_GUIDANCE = 3


def build_feedback_guidance(insights: FeedbackInsights) -> str:
  """Summarize recurring user complaints so new questions avoid them."""

  if insights.total < MIN_FEEDBACK_FOR_GUIDANCE or not insights.top_issues:
    return ""
  issues = ", ".join(f"{issue} ({count})" for issue, count in insights.top_issues)
  lines = ["LESSONS FROM FEEDBACK:", f"- Common problems: {issues}."]
  if insights.avg_rating is not None:
    lines.append(f"- Average rating: {insights.avg_rating:.1f}/5 ({insights.total} ratings).")
  lines.append("- Avoid these problems in new questions.")
  return "\n".join(lines)
