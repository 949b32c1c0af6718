from __future__ import annotations

from geoquest.pipeline.contracts import GenerationCriteria
from geoquest.pipeline.rules import ANSWER_LEAK_ISSUE, DEFINITION_HINT_ISSUE, TOO_LONG_ISSUE, RuleConfig, build_answer_guidance, build_freshness_guidance, evaluate_rules, filter_by_rules, pattern_matches
from tests.fakes import make_candidate

CHILDREN = GenerationCriteria(amount=5, provider="alpha", age_group="children")


def test_children_blocklist_rejects_war_questions() -> None:
  config = RuleConfig.from_raw({"global": {"blocklist": [{"pattern": "krig", "issue": "No war for children.", "ageGroups": ["children"]}]}})
  candidate = make_candidate("Vilket år slutade andra världskriget i Europa?")

  verdict = evaluate_rules(candidate, CHILDREN, config)

  assert not verdict.is_valid
  assert verdict.issues == ["No war for children."]


def test_default_children_blocklist_matches_whole_word() -> None:
  candidate = make_candidate("Mot vilket land förlorade Sverige ett krig 1809?")

  assert not evaluate_rules(candidate, CHILDREN).is_valid
  assert evaluate_rules(candidate, GenerationCriteria(amount=5, age_group="adults")).is_valid


def test_answer_leak_with_short_minimum() -> None:
  config = RuleConfig.from_raw({"global": {"answerInQuestion": {"enabled": True, "minAnswerLength": 3}}})
  candidate = make_candidate("Vilken stad byggdes enligt sägnen av Romulus, Rom eller någon annan?", options=["Paris", "Rom", "Berlin", "Madrid"], correct_index=1)

  verdict = evaluate_rules(candidate, None, config)

  assert ANSWER_LEAK_ISSUE in verdict.issues


def test_answer_shorter_than_minimum_is_not_a_leak() -> None:
  candidate = make_candidate("Vilken stad byggdes enligt sägnen av Romulus?", options=["Paris", "Rom", "Berlin", "Madrid"], correct_index=1)

  assert evaluate_rules(candidate, None).is_valid


def test_definition_hint_is_flagged() -> None:
  candidate = make_candidate("Vad kallas en fjord, dvs en lång smal havsvik?")

  assert evaluate_rules(candidate, None).issues == [DEFINITION_HINT_ISSUE]


def test_length_limit_applies_to_requested_age_group() -> None:
  candidate = make_candidate("Vilken sjö " + "mycket " * 30 + "stor?")
  verdict = evaluate_rules(candidate, GenerationCriteria(amount=1, age_group="children"), RuleConfig.from_raw({"global": {"blocklist": []}}))

  assert verdict.issues == [TOO_LONG_ISSUE]


def test_target_audience_rules_add_to_global_rules() -> None:
  config = RuleConfig.from_raw({"targetAudiences": {"Swedes": {"blocklist": [{"pattern": "ikea", "issue": "No brands."}]}}})
  candidate = make_candidate("Vilket varuhus grundades i Älmhult, känt som IKEA?")

  assert evaluate_rules(candidate, GenerationCriteria(amount=1, target_audience="swedes"), config).issues == ["No brands."]
  assert evaluate_rules(candidate, GenerationCriteria(amount=1), config).is_valid


def test_disabled_global_rules_skip_defaults() -> None:
  config = RuleConfig.from_raw({"global": {"enabled": False}})
  candidate = make_candidate("Mot vilket land förlorade Sverige ett krig 1809?")

  assert evaluate_rules(candidate, CHILDREN, config).is_valid


def test_evaluation_is_pure() -> None:
  candidate = make_candidate("Vilket år slutade andra världskriget i Europa?", age_groups=["children"])
  before = candidate.model_dump()

  first = evaluate_rules(candidate, CHILDREN)
  second = evaluate_rules(candidate, CHILDREN)

  assert first == second
  assert candidate.model_dump() == before


def test_invalid_pattern_degrades_to_literal_match() -> None:
  assert pattern_matches("a[b", "text with a[b inside")
  assert not pattern_matches("a[b", "nothing here")


def test_filter_by_rules_splits_accepted_and_rejected() -> None:
  ok = make_candidate("Vilken är Sveriges största sjö till ytan?")
  bad = make_candidate("Mot vilket land förlorade Sverige ett krig 1809?")

  outcome = filter_by_rules([ok, bad], CHILDREN)

  assert outcome.accepted == [ok]
  assert outcome.rejected[0][0] is bad


def test_prompt_guidance_reflects_config() -> None:
  config = RuleConfig()
  assert "ANSWER IN QUESTION" in build_answer_guidance(config.answer_in_question_for(None))
  freshness = build_freshness_guidance(config.freshness_for(None), GenerationCriteria(amount=1, age_group="youth"))
  assert "youth" in freshness
  assert build_freshness_guidance(RuleConfig.from_raw({"global": {"freshness": {"enabled": False}}}).freshness_for(None)) == ""
