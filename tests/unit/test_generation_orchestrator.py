from __future__ import annotations

import pytest

from geoquest.pipeline.contracts import GenerationCriteria
from geoquest.pipeline.generation import GenerationOrchestrator, max_rounds_for
from geoquest.pipeline.rules import RuleConfig
from geoquest.storage.feedback_repo import FeedbackInsights
from geoquest.tasks.control import TaskControl
from tests.fakes import QUESTION_TEXTS, InMemoryQuestionsRepository, ScriptedProvider, StaticFeedbackSource, make_candidate, make_item, make_services, seed_task


def _batch(*indexes: int, **fields):
  return [make_candidate(QUESTION_TEXTS[index], **fields) for index in indexes]


async def _run(services, criteria: GenerationCriteria, control: TaskControl | None = None):
  await seed_task(services, "gen-1", "generation", {"criteria": criteria.dump()}, total=criteria.amount)
  outcome = await GenerationOrchestrator(services.context_for("gen-1")).run(criteria, control or TaskControl("gen-1"))
  return outcome, services.repositories.tasks.tasks["gen-1"]


def test_max_rounds_has_a_floor_of_three() -> None:
  assert max_rounds_for(1, 3) == 3
  assert max_rounds_for(10, 3) == 6
  assert max_rounds_for(50, 10) == 7


@pytest.mark.anyio
async def test_rounds_continue_until_target_is_reached() -> None:
  """Short batches are topped up by later rounds."""
  alpha = ScriptedProvider("alpha", batches=[_batch(0, 1, 2), _batch(3, 4)])
  services = make_services(alpha)

  outcome, record = await _run(services, GenerationCriteria(amount=5))

  assert outcome is not None
  assert outcome.stop_reason == "target_reached"
  assert outcome.rounds == 2
  assert alpha.generate_calls == [5, 2]
  assert len(outcome.saved) == 5
  assert services.repositories.questions.inserted == outcome.saved_ids
  assert record.status == "completed"
  assert record.result["saved"] == 5
  assert record.result["shortfall"] == 0
  assert record.progress.completed == 5
  assert all(item.provenance.provider == "alpha" for item in outcome.saved)


@pytest.mark.anyio
async def test_saved_items_carry_criteria_fields() -> None:
  alpha = ScriptedProvider("alpha", batches=[_batch(0)])
  services = make_services(alpha)

  outcome, _ = await _run(services, GenerationCriteria(amount=1, category="geografi", difficulty="hard", target_audience="swedes"))

  item = outcome.saved[0]
  assert item.category == "geografi"
  assert item.difficulty == "hard"
  assert item.target_audience == "swedes"
  assert not item.validated
  assert not item.time_sensitive


@pytest.mark.anyio
async def test_failed_primary_falls_back_within_the_round() -> None:
  alpha = ScriptedProvider("alpha", batches=[RuntimeError("quota exceeded")])
  beta = ScriptedProvider("beta", batches=[_batch(0, 1)])
  services = make_services(alpha, beta)

  outcome, record = await _run(services, GenerationCriteria(amount=2))

  assert outcome.provider_failures == 1
  assert outcome.rounds == 1
  assert outcome.providers_used == ["beta"]
  assert record.result["providerFailures"] == 1
  assert record.status == "completed"


@pytest.mark.anyio
async def test_round_where_every_provider_fails_is_counted() -> None:
  alpha = ScriptedProvider("alpha", batches=[RuntimeError("down")])
  beta = ScriptedProvider("beta", batches=[RuntimeError("down"), _batch(0)])
  services = make_services(alpha, beta)

  outcome, _ = await _run(services, GenerationCriteria(amount=1))

  assert outcome.exhausted_rounds == 1
  assert outcome.provider_failures == 2
  assert len(outcome.saved) == 1


@pytest.mark.anyio
async def test_preferred_provider_serves_every_round() -> None:
  alpha = ScriptedProvider("alpha", batches=[_batch(0)])
  beta = ScriptedProvider("beta", batches=[_batch(1), _batch(2)])
  services = make_services(alpha, beta)

  outcome, _ = await _run(services, GenerationCriteria(amount=2, provider="Beta"))

  assert alpha.generate_calls == []
  assert beta.generate_calls == [2, 1]
  assert outcome.providers_used == ["beta"]


@pytest.mark.anyio
async def test_batch_size_is_capped_by_provider_limit() -> None:
  alpha = ScriptedProvider("alpha", batches=[_batch(0, 1), _batch(2, 3), _batch(4)], max_items_per_request=2)
  services = make_services(alpha)

  outcome, _ = await _run(services, GenerationCriteria(amount=5))

  assert alpha.generate_calls == [2, 2, 1]
  assert len(outcome.saved) == 5


@pytest.mark.anyio
async def test_duplicates_of_corpus_stall_the_run_with_shortfall() -> None:
  """Two rounds without a single accepted question end the run early, not as an error."""
  questions = InMemoryQuestionsRepository([make_item(QUESTION_TEXTS[0], item_id="existing")])
  alpha = ScriptedProvider("alpha", batches=[_batch(0), _batch(0), _batch(1)])
  services = make_services(alpha, questions=questions)

  outcome, record = await _run(services, GenerationCriteria(amount=3))

  assert outcome.stop_reason == "stalled"
  assert outcome.rounds == 2
  assert outcome.duplicates_blocked == 2
  assert outcome.saved == []
  assert record.status == "completed"
  assert record.result["shortfall"] == 3
  assert questions.inserted == []
  assert (record.progress.completed, record.progress.total) == (0, 3)


@pytest.mark.anyio
async def test_round_budget_stops_a_slow_run() -> None:
  alpha = ScriptedProvider("alpha", batches=[_batch(index) for index in range(8)])
  services = make_services(alpha)

  outcome, record = await _run(services, GenerationCriteria(amount=10))

  assert outcome.stop_reason == "max_rounds"
  assert outcome.rounds == outcome.max_rounds == 6
  assert len(outcome.saved) == 6
  assert record.result["shortfall"] == 4
  assert (record.progress.completed, record.progress.total) == (6, 10)


@pytest.mark.anyio
async def test_rule_rejects_are_counted_and_not_saved() -> None:
  war = make_candidate("Vilket land förlorade Sverige ett krig mot 1809?")
  alpha = ScriptedProvider("alpha", batches=[[war, *_batch(0)], _batch(1)])
  services = make_services(alpha)

  outcome, record = await _run(services, GenerationCriteria(amount=2, age_group="children"))

  assert outcome.rule_filtered == 1
  assert war.text not in [item.text for item in outcome.saved]
  assert record.result["ruleFiltered"] == 1
  assert len(outcome.saved) == 2


@pytest.mark.anyio
async def test_persist_failure_is_counted_and_run_completes() -> None:
  questions = InMemoryQuestionsRepository()
  questions.fail_insert_texts.add(QUESTION_TEXTS[1])
  alpha = ScriptedProvider("alpha", batches=[_batch(0, 1)])
  services = make_services(alpha, questions=questions)

  outcome, record = await _run(services, GenerationCriteria(amount=2))

  assert outcome.persist_failed == 1
  assert [item.text for item in outcome.saved] == [QUESTION_TEXTS[0]]
  assert record.status == "completed"
  assert record.result["persistFailed"] == 1
  assert record.progress.completed == 1


@pytest.mark.anyio
async def test_expired_question_is_saved_quarantined() -> None:
  rules = RuleConfig.from_raw({"global": {"freshness": {"minShelfLifeDays": 0}}})
  alpha = ScriptedProvider("alpha", batches=[_batch(0, time_sensitive=True, best_before_date="2026-01-01")])
  services = make_services(alpha, rules=rules)

  outcome, record = await _run(services, GenerationCriteria(amount=1))

  item = outcome.saved[0]
  assert item.time_sensitive
  assert item.quarantined
  assert record.result["quarantined"] == [item.id]


@pytest.mark.anyio
async def test_no_providers_fails_the_task() -> None:
  services = make_services()

  outcome, record = await _run(services, GenerationCriteria(amount=2))

  assert outcome is None
  assert record.status == "failed"
  assert record.error == "No generation providers are configured"


@pytest.mark.anyio
async def test_unavailable_providers_are_dropped() -> None:
  alpha = ScriptedProvider("alpha", available=False, batches=[_batch(0)])
  beta = ScriptedProvider("beta", batches=[_batch(1)])
  services = make_services(alpha, beta)

  outcome, record = await _run(services, GenerationCriteria(amount=1))

  assert alpha.generate_calls == []
  assert outcome.providers_used == ["beta"]
  assert record.progress.details["availability"]["alpha"] == {"available": False, "message": "alpha is down"}


@pytest.mark.anyio
async def test_all_providers_unavailable_fails_the_task() -> None:
  services = make_services(ScriptedProvider("alpha", available=False))

  outcome, record = await _run(services, GenerationCriteria(amount=1))

  assert outcome is None
  assert record.error == "No generation provider is available"


@pytest.mark.anyio
async def test_validation_only_provider_is_not_used_for_generation() -> None:
  alpha = ScriptedProvider("alpha", batches=[_batch(0)])
  services = make_services(alpha, purposes={"alpha": ("validation",)})

  outcome, record = await _run(services, GenerationCriteria(amount=1))

  assert outcome is None
  assert record.error == "No generation providers are configured"


@pytest.mark.anyio
async def test_aborted_task_fails_with_the_abort_reason() -> None:
  alpha = ScriptedProvider("alpha", batches=[_batch(0)])
  services = make_services(alpha)
  control = TaskControl("gen-1")
  control.abort("Cancelled by user")

  outcome, record = await _run(services, GenerationCriteria(amount=1), control)

  assert outcome is None
  assert record.status == "failed"
  assert record.error == "Cancelled by user"
  assert alpha.generate_calls == []


@pytest.mark.anyio
async def test_feedback_lessons_reach_the_generation_prompt() -> None:
  insights = FeedbackInsights(total=12, avg_rating=2.5, top_issues=[("Answer given away", 5), ("Too hard", 2)])
  alpha = ScriptedProvider("alpha", batches=[_batch(0)])
  services = make_services(alpha, feedback=StaticFeedbackSource(insights=insights))

  await _run(services, GenerationCriteria(amount=1))

  guidance = alpha.guidance_seen[0]
  assert "ANSWER IN QUESTION" in guidance
  assert "Answer given away (5), Too hard (2)" in guidance
  assert "2.5/5" in guidance


@pytest.mark.anyio
async def test_unreadable_feedback_does_not_block_generation() -> None:
  alpha = ScriptedProvider("alpha", batches=[_batch(0)])
  services = make_services(alpha, feedback=StaticFeedbackSource(error=RuntimeError("db down")))

  outcome, record = await _run(services, GenerationCriteria(amount=1))

  assert record.status == "completed"
  assert len(outcome.saved) == 1
  assert "LESSONS FROM FEEDBACK" not in alpha.guidance_seen[0]
