"""Round-based generation of new questions.

A run moves through preparing -> generating(round) -> saving -> completed, or
ends as failed. Rounds are bounded and a run that accepts nothing for two
consecutive rounds stops early and reports the shortfall instead of erroring.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any

from geoquest.ai.prompts import build_feedback_guidance
from geoquest.ai.providers.base import QuestionProvider
from geoquest.pipeline.context import PipelineContext
from geoquest.pipeline.contracts import Candidate, GenerationCriteria, QuestionItem
from geoquest.pipeline.cycler import ProviderCycler
from geoquest.pipeline.dedup import CorpusSnapshot, filter_duplicates
from geoquest.pipeline.errors import PersistenceError, ProviderError, WatchdogAbort, call_provider
from geoquest.pipeline.freshness import is_expired, resolve_freshness
from geoquest.pipeline.rules import RuleConfig, build_answer_guidance, build_freshness_guidance, filter_by_rules
from geoquest.storage.feedback_repo import FeedbackInsights
from geoquest.tasks.control import TaskControl
from geoquest.tasks.progress import TaskProgressTracker
from geoquest.tasks.watchdog import WatchdogDiagnostics, WatchdogLimits, attach_watchdog
from geoquest.utils.ids import generate_question_id

logger = logging.getLogger(__name__)

STALL_LIMIT = 2


def max_rounds_for(amount: int, default_batch_size: int) -> int:
  return max(3, math.ceil(amount / default_batch_size) + 2)


@dataclass
class GenerationOutcome:
  """Counters and saved items for one generation run."""

  requested: int
  max_rounds: int
  rounds: int = 0
  generated: int = 0
  duplicates_blocked: int = 0
  rule_filtered: int = 0
  provider_failures: int = 0
  exhausted_rounds: int = 0
  persist_failed: int = 0
  stop_reason: str | None = None
  providers_used: list[str] = field(default_factory=list)
  saved: list[QuestionItem] = field(default_factory=list)

  @property
  def saved_ids(self) -> list[str]:
    return [item.id for item in self.saved]

  @property
  def shortfall(self) -> int:
    return max(self.requested - len(self.saved), 0)

  def to_result(self) -> dict[str, Any]:
    return {
      "requested": self.requested,
      "saved": len(self.saved),
      "shortfall": self.shortfall,
      "generated": self.generated,
      "duplicatesBlocked": self.duplicates_blocked,
      "ruleFiltered": self.rule_filtered,
      "providerFailures": self.provider_failures,
      "exhaustedRounds": self.exhausted_rounds,
      "persistFailed": self.persist_failed,
      "rounds": self.rounds,
      "maxRounds": self.max_rounds,
      "stopReason": self.stop_reason,
      "providersUsed": list(self.providers_used),
      "itemIds": self.saved_ids,
      "quarantined": [item.id for item in self.saved if item.quarantined],
    }


class GenerationOrchestrator:
  """Drives one generation task from preparing to a terminal status."""

  def __init__(self, context: PipelineContext) -> None:
    self._ctx = context
    self._settings = context.settings
    self._repos = context.repositories
    self._diagnostics = WatchdogDiagnostics()

  async def run(self, criteria: GenerationCriteria, control: TaskControl) -> GenerationOutcome | None:
    """Run the task; returns the outcome when it completed, None when it failed."""

    tracker = TaskProgressTracker(task_id=self._ctx.task_id, tasks_repo=self._repos.tasks, control=control, total=criteria.amount, clock=self._ctx.monotonic)
    limits = WatchdogLimits.for_amount(criteria.amount, self._settings.watchdog)
    watchdog = attach_watchdog(tracker=tracker, control=control, limits=limits, diagnostics=self._diagnostics)
    try:
      outcome = await self._run(criteria, control, tracker)
      if outcome is None:
        return None
      message = f"Saved {len(outcome.saved)} of {outcome.requested} questions"
      record = await tracker.complete(outcome.to_result(), completed=len(outcome.saved), message=message)
      if record is None or record.status != "completed":
        return None
      logger.info("Generation task %s completed: %s (stop=%s)", self._ctx.task_id, message, outcome.stop_reason)
      return outcome
    except WatchdogAbort as exc:
      logger.warning("Generation task %s aborted: %s", self._ctx.task_id, exc.reason)
      await tracker.fail(exc.reason)
      return None
    except Exception as exc:  # noqa: BLE001
      logger.error("Generation task %s failed", self._ctx.task_id, exc_info=True)
      await tracker.fail(f"Generation failed: {type(exc).__name__}: {exc}")
      return None
    finally:
      await watchdog.stop()

  async def _run(self, criteria: GenerationCriteria, control: TaskControl, tracker: TaskProgressTracker) -> GenerationOutcome | None:
    amount = criteria.amount
    max_rounds = max_rounds_for(amount, self._settings.default_batch_size)
    outcome = GenerationOutcome(requested=amount, max_rounds=max_rounds)

    await tracker.update(phase="preparing", completed=0, total=amount, message="Loading rules and existing questions")
    # Rules and corpus are read once per run.
    rule_config = await self._repos.rules.load_rule_config()
    snapshot = CorpusSnapshot.from_entries(await self._repos.questions.list_existing_texts())
    cycler = ProviderCycler.for_generation(self._ctx.providers, criteria.preferred_provider)
    if not cycler:
      await tracker.fail("No generation providers are configured")
      return None

    await self._drop_unavailable(cycler, tracker)
    if not cycler:
      await tracker.fail("No generation provider is available")
      return None

    guidance = self._guidance(rule_config, criteria, await self._feedback_insights())
    await tracker.update(message=f"Corpus has {len(snapshot)} questions; providers: {', '.join(cycler.names)}", details={"corpusSize": len(snapshot), "providers": cycler.names, "maxRounds": max_rounds})

    accepted: list[Candidate] = []
    zero_rounds = 0
    while True:
      if len(accepted) >= amount:
        outcome.stop_reason = "target_reached"
        break
      if outcome.rounds >= max_rounds:
        outcome.stop_reason = "max_rounds"
        break
      if zero_rounds >= STALL_LIMIT:
        outcome.stop_reason = "stalled"
        break
      control.raise_if_aborted()

      outcome.rounds += 1
      newly_accepted, snapshot = await self._run_round(outcome, cycler, criteria, rule_config, guidance, snapshot, accepted, tracker)
      zero_rounds = zero_rounds + 1 if newly_accepted == 0 else 0

    await self._save(outcome, accepted[:amount], criteria, rule_config, control, tracker)
    return outcome

  async def _drop_unavailable(self, cycler: ProviderCycler, tracker: TaskProgressTracker) -> None:
    await tracker.update(phase="preparing", message="Checking provider availability")
    availability: dict[str, Any] = {}
    for provider in list(self._providers_of(cycler)):
      if not provider.supports_availability_check:
        continue
      try:
        status = await call_provider(provider.name, "check_availability", provider.check_availability, timeout_seconds=self._settings.provider_call_timeout_seconds)
        available, message = status.available, status.message
      except ProviderError as exc:
        available, message = False, exc.message
      availability[provider.name] = {"available": available, "message": message}
      if not available:
        logger.warning("Provider %s unavailable for task %s: %s", provider.name, self._ctx.task_id, message)
        cycler.drop(provider.name)
    await tracker.update(details={"availability": availability})

  def _providers_of(self, cycler: ProviderCycler) -> list[QuestionProvider]:
    return [provider for name in cycler.names if (provider := self._ctx.providers.get(name)) is not None]

  async def _feedback_insights(self) -> FeedbackInsights:
    try:
      return await self._repos.feedback.insights(self._settings.feedback_window_days)
    except Exception:  # noqa: BLE001
      logger.warning("Task %s: feedback insights unavailable; generating without them", self._ctx.task_id, exc_info=True)
      return FeedbackInsights()

  def _guidance(self, rule_config: RuleConfig, criteria: GenerationCriteria, insights: FeedbackInsights) -> str:
    sections = [
      build_answer_guidance(rule_config.answer_in_question_for(criteria.audience_key)),
      build_freshness_guidance(rule_config.freshness_for(criteria.audience_key), criteria),
      build_feedback_guidance(insights),
    ]
    return "\n\n".join(section for section in sections if section)

  async def _run_round(
    self,
    outcome: GenerationOutcome,
    cycler: ProviderCycler,
    criteria: GenerationCriteria,
    rule_config: RuleConfig,
    guidance: str,
    snapshot: CorpusSnapshot,
    accepted: list[Candidate],
    tracker: TaskProgressTracker,
  ) -> tuple[int, CorpusSnapshot]:
    """Run one round; returns the number of newly accepted candidates and the updated snapshot."""

    round_no = outcome.rounds
    remaining = criteria.amount - len(accepted)
    primary = cycler.next_primary()
    if primary is None:
      outcome.exhausted_rounds += 1
      return 0, snapshot

    for provider in [primary, *cycler.fallbacks(primary)]:
      batch_size = min(remaining, provider.max_items_per_request)
      self._diagnostics.last_provider = provider.name
      self._diagnostics.last_batch_size = batch_size
      self._diagnostics.round = round_no
      await tracker.update(phase="generating", message=f"Round {round_no}/{outcome.max_rounds}: requesting {batch_size} from {provider.name}", details={"round": round_no, "provider": provider.name, "batchSize": batch_size})

      try:
        candidates = await call_provider(provider.name, "generate", lambda p=provider, n=batch_size: p.generate(n, criteria, guidance), timeout_seconds=self._settings.provider_call_timeout_seconds)
      except ProviderError as exc:
        outcome.provider_failures += 1
        logger.warning("Task %s round %d: %s", self._ctx.task_id, round_no, exc)
        continue

      if provider.name not in outcome.providers_used:
        outcome.providers_used.append(provider.name)
      outcome.generated += len(candidates)

      dedup = filter_duplicates(candidates, snapshot, self._settings.similarity_threshold)
      outcome.duplicates_blocked += dedup.duplicate_count
      ruled = filter_by_rules(dedup.unique, criteria, rule_config)
      outcome.rule_filtered += len(ruled.rejected)
      for candidate, issues in ruled.rejected:
        logger.debug("Rule rejected (%s): %s", "; ".join(issues), candidate.text)

      accepted.extend(ruled.accepted)
      await tracker.update(
        completed=min(len(accepted), criteria.amount),
        message=f"Round {round_no}: {len(ruled.accepted)} accepted from {provider.name} ({dedup.duplicate_count} duplicates, {len(ruled.rejected)} rule rejects)",
        details={"accepted": len(accepted), "duplicatesBlocked": outcome.duplicates_blocked, "ruleFiltered": outcome.rule_filtered, "generated": outcome.generated},
      )
      return len(ruled.accepted), dedup.snapshot

    outcome.exhausted_rounds += 1
    logger.warning("Task %s round %d: every provider failed", self._ctx.task_id, round_no)
    await tracker.update(message=f"Round {round_no}: every provider failed", details={"exhaustedRounds": outcome.exhausted_rounds})
    return 0, snapshot

  async def _save(self, outcome: GenerationOutcome, candidates: list[Candidate], criteria: GenerationCriteria, rule_config: RuleConfig, control: TaskControl, tracker: TaskProgressTracker) -> None:
    await tracker.update(phase="saving", message=f"Saving {len(candidates)} questions", details={"stopReason": outcome.stop_reason})
    freshness_config = rule_config.freshness_for(criteria.audience_key)
    extra_age_groups = [criteria.age_group] if criteria.age_group else []

    for candidate in candidates:
      control.raise_if_aborted()
      now = self._ctx.now()
      freshness = resolve_freshness(candidate, freshness_config, now, extra_age_groups=extra_age_groups)
      data = candidate.model_dump()
      data.update(
        id=generate_question_id(),
        category=criteria.category,
        difficulty=criteria.difficulty,
        target_audience=candidate.target_audience or criteria.target_audience,
        time_sensitive=freshness.time_sensitive,
        best_before_at=freshness.best_before_at,
        best_before_date=freshness.best_before_date,
        quarantined=is_expired(freshness.best_before_at, now),
        created_at=now,
      )
      item = QuestionItem.model_validate(data)
      try:
        await self._repos.questions.insert(item)
      except PersistenceError:
        outcome.persist_failed += 1
        logger.error("Task %s: failed to save question %s", self._ctx.task_id, item.id, exc_info=True)
        continue
      outcome.saved.append(item)

    await tracker.update(message=f"Saved {len(outcome.saved)} questions", details={"saved": len(outcome.saved), "persistFailed": outcome.persist_failed})
