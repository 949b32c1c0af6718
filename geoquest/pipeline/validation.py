"""Independent review of saved questions with a single auto-correction attempt."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any, Literal

from geoquest.ai.providers.base import QuestionProvider
from geoquest.pipeline.context import PipelineContext
from geoquest.pipeline.contracts import AmbiguityResult, GenerationCriteria, ProposedEdits, ProviderVerdict, QuestionItem, RuleEvaluation, ValidationResult
from geoquest.pipeline.cycler import ProviderCycler
from geoquest.pipeline.errors import ExhaustedProvidersError, PersistenceError, ProviderError, WatchdogAbort, call_provider
from geoquest.pipeline.freshness import is_expired, resolve_freshness
from geoquest.pipeline.rules import RuleConfig, evaluate_rules, resolve_audience
from geoquest.storage.feedback_repo import ProviderScore
from geoquest.tasks.control import TaskControl
from geoquest.tasks.progress import TaskProgressTracker, utc_timestamp
from geoquest.tasks.watchdog import WatchdogDiagnostics, WatchdogLimits, attach_watchdog

logger = logging.getLogger(__name__)

AMBIGUITY_ISSUE = "More than one option can be considered correct."

ItemOutcome = Literal["valid", "invalid", "skipped"]


@dataclass
class ValidationSummary:
  total: int
  validated_count: int = 0
  invalid_count: int = 0
  skipped_count: int = 0
  corrected_count: int = 0
  provider_failures: int = 0
  persist_failed: int = 0
  stop_reason: str | None = None
  providers_used: list[str] = field(default_factory=list)
  outcomes: dict[str, ItemOutcome] = field(default_factory=dict)

  @property
  def processed(self) -> int:
    return len(self.outcomes)

  def record(self, item_id: str, outcome: ItemOutcome) -> None:
    self.outcomes[item_id] = outcome
    if outcome == "valid":
      self.validated_count += 1
    elif outcome == "invalid":
      self.invalid_count += 1
    else:
      self.skipped_count += 1

  def to_result(self) -> dict[str, Any]:
    return {
      "total": self.total,
      "validatedCount": self.validated_count,
      "invalidCount": self.invalid_count,
      "skippedCount": self.skipped_count,
      "correctedCount": self.corrected_count,
      "providerFailures": self.provider_failures,
      "persistFailed": self.persist_failed,
      "stopReason": self.stop_reason,
      "providersUsed": list(self.providers_used),
      "items": dict(self.outcomes),
    }


@dataclass
class Assessment:
  """Provider verdict merged with the rule verdict and the ambiguity check."""

  verdict: ProviderVerdict
  rules: RuleEvaluation
  ambiguity: AmbiguityResult | None = None

  @property
  def is_valid(self) -> bool:
    ambiguous = self.ambiguity is not None and self.ambiguity.ambiguous
    return self.verdict.is_valid and self.rules.is_valid and not ambiguous

  @property
  def issues(self) -> list[str]:
    issues = [*self.verdict.issues, *self.rules.issues]
    if self.ambiguity is not None and self.ambiguity.ambiguous:
      issues.append(self.ambiguity.reason or AMBIGUITY_ISSUE)
    return list(dict.fromkeys(issues))


class ValidationOrchestrator:
  """Drives one validation task over a batch of saved questions."""

  def __init__(self, context: PipelineContext) -> None:
    self._ctx = context
    self._settings = context.settings
    self._repos = context.repositories
    self._diagnostics = WatchdogDiagnostics()
    # Ids corrected during this pass; an item is corrected at most once.
    self._corrected_ids: set[str] = set()
    self._latest: dict[str, QuestionItem] = {}
    self._failed_providers: list[str] = []

  async def run(self, items: Sequence[QuestionItem], generator_providers: Iterable[str], criteria: GenerationCriteria | None, control: TaskControl, *, preferred_provider: str | None = None) -> ValidationSummary | None:
    """Validate `items` in order; returns the summary when the task completed."""

    tracker = TaskProgressTracker(task_id=self._ctx.task_id, tasks_repo=self._repos.tasks, control=control, total=len(items), clock=self._ctx.monotonic)
    limits = WatchdogLimits.for_amount(len(items), self._settings.watchdog)
    watchdog = attach_watchdog(tracker=tracker, control=control, limits=limits, diagnostics=self._diagnostics)
    try:
      summary = await self._run(list(items), sorted(set(generator_providers)), criteria, control, tracker, preferred_provider)
      message = f"Validated {summary.validated_count}, invalid {summary.invalid_count}, skipped {summary.skipped_count}, corrected {summary.corrected_count}"
      record = await tracker.complete(summary.to_result(), completed=summary.validated_count + summary.invalid_count, message=message)
      if record is None or record.status != "completed":
        return None
      logger.info("Validation task %s completed: %s", self._ctx.task_id, message)
      return summary
    except WatchdogAbort as exc:
      logger.warning("Validation task %s aborted: %s", self._ctx.task_id, exc.reason)
      await tracker.fail(exc.reason)
      return None
    except Exception as exc:  # noqa: BLE001
      logger.error("Validation task %s failed", self._ctx.task_id, exc_info=True)
      await tracker.fail(f"Validation failed: {type(exc).__name__}: {exc}")
      return None
    finally:
      await watchdog.stop()

  async def _provider_scores(self) -> dict[str, ProviderScore]:
    try:
      return await self._repos.feedback.provider_scores(self._settings.feedback_window_days)
    except Exception:  # noqa: BLE001
      logger.warning("Task %s: provider feedback unavailable; using configured order", self._ctx.task_id, exc_info=True)
      return {}

  async def _run(self, items: list[QuestionItem], generators: list[str], criteria: GenerationCriteria | None, control: TaskControl, tracker: TaskProgressTracker, preferred_provider: str | None) -> ValidationSummary:
    summary = ValidationSummary(total=len(items))
    await tracker.update(phase="preparing", completed=0, total=len(items), message=f"Preparing validation of {len(items)} questions", details={"generatorProviders": generators})

    scores = await self._provider_scores()
    cycler = ProviderCycler.for_validation(self._ctx.providers, exclude=generators, scores=scores, preferred=preferred_provider)
    if not cycler:
      for item in items:
        summary.record(item.id, "skipped")
      summary.stop_reason = "no_validation_provider"
      logger.warning("Task %s: no validation provider outside %s; skipping %d questions", self._ctx.task_id, generators, len(items))
      await tracker.update(message="No validation provider available; all questions skipped")
      return summary

    rule_config = await self._repos.rules.load_rule_config()
    await tracker.update(phase="validating", message=f"Validation providers: {', '.join(cycler.names)}", details={"providers": cycler.names})

    for index, item in enumerate(items):
      control.raise_if_aborted()
      self._diagnostics.last_item_id = item.id
      try:
        outcome = await self._validate_with_rotation(item, cycler, criteria, rule_config, summary, tracker)
      except ExhaustedProvidersError as exc:
        for remaining in items[index:]:
          summary.record(remaining.id, "skipped")
        summary.stop_reason = "providers_exhausted"
        logger.warning("Task %s: %s; skipped %d questions", self._ctx.task_id, exc, len(items) - index)
        await tracker.update(message="All validation providers failed; remaining questions skipped")
        break
      summary.record(item.id, outcome)
      await tracker.update(completed=summary.processed, message=f"Question {index + 1}/{len(items)} {outcome}", details={"validated": summary.validated_count, "invalid": summary.invalid_count, "corrected": summary.corrected_count})
    else:
      summary.stop_reason = "all_processed"

    return summary

  async def _validate_with_rotation(self, item: QuestionItem, cycler: ProviderCycler, criteria: GenerationCriteria | None, rule_config: RuleConfig, summary: ValidationSummary, tracker: TaskProgressTracker) -> ItemOutcome:
    while True:
      provider = cycler.current()
      if provider is None:
        raise ExhaustedProvidersError(self._failed_providers)
      # A retry after a failed call continues from the corrected copy, if any.
      current = self._latest.get(item.id, item)
      self._diagnostics.last_provider = provider.name
      try:
        outcome = await self._process(provider, current, criteria, rule_config, summary, tracker)
      except ProviderError as exc:
        summary.provider_failures += 1
        logger.warning("Task %s: %s; rotating validation provider", self._ctx.task_id, exc)
        self._failed_providers.append(provider.name)
        cycler.advance()
        await tracker.update(message=f"{provider.name} failed on {current.id}; rotating", details={"providerFailures": summary.provider_failures})
        continue
      if provider.name not in summary.providers_used:
        summary.providers_used.append(provider.name)
      return outcome

  async def _assess(self, provider: QuestionProvider, item: QuestionItem, criteria: GenerationCriteria | None, rule_config: RuleConfig, tracker: TaskProgressTracker) -> Assessment:
    # Each provider call gets a fresh heartbeat; the idle budget covers one call, not the whole item.
    timeout = self._settings.provider_call_timeout_seconds
    await tracker.update(message=f"Validating {item.id} with {provider.name}")
    verdict = await call_provider(provider.name, "validate", lambda: provider.validate(item, criteria), timeout_seconds=timeout)
    assessment = Assessment(verdict=verdict, rules=evaluate_rules(item, criteria, rule_config))
    if assessment.is_valid and provider.supports_ambiguity_check:
      await tracker.update(message=f"Checking {item.id} for ambiguous options with {provider.name}")
      assessment.ambiguity = await call_provider(provider.name, "check_ambiguity", lambda: provider.check_ambiguity(item, criteria), timeout_seconds=timeout)
    return assessment

  async def _process(self, provider: QuestionProvider, item: QuestionItem, criteria: GenerationCriteria | None, rule_config: RuleConfig, summary: ValidationSummary, tracker: TaskProgressTracker) -> ItemOutcome:
    audience = resolve_audience(item, criteria)
    assessment = await self._assess(provider, item, criteria, rule_config, tracker)
    proposed: ProposedEdits | None = None

    correction = rule_config.auto_correction_for(audience)
    if not assessment.is_valid and correction.enabled and provider.supports_edits and item.id not in self._corrected_ids:
      issues = assessment.issues
      await tracker.update(message=f"Requesting edits for {item.id} from {provider.name}")
      proposed = await call_provider(provider.name, "propose_edits", lambda: provider.propose_edits(item, criteria, issues), timeout_seconds=self._settings.provider_call_timeout_seconds)
      if proposed is not None and not proposed.is_empty():
        self._corrected_ids.add(item.id)
        try:
          await self._repos.questions.update_content(item.id, proposed)
        except PersistenceError:
          summary.persist_failed += 1
          logger.error("Task %s: failed to apply edits to %s", self._ctx.task_id, item.id, exc_info=True)
        else:
          item = item.with_edits(proposed)
          self._latest[item.id] = item
          summary.corrected_count += 1
          await tracker.update(message=f"Applied edits to {item.id}; re-validating", details={"corrected": summary.corrected_count})
          assessment = await self._assess(provider, item, criteria, rule_config, tracker)

    now = self._ctx.now()
    extra_age_groups = [criteria.age_group] if criteria and criteria.age_group else []
    freshness = resolve_freshness(
      item,
      rule_config.freshness_for(audience),
      now,
      extra_age_groups=extra_age_groups,
      time_sensitive_hint=assessment.verdict.time_sensitive,
      best_before_hint=assessment.verdict.best_before_date,
    )
    result = ValidationResult(
      is_valid=assessment.is_valid,
      issues=assessment.issues,
      suggestions=assessment.verdict.suggestions,
      proposed_edits=proposed,
      alternative_correct_options=assessment.ambiguity.alternative_correct_options if assessment.ambiguity else [],
      freshness=freshness,
      quarantined=is_expired(freshness.best_before_at, now),
      validation_context={
        "taskId": self._ctx.task_id,
        "provider": provider.name,
        "model": provider.model_name,
        "validatedAt": utc_timestamp(now),
        "corrected": item.id in self._latest,
        "ruleIssues": assessment.rules.issues,
      },
    )
    try:
      await self._repos.questions.update_validation(item.id, result)
    except PersistenceError:
      summary.persist_failed += 1
      logger.error("Task %s: failed to store validation for %s", self._ctx.task_id, item.id, exc_info=True)
    return "valid" if result.is_valid else "invalid"
