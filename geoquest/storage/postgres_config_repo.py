"""Postgres-backed rule configuration and provider feedback."""

from __future__ import annotations

from collections import Counter
from datetime import UTC, datetime, timedelta

from sqlalchemy import func, select

from geoquest.core.database import get_session_factory
from geoquest.pipeline.rules import RuleConfig
from geoquest.schema.sql import AiRuleSet, Question, QuestionFeedback
from geoquest.storage.feedback_repo import FeedbackInsights, FeedbackSource, ProviderScore
from geoquest.storage.rules_repo import RuleConfigSource

TOP_ISSUE_COUNT = 6


class PostgresRuleConfigSource(RuleConfigSource):
  """Reads the global and per-target-audience rule sets."""

  def __init__(self) -> None:
    self._session_factory = get_session_factory()
    if self._session_factory is None:
      raise RuntimeError("Database not initialized")

  async def load_rule_config(self) -> RuleConfig:
    async with self._session_factory() as session:
      rows = (await session.execute(select(AiRuleSet))).scalars().all()

    raw: dict = {"global": None, "targetAudiences": {}}
    for row in rows:
      if not isinstance(row.config, dict):
        continue
      if row.scope_type == "global":
        raw["global"] = row.config
      elif row.scope_type == "target_audience":
        raw["targetAudiences"][row.scope_id] = row.config
    return RuleConfig.from_raw(raw)


class PostgresFeedbackSource(FeedbackSource):
  """Average user rating of questions, grouped by the provider that wrote them."""

  def __init__(self) -> None:
    self._session_factory = get_session_factory()
    if self._session_factory is None:
      raise RuntimeError("Database not initialized")

  async def provider_scores(self, window_days: int) -> dict[str, ProviderScore]:
    since = datetime.now(UTC) - timedelta(days=window_days)
    provider = func.coalesce(QuestionFeedback.provider, Question.provider)
    stmt = (
      select(provider.label("provider"), func.avg(QuestionFeedback.rating).label("avg_rating"), func.count(QuestionFeedback.id).label("count"))
      .join(Question, Question.id == QuestionFeedback.question_id)
      .where(QuestionFeedback.created_at >= since)
      .group_by(provider)
    )
    async with self._session_factory() as session:
      rows = (await session.execute(stmt)).all()
    return {str(row.provider).lower(): ProviderScore(avg_rating=float(row.avg_rating or 0), count=int(row.count)) for row in rows if row.provider}

  async def insights(self, window_days: int) -> FeedbackInsights:
    since = datetime.now(UTC) - timedelta(days=window_days)
    stmt = select(QuestionFeedback.rating, QuestionFeedback.issues).where(QuestionFeedback.created_at >= since)
    async with self._session_factory() as session:
      rows = (await session.execute(stmt)).all()

    issue_counts: Counter[str] = Counter()
    ratings: list[float] = []
    for row in rows:
      if row.rating is not None:
        ratings.append(float(row.rating))
      issues = row.issues if isinstance(row.issues, list) else [row.issues] if row.issues else []
      issue_counts.update(str(issue).strip() for issue in issues if str(issue).strip())

    return FeedbackInsights(
      total=len(rows),
      avg_rating=sum(ratings) / len(ratings) if ratings else None,
      negative_count=sum(1 for rating in ratings if rating <= 2),
      positive_count=sum(1 for rating in ratings if rating >= 4),
      top_issues=issue_counts.most_common(TOP_ISSUE_COUNT),
    )
