"""Construct storage backends from settings."""

from __future__ import annotations

from dataclasses import dataclass

from geoquest.config import Settings
from geoquest.storage.feedback_repo import FeedbackSource
from geoquest.storage.questions_repo import QuestionsRepository
from geoquest.storage.rules_repo import RuleConfigSource
from geoquest.storage.tasks_repo import TasksRepository


@dataclass(frozen=True)
class Repositories:
  tasks: TasksRepository
  questions: QuestionsRepository
  rules: RuleConfigSource
  feedback: FeedbackSource


def build_repositories(settings: Settings) -> Repositories:
  """Return the Postgres-backed repositories."""

  if not settings.pg_dsn:
    raise RuntimeError("GEOQUEST_PG_DSN is required to run the pipeline.")

  from geoquest.storage.postgres_config_repo import PostgresFeedbackSource, PostgresRuleConfigSource
  from geoquest.storage.postgres_questions_repo import PostgresQuestionsRepository
  from geoquest.storage.postgres_tasks_repo import PostgresTasksRepository

  return Repositories(tasks=PostgresTasksRepository(), questions=PostgresQuestionsRepository(), rules=PostgresRuleConfigSource(), feedback=PostgresFeedbackSource())
