from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Index, Integer, String, Text, func, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from geoquest.core.database import Base

_ISO_NOW = text("""to_char((now() AT TIME ZONE 'UTC'), 'YYYY-MM-DD"T"HH24:MI:SS"Z"')""")


class BackgroundTask(Base):
  __tablename__ = "background_tasks"
  __table_args__ = (Index("ix_background_tasks_active", "status", postgresql_where=text("status IN ('queued', 'processing')")),)

  task_id: Mapped[str] = mapped_column(String, primary_key=True)
  kind: Mapped[str] = mapped_column(String, nullable=False, index=True)
  status: Mapped[str] = mapped_column(String, nullable=False)
  payload: Mapped[dict] = mapped_column(JSONB, nullable=False)
  progress: Mapped[dict] = mapped_column(JSONB, nullable=False)
  result: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
  error: Mapped[str | None] = mapped_column(Text, nullable=True)
  parent_task_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
  created_at: Mapped[str] = mapped_column(String, nullable=False, server_default=_ISO_NOW)
  updated_at: Mapped[str] = mapped_column(String, nullable=False, server_default=_ISO_NOW)
  finished_at: Mapped[str | None] = mapped_column(String, nullable=True)


class Question(Base):
  __tablename__ = "questions"

  id: Mapped[str] = mapped_column(String, primary_key=True)
  question_sv: Mapped[str] = mapped_column(Text, nullable=False)
  question_en: Mapped[str | None] = mapped_column(Text, nullable=True)
  options_sv: Mapped[list] = mapped_column(JSONB, nullable=False)
  options_en: Mapped[list | None] = mapped_column(JSONB, nullable=True)
  correct_option: Mapped[int] = mapped_column(Integer, nullable=False)
  explanation_sv: Mapped[str | None] = mapped_column(Text, nullable=True)
  explanation_en: Mapped[str | None] = mapped_column(Text, nullable=True)
  background_sv: Mapped[str | None] = mapped_column(Text, nullable=True)
  background_en: Mapped[str | None] = mapped_column(Text, nullable=True)
  emoji: Mapped[str | None] = mapped_column(String, nullable=True)
  category: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
  difficulty: Mapped[str | None] = mapped_column(String, nullable=True)
  age_groups: Mapped[list] = mapped_column(JSONB, nullable=False, server_default=text("'[]'::jsonb"))
  target_audience: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
  provider: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
  model: Mapped[str | None] = mapped_column(String, nullable=True)
  validated: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("false"))
  quarantined: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("false"))
  time_sensitive: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("false"))
  best_before_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  validation: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
  updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())


class AiRuleSet(Base):
  __tablename__ = "ai_rule_sets"

  scope_type: Mapped[str] = mapped_column(String, primary_key=True)
  scope_id: Mapped[str] = mapped_column(String, primary_key=True)
  config: Mapped[dict] = mapped_column(JSONB, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())


class QuestionFeedback(Base):
  __tablename__ = "question_feedback"

  id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  question_id: Mapped[str] = mapped_column(ForeignKey("questions.id", ondelete="CASCADE"), nullable=False, index=True)
  provider: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
  rating: Mapped[float] = mapped_column(Float, nullable=False)
  issues: Mapped[list | None] = mapped_column(JSONB, nullable=True)
  comment: Mapped[str | None] = mapped_column(Text, nullable=True)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
