"""Create task, question, rule set and feedback tables.

Revision ID: a1c3e5f7b9d0
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "a1c3e5f7b9d0"
down_revision = None
branch_labels = None
depends_on = None

_ISO_NOW = sa.text("""to_char((now() AT TIME ZONE 'UTC'), 'YYYY-MM-DD"T"HH24:MI:SS"Z"')""")


def upgrade() -> None:
  """Upgrade schema."""
  op.create_table(
    "background_tasks",
    sa.Column("task_id", sa.String(), nullable=False),
    sa.Column("kind", sa.String(), nullable=False),
    sa.Column("status", sa.String(), nullable=False),
    sa.Column("payload", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
    sa.Column("progress", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
    sa.Column("result", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    sa.Column("error", sa.Text(), nullable=True),
    sa.Column("parent_task_id", sa.String(), nullable=True),
    sa.Column("created_at", sa.String(), server_default=_ISO_NOW, nullable=False),
    sa.Column("updated_at", sa.String(), server_default=_ISO_NOW, nullable=False),
    sa.Column("finished_at", sa.String(), nullable=True),
    sa.PrimaryKeyConstraint("task_id"),
  )
  op.create_index(op.f("ix_background_tasks_kind"), "background_tasks", ["kind"], unique=False)
  op.create_index(op.f("ix_background_tasks_parent_task_id"), "background_tasks", ["parent_task_id"], unique=False)
  op.create_index("ix_background_tasks_active", "background_tasks", ["status"], unique=False, postgresql_where=sa.text("status IN ('queued', 'processing')"))

  op.create_table(
    "questions",
    sa.Column("id", sa.String(), nullable=False),
    sa.Column("question_sv", sa.Text(), nullable=False),
    sa.Column("question_en", sa.Text(), nullable=True),
    sa.Column("options_sv", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
    sa.Column("options_en", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    sa.Column("correct_option", sa.Integer(), nullable=False),
    sa.Column("explanation_sv", sa.Text(), nullable=True),
    sa.Column("explanation_en", sa.Text(), nullable=True),
    sa.Column("background_sv", sa.Text(), nullable=True),
    sa.Column("background_en", sa.Text(), nullable=True),
    sa.Column("emoji", sa.String(), nullable=True),
    sa.Column("category", sa.String(), nullable=True),
    sa.Column("difficulty", sa.String(), nullable=True),
    sa.Column("age_groups", postgresql.JSONB(astext_type=sa.Text()), server_default=sa.text("'[]'::jsonb"), nullable=False),
    sa.Column("target_audience", sa.String(), nullable=True),
    sa.Column("provider", sa.String(), nullable=True),
    sa.Column("model", sa.String(), nullable=True),
    sa.Column("validated", sa.Boolean(), server_default=sa.text("false"), nullable=False),
    sa.Column("quarantined", sa.Boolean(), server_default=sa.text("false"), nullable=False),
    sa.Column("time_sensitive", sa.Boolean(), server_default=sa.text("false"), nullable=False),
    sa.Column("best_before_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column("validation", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.PrimaryKeyConstraint("id"),
  )
  op.create_index(op.f("ix_questions_category"), "questions", ["category"], unique=False)
  op.create_index(op.f("ix_questions_target_audience"), "questions", ["target_audience"], unique=False)
  op.create_index(op.f("ix_questions_provider"), "questions", ["provider"], unique=False)

  op.create_table(
    "ai_rule_sets",
    sa.Column("scope_type", sa.String(), nullable=False),
    sa.Column("scope_id", sa.String(), nullable=False),
    sa.Column("config", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.PrimaryKeyConstraint("scope_type", "scope_id"),
  )

  op.create_table(
    "question_feedback",
    sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
    sa.Column("question_id", sa.String(), nullable=False),
    sa.Column("provider", sa.String(), nullable=True),
    sa.Column("rating", sa.Float(), nullable=False),
    sa.Column("issues", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    sa.Column("comment", sa.Text(), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.ForeignKeyConstraint(["question_id"], ["questions.id"], ondelete="CASCADE"),
    sa.PrimaryKeyConstraint("id"),
  )
  op.create_index(op.f("ix_question_feedback_question_id"), "question_feedback", ["question_id"], unique=False)
  op.create_index(op.f("ix_question_feedback_provider"), "question_feedback", ["provider"], unique=False)


def downgrade() -> None:
  """Downgrade schema."""
  op.drop_table("question_feedback")
  op.drop_table("ai_rule_sets")
  op.drop_table("questions")
  op.drop_table("background_tasks")
