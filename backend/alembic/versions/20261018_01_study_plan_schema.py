"""Study plan schema: preferences, courses, topics, plan days, items and runs."""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "20261018_01_study_plan_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "study_preferences",
        sa.Column("user_id", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("daily_study_hours", sa.Float(), nullable=False, server_default="3"),
        sa.Column("study_days_per_week", sa.Integer(), nullable=False, server_default="7"),
        sa.Column("days_off", sa.JSON(), nullable=False),
        sa.Column("timezone", sa.String(length=64), nullable=True),
    )

    op.create_table(
        "courses",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("exam_date", sa.Date(), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="active"),
    )
    op.create_index("ix_courses_user_status", "courses", ["user_id", "status"])

    op.create_table(
        "topics",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("course_id", sa.String(length=36), sa.ForeignKey("courses.id", ondelete="CASCADE"), nullable=False),
        sa.Column("title", sa.Text(), nullable=False, server_default=""),
        sa.Column("estimated_hours", sa.Float(), nullable=True),
        sa.Column("difficulty_weight", sa.Integer(), nullable=True),
        sa.Column("exam_importance", sa.Integer(), nullable=True),
        sa.Column("prerequisite_ids", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="not_started"),
        sa.Column("order_index", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("mastery_score", sa.Integer(), nullable=True),
    )
    op.create_index("ix_topics_course", "topics", ["course_id"])

    op.create_table(
        "study_plan_days",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("is_day_off", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("capacity_hours", sa.Float(), nullable=False, server_default="0"),
        sa.Column("total_hours", sa.Float(), nullable=False, server_default="0"),
        sa.Column("plan_version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.UniqueConstraint("user_id", "date", name="uq_plan_day_user_date"),
    )
    op.create_index("ix_study_plan_days_user_id", "study_plan_days", ["user_id"])

    op.create_table(
        "study_plan_items",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column(
            "plan_day_id",
            sa.String(length=36),
            sa.ForeignKey("study_plan_days.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("course_id", sa.String(length=36), nullable=False),
        sa.Column("topic_id", sa.String(length=36), nullable=True),
        sa.Column("hours", sa.Float(), nullable=False),
        sa.Column("order_index", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_review", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_carryover", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("reason_codes", sa.JSON(), nullable=False),
        sa.Column("explanation_text", sa.Text(), nullable=False, server_default=""),
        sa.Column("exam_proximity_days", sa.Integer(), nullable=True),
        sa.Column("load_balance_note", sa.Text(), nullable=True),
        sa.Column("prereq_topic_ids", sa.JSON(), nullable=False),
        sa.Column("yield_weight", sa.Float(), nullable=False, server_default="0"),
        sa.Column("mastery_snapshot", sa.Integer(), nullable=True),
    )
    op.create_index("ix_study_plan_items_plan_day_id", "study_plan_items", ["plan_day_id"])
    op.create_index("ix_plan_items_user", "study_plan_items", ["user_id"])
    op.create_index("ix_plan_items_topic", "study_plan_items", ["topic_id"])

    op.create_table(
        "plan_runs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("mode", sa.String(length=16), nullable=False),
        sa.Column("plan_version", sa.Integer(), nullable=False),
        sa.Column("metrics", sa.JSON(), nullable=False),
        sa.Column("warnings", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
    )
    op.create_index("ix_plan_runs_user_created", "plan_runs", ["user_id", "created_at"])


def downgrade() -> None:
    op.drop_index("ix_plan_runs_user_created", table_name="plan_runs")
    op.drop_table("plan_runs")
    op.drop_index("ix_plan_items_topic", table_name="study_plan_items")
    op.drop_index("ix_plan_items_user", table_name="study_plan_items")
    op.drop_index("ix_study_plan_items_plan_day_id", table_name="study_plan_items")
    op.drop_table("study_plan_items")
    op.drop_index("ix_study_plan_days_user_id", table_name="study_plan_days")
    op.drop_table("study_plan_days")
    op.drop_index("ix_topics_course", table_name="topics")
    op.drop_table("topics")
    op.drop_index("ix_courses_user_status", table_name="courses")
    op.drop_table("courses")
    op.drop_table("study_preferences")
