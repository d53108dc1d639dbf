"""ORM models backing the study plan store."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.types import JSON

from .base import Base, TimestampMixin

JSONType = JSON


def _uuid() -> str:
    return str(uuid.uuid4())


class StudyPreferencesModel(TimestampMixin, Base):
    __tablename__ = "study_preferences"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    daily_study_hours: Mapped[float] = mapped_column(Float, default=3.0, nullable=False)
    study_days_per_week: Mapped[int] = mapped_column(Integer, default=7, nullable=False)
    days_off: Mapped[list[str]] = mapped_column(JSONType, default=list, nullable=False)
    timezone: Mapped[str | None] = mapped_column(String(64), nullable=True)


class CourseModel(TimestampMixin, Base):
    __tablename__ = "courses"
    __table_args__ = (Index("ix_courses_user_status", "user_id", "status"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    title: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    exam_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    status: Mapped[str] = mapped_column(String(16), default="active", nullable=False)

    topics: Mapped[list["TopicModel"]] = relationship(
        back_populates="course", cascade="all, delete-orphan", order_by="TopicModel.order_index"
    )


class TopicModel(TimestampMixin, Base):
    __tablename__ = "topics"
    __table_args__ = (Index("ix_topics_course", "course_id"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    course_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("courses.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(Text, default="", nullable=False)
    estimated_hours: Mapped[float | None] = mapped_column(Float, nullable=True)
    difficulty_weight: Mapped[int | None] = mapped_column(Integer, nullable=True)
    exam_importance: Mapped[int | None] = mapped_column(Integer, nullable=True)
    prerequisite_ids: Mapped[list[str]] = mapped_column(JSONType, default=list, nullable=False)
    status: Mapped[str] = mapped_column(String(16), default="not_started", nullable=False)
    order_index: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    mastery_score: Mapped[int | None] = mapped_column(Integer, nullable=True)

    course: Mapped[CourseModel] = relationship(back_populates="topics")


class PlanDayModel(Base):
    __tablename__ = "study_plan_days"
    __table_args__ = (UniqueConstraint("user_id", "date", name="uq_plan_day_user_date"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    is_day_off: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    capacity_hours: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    total_hours: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    plan_version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False
    )

    items: Mapped[list["PlanItemModel"]] = relationship(
        back_populates="day", cascade="all, delete-orphan", order_by="PlanItemModel.order_index"
    )


class PlanItemModel(Base):
    __tablename__ = "study_plan_items"
    __table_args__ = (
        Index("ix_plan_items_user", "user_id"),
        Index("ix_plan_items_topic", "topic_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    plan_day_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("study_plan_days.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    course_id: Mapped[str] = mapped_column(String(36), nullable=False)
    topic_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    hours: Mapped[float] = mapped_column(Float, nullable=False)
    order_index: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_completed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_review: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_carryover: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    # Set when a replan has folded this missed item into the future window.
    carried_over_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reason_codes: Mapped[list[str]] = mapped_column(JSONType, default=list, nullable=False)
    explanation_text: Mapped[str] = mapped_column(Text, default="", nullable=False)
    exam_proximity_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    load_balance_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    prereq_topic_ids: Mapped[list[str]] = mapped_column(JSONType, default=list, nullable=False)
    yield_weight: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    mastery_snapshot: Mapped[int | None] = mapped_column(Integer, nullable=True)

    day: Mapped[PlanDayModel] = relationship(back_populates="items")


class PlanRunModel(Base):
    __tablename__ = "plan_runs"
    __table_args__ = (Index("ix_plan_runs_user_created", "user_id", "created_at"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    mode: Mapped[str] = mapped_column(String(16), nullable=False)
    plan_version: Mapped[int] = mapped_column(Integer, nullable=False)
    metrics: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    warnings: Mapped[list[dict]] = mapped_column(JSONType, default=list, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False
    )


__all__ = [
    "CourseModel",
    "PlanDayModel",
    "PlanItemModel",
    "PlanRunModel",
    "StudyPreferencesModel",
    "TopicModel",
]
