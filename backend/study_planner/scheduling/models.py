"""Domain models consumed and produced by the scheduling engine."""

from __future__ import annotations

from datetime import date
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

TopicStatus = Literal["not_started", "in_progress", "done"]
CourseStatus = Literal["active", "archived"]
WorkloadIntensity = Literal["light", "balanced", "heavy", "overloaded"]
PlanMode = Literal["generate", "recreate"]

WarningCode = Literal[
    "OVERLOADED",
    "PARTIAL_COVERAGE",
    "UNRECOVERABLE_MISSED_HOURS",
    "CYCLE_DETECTED",
    "INVALID_TOPIC",
    "EXAM_PASSED",
    "NO_EXAM_DATE",
]

ReasonCode = Literal[
    "PREREQ_SATISFIED",
    "FOUNDATION_TOPIC",
    "HIGH_EXAM_WEIGHT",
    "HIGH_DIFFICULTY",
    "EXAM_IMMINENT",
    "EXAM_APPROACHING",
    "LOAD_BALANCED",
    "MISSED_CARRYOVER",
    "PRIORITY_MODE",
    "SPLIT_SESSION",
    "LOW_MASTERY",
    "REVIEW_TIME",
]


class Course(BaseModel):
    id: str
    title: str = ""
    exam_date: Optional[date] = None
    status: CourseStatus = "active"


class Topic(BaseModel):
    """A gradeable unit of course content.

    Range checks live in the graph builder rather than on the model so a
    malformed row can be excluded with a warning instead of failing the load.
    """

    id: str
    course_id: str
    title: str = ""
    estimated_hours: float
    difficulty_weight: int = 3
    exam_importance: int = 3
    prerequisite_ids: List[str] = Field(default_factory=list)
    status: TopicStatus = "not_started"
    order_index: int = 0
    mastery_score: Optional[int] = None


class StudyPreferences(BaseModel):
    daily_study_hours: float = 3.0
    study_days_per_week: int = Field(default=7, ge=0, le=7)
    days_off: List[str] = Field(default_factory=list)
    timezone: Optional[str] = None


class ExistingPlanItem(BaseModel):
    """A persisted plan item as seen by the engine when recomputing."""

    id: str
    date: date
    course_id: str
    topic_id: Optional[str] = None
    hours: float
    is_completed: bool = False
    is_carried_over: bool = False  # already folded into an earlier replan


class CalendarDay(BaseModel):
    date: date
    is_day_off: bool = False
    capacity_hours: float = Field(default=0.0, ge=0.0)


class ItemExplanation(BaseModel):
    reason_codes: List[ReasonCode] = Field(default_factory=list)
    explanation_text: str = ""
    exam_proximity_days: Optional[int] = None
    load_balance_note: Optional[str] = None
    prereq_topic_ids: List[str] = Field(default_factory=list)
    yield_weight: float = 0.0
    mastery_snapshot: Optional[int] = None


class PlannedItem(BaseModel):
    date: date
    course_id: str
    topic_id: Optional[str] = None
    hours: float
    order_index: int
    is_review: bool = False
    is_carryover: bool = False
    explanation: ItemExplanation = Field(default_factory=ItemExplanation)


class PlannedDay(BaseModel):
    date: date
    is_day_off: bool
    capacity_hours: float
    total_hours: float = 0.0
    items: List[PlannedItem] = Field(default_factory=list)


class PlanWarning(BaseModel):
    code: WarningCode
    message: str
    topic_id: Optional[str] = None
    course_id: Optional[str] = None
    hours: Optional[float] = None


class CourseSummary(BaseModel):
    course_id: str
    title: str = ""
    days_left: Optional[int] = None
    remaining_topics: int = 0
    topics_scheduled: int = 0
    hours_scheduled: float = 0.0
    urgency: Literal["high", "medium", "low"] = "low"
    has_exam_date: bool = False


class PlanMetrics(BaseModel):
    coverage_ratio: float
    total_required_hours: float
    total_available_hours: float
    workload_intensity: WorkloadIntensity
    is_priority_mode: bool
    topics_scheduled: int
    topics_total: int
    warnings: List[PlanWarning] = Field(default_factory=list)
    total_hours_scheduled: float = 0.0
    study_days_used: int = 0
    avg_hours_per_study_day: float = 0.0
    estimated_completion_date: Optional[date] = None
    unscheduled_topic_ids: List[str] = Field(default_factory=list)
    partially_scheduled_topic_ids: List[str] = Field(default_factory=list)
    missed_hours_carried: float = 0.0
    suggestions: List[str] = Field(default_factory=list)
    courses: List[CourseSummary] = Field(default_factory=list)


class PlanResult(BaseModel):
    mode: PlanMode
    today: date
    horizon_end: Optional[date] = None
    days: List[PlannedDay] = Field(default_factory=list)
    metrics: PlanMetrics
    plan_version: Optional[int] = None  # assigned when persisted
    carried_item_ids: List[str] = Field(default_factory=list, exclude=True)

    @property
    def items(self) -> List[PlannedItem]:
        return [item for day in self.days for item in day.items]


def overloaded_warning(coverage_ratio: float, required: float, available: float) -> PlanWarning:
    return PlanWarning(
        code="OVERLOADED",
        message=(
            f"Only {available:.1f}h available for {required:.1f}h of work "
            f"({coverage_ratio * 100:.0f}% coverage); scheduling the highest-priority topics."
        ),
        hours=round(required - available, 2),
    )


def unrecoverable_missed_hours_warning(hours: float, *, topic_id: Optional[str] = None) -> PlanWarning:
    return PlanWarning(
        code="UNRECOVERABLE_MISSED_HOURS",
        message=f"{hours:.2f}h of missed study could not be rescheduled before the exam.",
        topic_id=topic_id,
        hours=round(hours, 2),
    )


__all__ = [
    "CalendarDay",
    "Course",
    "CourseSummary",
    "ExistingPlanItem",
    "ItemExplanation",
    "PlanMetrics",
    "PlanMode",
    "PlanResult",
    "PlanWarning",
    "PlannedDay",
    "PlannedItem",
    "ReasonCode",
    "StudyPreferences",
    "Topic",
    "TopicStatus",
    "WarningCode",
    "WorkloadIntensity",
    "overloaded_warning",
    "unrecoverable_missed_hours_warning",
]
