"""Pure planning pipeline: topics and calendar in, plan days and metrics out."""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence

from pydantic import BaseModel, Field

from .allocator import EPSILON, AllocationOutcome, Allocator, PoolEntry
from .calendar import Horizon, build_calendar, resolve_horizon
from .errors import NoHorizonError
from .explanations import ExplanationContext, explain
from .graph import DependencyGraph, exclude_blocked, validate_topics
from .models import (
    CalendarDay,
    Course,
    CourseSummary,
    ExistingPlanItem,
    PlanMetrics,
    PlanMode,
    PlannedDay,
    PlannedItem,
    PlanResult,
    PlanWarning,
    StudyPreferences,
    Topic,
    WorkloadIntensity,
    overloaded_warning,
)
from .priority import PriorityScorer

if TYPE_CHECKING:
    from ..config import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EngineOptions:
    default_horizon_days: int = 30
    max_horizon_days: int = 90
    min_slice_hours: float = 0.25
    priority_drop_percentile: float = 0.2
    proximity_weight: float = 1.0
    carryover_bonus: float = 1.0

    @classmethod
    def from_settings(cls, settings: "Settings") -> "EngineOptions":
        return cls(
            default_horizon_days=settings.default_horizon_days,
            max_horizon_days=settings.max_horizon_days,
            min_slice_hours=settings.min_slice_hours,
            priority_drop_percentile=settings.priority_drop_percentile,
            proximity_weight=settings.proximity_weight,
            carryover_bonus=settings.carryover_bonus,
        )


class PlanInputs(BaseModel):
    """Everything one run needs, loaded by the caller before planning starts."""

    courses: List[Course] = Field(default_factory=list)
    topics: List[Topic] = Field(default_factory=list)
    preferences: StudyPreferences = Field(default_factory=StudyPreferences)
    existing_items: List[ExistingPlanItem] = Field(default_factory=list)


@dataclass
class PreparedRun:
    today: date
    horizon: Horizon
    calendar: List[CalendarDay]
    graph: DependencyGraph
    scorer: PriorityScorer
    allocator: Allocator
    remaining_hours: Dict[str, float]
    warnings: List[PlanWarning] = field(default_factory=list)


def completed_hours_by_topic(items: Sequence[ExistingPlanItem]) -> Dict[str, float]:
    credited: Dict[str, float] = defaultdict(float)
    for item in items:
        if item.is_completed and item.topic_id:
            credited[item.topic_id] += item.hours
    return dict(credited)


def prepare(inputs: PlanInputs, today: date, options: EngineOptions) -> PreparedRun:
    courses = sorted((course for course in inputs.courses if course.status == "active"), key=lambda c: c.id)
    if not courses:
        raise NoHorizonError("no_active_courses")
    course_ids = {course.id for course in courses}
    course_topics = [topic for topic in inputs.topics if topic.course_id in course_ids]
    if not course_topics:
        raise NoHorizonError("no_active_courses")

    open_topics = sorted(
        (topic for topic in course_topics if topic.status != "done"),
        key=lambda topic: (topic.course_id, topic.order_index, topic.id),
    )
    valid, warnings = validate_topics(open_topics, courses)

    credited = completed_hours_by_topic(inputs.existing_items)
    remaining_hours = {
        topic.id: round(max(topic.estimated_hours - credited.get(topic.id, 0.0), 0.0), 2) for topic in valid
    }
    pool_topics = [topic for topic in valid if remaining_hours[topic.id] > EPSILON]
    if not pool_topics:
        raise NoHorizonError("all_topics_completed")

    pool_course_ids = {topic.course_id for topic in pool_topics}
    horizon = resolve_horizon(
        [course for course in courses if course.id in pool_course_ids],
        today,
        default_days=options.default_horizon_days,
        max_days=options.max_horizon_days,
    )
    warnings.extend(horizon.warnings)
    planned_course_ids = {course.id for course in horizon.courses}
    pool_topics = [topic for topic in pool_topics if topic.course_id in planned_course_ids]

    # Open topics left out of the pool are not satisfied prerequisites; fully credited ones are.
    pool_ids = {topic.id for topic in pool_topics}
    satisfied_ids = {topic.id for topic in valid if remaining_hours[topic.id] <= EPSILON}
    blocked_ids = {topic.id for topic in open_topics if topic.id not in pool_ids and topic.id not in satisfied_ids}
    pool_topics, blocked_warnings = exclude_blocked(pool_topics, blocked_ids)
    warnings.extend(blocked_warnings)

    graph = DependencyGraph(pool_topics)
    warnings.extend(graph.warnings)

    reserved: Dict[date, float] = defaultdict(float)
    for item in inputs.existing_items:
        if item.is_completed and item.date >= today:
            reserved[item.date] += item.hours
    calendar = build_calendar(horizon.start, horizon.end, inputs.preferences, reserved_hours=reserved)

    scorer = PriorityScorer(
        pool_topics,
        horizon.courses,
        proximity_weight=options.proximity_weight,
        carryover_bonus=options.carryover_bonus,
    )
    allocator = Allocator(
        graph,
        scorer,
        horizon.courses,
        min_slice_hours=options.min_slice_hours,
        priority_drop_percentile=options.priority_drop_percentile,
    )
    return PreparedRun(
        today=today,
        horizon=horizon,
        calendar=calendar,
        graph=graph,
        scorer=scorer,
        allocator=allocator,
        remaining_hours={topic.id: remaining_hours[topic.id] for topic in pool_topics},
        warnings=warnings,
    )


def workload_intensity(coverage_ratio: float) -> WorkloadIntensity:
    if coverage_ratio < 1.0:
        return "overloaded"
    if coverage_ratio < 1.25:
        return "heavy"
    if coverage_ratio < 2.0:
        return "balanced"
    return "light"


def finalize(
    prepared: PreparedRun,
    outcome: AllocationOutcome,
    mode: PlanMode,
    *,
    extra_warnings: Optional[Sequence[PlanWarning]] = None,
    missed_hours_carried: float = 0.0,
) -> PlanResult:
    context = ExplanationContext(
        graph=prepared.graph,
        scorer=prepared.scorer,
        is_priority_mode=outcome.is_priority_mode,
        slice_counts=outcome.slice_counts,
    )

    placements_by_date = defaultdict(list)
    for placement in outcome.placements:
        placements_by_date[placement.date].append(placement)

    days: List[PlannedDay] = []
    for calendar_day in prepared.calendar:
        items = [
            PlannedItem(
                date=calendar_day.date,
                course_id=placement.entry.course_id,
                topic_id=placement.entry.topic_id,
                hours=placement.hours,
                order_index=index,
                is_review=placement.entry.topic is None,
                is_carryover=placement.entry.carryover,
                explanation=explain(placement, placement.entry.topic, context),
            )
            for index, placement in enumerate(placements_by_date.get(calendar_day.date, []))
        ]
        days.append(
            PlannedDay(
                date=calendar_day.date,
                is_day_off=calendar_day.is_day_off,
                capacity_hours=calendar_day.capacity_hours,
                total_hours=round(sum(item.hours for item in items), 2),
                items=items,
            )
        )

    metrics = _build_metrics(prepared, outcome, days, list(extra_warnings or []), missed_hours_carried)
    logger.info(
        "Built %s plan: %d items over %d days, coverage %.2f, priority mode %s.",
        mode,
        len(outcome.placements),
        metrics.study_days_used,
        metrics.coverage_ratio,
        metrics.is_priority_mode,
    )
    return PlanResult(
        mode=mode,
        today=prepared.today,
        horizon_end=prepared.horizon.end,
        days=days,
        metrics=metrics,
    )


def build_plan(inputs: PlanInputs, today: date, options: Optional[EngineOptions] = None) -> PlanResult:
    """Full generation: every open topic competes for the whole horizon."""
    prepared = prepare(inputs, today, options or EngineOptions())
    entries = [
        PoolEntry(key=topic.id, course_id=topic.course_id, hours=prepared.remaining_hours[topic.id], topic=topic)
        for topic in prepared.graph.topics
    ]
    outcome = prepared.allocator.allocate(entries, prepared.calendar)
    return finalize(prepared, outcome, "generate")


def _build_metrics(
    prepared: PreparedRun,
    outcome: AllocationOutcome,
    days: Sequence[PlannedDay],
    extra_warnings: List[PlanWarning],
    missed_hours_carried: float,
) -> PlanMetrics:
    placed: Dict[str, float] = defaultdict(float)
    for placement in outcome.placements:
        placed[placement.entry.unit_id] += placement.hours
    left: Dict[str, float] = defaultdict(float)
    for entry in outcome.entries:
        left[entry.unit_id] += outcome.remaining.get(entry.key, 0.0)

    topic_ids = [topic.id for topic in prepared.graph.topics]
    fully_scheduled = [topic_id for topic_id in topic_ids if left[topic_id] <= EPSILON]
    unscheduled = [topic_id for topic_id in topic_ids if placed[topic_id] <= EPSILON and left[topic_id] > EPSILON]
    partial = [topic_id for topic_id in topic_ids if placed[topic_id] > EPSILON and left[topic_id] > EPSILON]

    warnings = list(prepared.warnings)
    if outcome.is_priority_mode:
        logger.warning(
            "Plan overloaded: %.1fh required vs %.1fh available.",
            outcome.total_required_hours,
            outcome.total_available_hours,
        )
        warnings.append(
            overloaded_warning(outcome.coverage_ratio, outcome.total_required_hours, outcome.total_available_hours)
        )
    if unscheduled or partial:
        warnings.append(
            PlanWarning(
                code="PARTIAL_COVERAGE",
                message=(
                    f"{len(unscheduled) + len(partial)} of {len(topic_ids)} topics could not be fully "
                    "scheduled before their exams."
                ),
                hours=round(sum(left[topic_id] for topic_id in unscheduled + partial), 2),
            )
        )
    warnings.extend(extra_warnings)

    study_days = [day for day in days if day.items]
    total_scheduled = round(sum(day.total_hours for day in days), 2)
    estimated_completion: Optional[date] = None
    if study_days and len(fully_scheduled) == len(topic_ids):
        estimated_completion = study_days[-1].date

    summaries = _course_summaries(prepared, outcome, fully_scheduled)
    suggestions: List[str] = []
    if outcome.is_priority_mode and outcome.coverage_ratio < 0.7:
        suggestions.extend(["consider_extending_daily_hours", "consider_adding_study_days"])
    if prepared.graph.cyclic_topic_ids:
        suggestions.append("review_topic_prerequisites")
    if any(summary.urgency == "high" for summary in summaries):
        suggestions.append("focus_on_urgent_courses")

    return PlanMetrics(
        coverage_ratio=outcome.coverage_ratio,
        total_required_hours=outcome.total_required_hours,
        total_available_hours=outcome.total_available_hours,
        workload_intensity=workload_intensity(outcome.coverage_ratio),
        is_priority_mode=outcome.is_priority_mode,
        topics_scheduled=len(fully_scheduled),
        topics_total=len(topic_ids),
        warnings=warnings,
        total_hours_scheduled=total_scheduled,
        study_days_used=len(study_days),
        avg_hours_per_study_day=round(total_scheduled / len(study_days), 2) if study_days else 0.0,
        estimated_completion_date=estimated_completion,
        unscheduled_topic_ids=unscheduled,
        partially_scheduled_topic_ids=partial,
        missed_hours_carried=round(missed_hours_carried, 2),
        suggestions=suggestions,
        courses=summaries,
    )


def _course_summaries(
    prepared: PreparedRun,
    outcome: AllocationOutcome,
    fully_scheduled: Sequence[str],
) -> List[CourseSummary]:
    done = set(fully_scheduled)
    summaries: List[CourseSummary] = []
    for course in prepared.horizon.courses:
        topics = [topic for topic in prepared.graph.topics if topic.course_id == course.id]
        hours = sum(placement.hours for placement in outcome.placements if placement.entry.course_id == course.id)
        days_left = (course.exam_date - prepared.today).days if course.exam_date else None
        if days_left is not None and days_left <= 7:
            urgency = "high"
        elif days_left is not None and days_left <= 14:
            urgency = "medium"
        else:
            urgency = "low"
        summaries.append(
            CourseSummary(
                course_id=course.id,
                title=course.title,
                days_left=days_left,
                remaining_topics=len(topics),
                topics_scheduled=sum(1 for topic in topics if topic.id in done),
                hours_scheduled=round(hours, 2),
                urgency=urgency,
                has_exam_date=course.exam_date is not None,
            )
        )
    return summaries


__all__ = [
    "EngineOptions",
    "PlanInputs",
    "PreparedRun",
    "build_plan",
    "completed_hours_by_topic",
    "finalize",
    "prepare",
    "workload_intensity",
]
