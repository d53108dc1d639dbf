"""Replan: fold missed study time back into the future window."""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional, Sequence

from .allocator import EPSILON, PoolEntry
from .engine import EngineOptions, PlanInputs, completed_hours_by_topic, finalize, prepare
from .errors import NoHorizonError
from .models import (
    ExistingPlanItem,
    PlanMetrics,
    PlanResult,
    PlanWarning,
    Topic,
    unrecoverable_missed_hours_warning,
)

logger = logging.getLogger(__name__)

CARRYOVER_PREFIX = "carryover:"
REVIEW_PREFIX = "review:"


@dataclass
class MissedWork:
    """Incomplete hours on days before today.

    ``by_topic`` is capped at each topic's remaining hours; ``review`` holds
    generic time (items without a topic) keyed by course id.
    """

    by_topic: Dict[str, float] = field(default_factory=dict)
    review: Dict[str, float] = field(default_factory=dict)
    item_ids: List[str] = field(default_factory=list)

    @property
    def total_hours(self) -> float:
        return round(sum(self.by_topic.values()) + sum(self.review.values()), 2)


def collect_missed_hours(
    existing_items: Sequence[ExistingPlanItem],
    today: date,
    topics: Sequence[Topic],
) -> MissedWork:
    topic_map = {topic.id: topic for topic in topics}
    credited = completed_hours_by_topic(existing_items)
    by_topic: Dict[str, float] = defaultdict(float)
    review: Dict[str, float] = defaultdict(float)
    item_ids: List[str] = []

    for item in sorted(existing_items, key=lambda item: (item.date, item.id)):
        if item.is_completed or item.is_carried_over or item.date >= today or item.hours <= EPSILON:
            continue
        if item.topic_id is None:
            review[item.course_id] += item.hours
            item_ids.append(item.id)
            continue
        topic = topic_map.get(item.topic_id)
        if topic is None or topic.status == "done":
            continue
        by_topic[item.topic_id] += item.hours
        item_ids.append(item.id)

    capped: Dict[str, float] = {}
    for topic_id, hours in by_topic.items():
        topic = topic_map[topic_id]
        remaining = max(topic.estimated_hours - credited.get(topic_id, 0.0), 0.0)
        amount = round(min(hours, remaining), 2)
        if amount > EPSILON:
            capped[topic_id] = amount
    return MissedWork(
        by_topic=capped,
        review={course_id: round(hours, 2) for course_id, hours in review.items() if hours > EPSILON},
        item_ids=item_ids,
    )


def replan(inputs: PlanInputs, today: date, options: Optional[EngineOptions] = None) -> PlanResult:
    """Reallocate ``[today, horizon end)`` with missed hours ranked ahead of fresh work.

    Missed hours that cannot be placed are reported as an
    ``UNRECOVERABLE_MISSED_HOURS`` warning rather than raised. The result's
    ``carried_item_ids`` lists the missed items this run accounted for; the
    caller marks them so later replans do not count them again.
    """
    options = options or EngineOptions()
    missed = collect_missed_hours(inputs.existing_items, today, inputs.topics)
    try:
        prepared = prepare(inputs, today, options)
    except NoHorizonError as exc:
        if exc.reason == "all_topics_completed" or missed.total_hours <= EPSILON:
            raise
        logger.warning("No future window for %.2fh of missed study: %s", missed.total_hours, exc)
        return _unrecoverable_result(today, missed)

    planned_course_ids = {course.id for course in prepared.horizon.courses}
    entries: List[PoolEntry] = []
    stranded: List[PlanWarning] = []
    for topic in prepared.graph.topics:
        remaining = prepared.remaining_hours[topic.id]
        carried = round(min(missed.by_topic.get(topic.id, 0.0), remaining), 2)
        fresh = round(remaining - carried, 2)
        if carried > EPSILON:
            entries.append(
                PoolEntry(
                    key=f"{CARRYOVER_PREFIX}{topic.id}",
                    course_id=topic.course_id,
                    hours=carried,
                    topic=topic,
                    carryover=True,
                )
            )
        if fresh > EPSILON:
            entries.append(PoolEntry(key=topic.id, course_id=topic.course_id, hours=fresh, topic=topic))

    # Missed topics outside the pool belong to courses whose exam has passed.
    for topic_id, hours in sorted(missed.by_topic.items()):
        if topic_id not in prepared.graph:
            stranded.append(unrecoverable_missed_hours_warning(hours, topic_id=topic_id))
    for course_id, hours in sorted(missed.review.items()):
        if course_id in planned_course_ids:
            entries.append(
                PoolEntry(key=f"{REVIEW_PREFIX}{course_id}", course_id=course_id, hours=hours, carryover=True)
            )
        else:
            stranded.append(unrecoverable_missed_hours_warning(hours))

    outcome = prepared.allocator.allocate(entries, prepared.calendar)

    carried_total = 0.0
    for entry in outcome.entries:
        if not entry.carryover:
            continue
        carried_total += outcome.placed_hours(entry.key)
        left = outcome.remaining.get(entry.key, 0.0)
        if left > EPSILON:
            stranded.append(unrecoverable_missed_hours_warning(left, topic_id=entry.topic_id))

    if stranded:
        logger.warning(
            "Replan left %.2fh of missed study unplaced.",
            sum(warning.hours or 0.0 for warning in stranded),
        )
    result = finalize(
        prepared,
        outcome,
        "recreate",
        extra_warnings=stranded,
        missed_hours_carried=carried_total,
    )
    result.carried_item_ids = list(missed.item_ids)
    return result


def _unrecoverable_result(today: date, missed: MissedWork) -> PlanResult:
    required = missed.total_hours
    return PlanResult(
        mode="recreate",
        today=today,
        horizon_end=None,
        days=[],
        metrics=PlanMetrics(
            coverage_ratio=0.0,
            total_required_hours=required,
            total_available_hours=0.0,
            workload_intensity="overloaded",
            is_priority_mode=True,
            topics_scheduled=0,
            topics_total=len(missed.by_topic),
            warnings=[unrecoverable_missed_hours_warning(required)],
            unscheduled_topic_ids=sorted(missed.by_topic),
        ),
        carried_item_ids=list(missed.item_ids),
    )


__all__ = ["CARRYOVER_PREFIX", "MissedWork", "REVIEW_PREFIX", "collect_missed_hours", "replan"]
