"""Greedy day-by-day allocation of topic hours into calendar capacity."""

from __future__ import annotations

import logging
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional, Sequence, Set, Tuple

from .graph import DependencyGraph
from .models import CalendarDay, Course, Topic
from .priority import PriorityScorer

logger = logging.getLogger(__name__)

EPSILON = 1e-6
DEFAULT_MIN_SLICE_HOURS = 0.25
DEFAULT_PRIORITY_DROP_PERCENTILE = 0.2


@dataclass
class PoolEntry:
    """A block of hours waiting to be placed.

    Most entries are a topic's remaining hours. Replans add carryover entries
    for missed hours; a carryover without a topic is generic review time.
    """

    key: str
    course_id: str
    hours: float
    topic: Optional[Topic] = None
    carryover: bool = False

    @property
    def topic_id(self) -> Optional[str]:
        return self.topic.id if self.topic is not None else None

    @property
    def unit_id(self) -> str:
        return self.topic.id if self.topic is not None else self.key


@dataclass
class Placement:
    entry: PoolEntry
    date: date
    hours: float
    score: float
    slice_index: int
    ready_since: date


@dataclass
class AllocationOutcome:
    placements: List[Placement]
    remaining: Dict[str, float]
    finished_on: Dict[str, date]
    slice_counts: Dict[str, int]
    total_required_hours: float
    total_available_hours: float
    coverage_ratio: float
    is_priority_mode: bool
    entries: List[PoolEntry] = field(default_factory=list)
    dropped_unit_ids: List[str] = field(default_factory=list)

    def placed_hours(self, key: str) -> float:
        return sum(placement.hours for placement in self.placements if placement.entry.key == key)


class Allocator:
    """Walks calendar days in order and fills each with the best ready work."""

    def __init__(
        self,
        graph: DependencyGraph,
        scorer: PriorityScorer,
        courses: Sequence[Course],
        *,
        min_slice_hours: float = DEFAULT_MIN_SLICE_HOURS,
        priority_drop_percentile: float = DEFAULT_PRIORITY_DROP_PERCENTILE,
    ) -> None:
        self._graph = graph
        self._scorer = scorer
        self._exam_dates: Dict[str, Optional[date]] = {course.id: course.exam_date for course in courses}
        self._min_slice = max(min_slice_hours, 0.0)
        self._drop_percentile = min(max(priority_drop_percentile, 0.0), 0.99)

    def allocate(self, entries: Sequence[PoolEntry], calendar: Sequence[CalendarDay]) -> AllocationOutcome:
        pool = [entry for entry in entries if entry.hours > EPSILON]
        required = round(sum(entry.hours for entry in pool), 2)
        available = round(sum(day.capacity_hours for day in calendar), 2)
        coverage_ratio = available / required if required > EPSILON else 1.0
        is_priority_mode = coverage_ratio < 1.0

        admitted = pool
        dropped: List[str] = []
        if is_priority_mode and calendar:
            admitted, dropped = self._select_priority_set(pool, available, calendar[0].date)
            logger.info(
                "Priority mode: %.1fh required, %.1fh available; admitted %d of %d entries.",
                required,
                available,
                len(admitted),
                len(pool),
            )

        placements, remaining, finished_on, slice_counts = self._fill(admitted, calendar)
        for entry in pool:
            remaining.setdefault(entry.key, round(entry.hours, 2))

        return AllocationOutcome(
            placements=placements,
            remaining=remaining,
            finished_on=finished_on,
            slice_counts=slice_counts,
            total_required_hours=required,
            total_available_hours=available,
            coverage_ratio=coverage_ratio,
            is_priority_mode=is_priority_mode,
            entries=pool,
            dropped_unit_ids=dropped,
        )

    def score(self, entry: PoolEntry, day: date) -> float:
        return self._scorer.score(entry.topic, entry.course_id, day, carryover=entry.carryover)

    def _sort_key(self, entry: PoolEntry, day: date) -> Tuple[float, int, str, int, str]:
        primary = self._scorer.sort_key(
            entry.topic,
            entry.course_id,
            day,
            carryover=entry.carryover,
            fallback_id=entry.key,
        )
        return (*primary, 0 if entry.carryover else 1, entry.key)

    def _is_open(self, course_id: str, day: date) -> bool:
        exam_date = self._exam_dates.get(course_id)
        return exam_date is None or day < exam_date

    def _is_ready(self, entry: PoolEntry, day: date, finished_on: Dict[str, date]) -> bool:
        if entry.topic is None:
            return True
        return self._graph.is_ready(entry.topic.id, day, finished_on)

    def _fill(
        self,
        entries: Sequence[PoolEntry],
        calendar: Sequence[CalendarDay],
    ) -> Tuple[List[Placement], Dict[str, float], Dict[str, date], Dict[str, int]]:
        remaining: Dict[str, float] = {entry.key: round(entry.hours, 2) for entry in entries}
        pending: Counter[str] = Counter(entry.topic.id for entry in entries if entry.topic is not None)
        finished_on: Dict[str, date] = {}
        ready_since: Dict[str, date] = {}
        slice_counts: Dict[str, int] = defaultdict(int)
        placements: List[Placement] = []

        for day in calendar:
            capacity = round(day.capacity_hours, 2)
            if capacity <= EPSILON:
                continue
            # Readiness is fixed for the whole day: prerequisites must finish on an earlier date.
            ready = [
                entry
                for entry in entries
                if remaining[entry.key] > EPSILON
                and self._is_open(entry.course_id, day.date)
                and self._is_ready(entry, day.date, finished_on)
            ]
            if not ready:
                continue
            for entry in ready:
                ready_since.setdefault(entry.key, day.date)
            ready.sort(key=lambda entry: self._sort_key(entry, day.date))

            while capacity > EPSILON:
                chosen = self._pick(ready, remaining, capacity)
                if chosen is None:
                    break
                amount = round(min(capacity, remaining[chosen.key]), 2)
                if amount <= EPSILON:
                    break
                placements.append(
                    Placement(
                        entry=chosen,
                        date=day.date,
                        hours=amount,
                        score=self.score(chosen, day.date),
                        slice_index=slice_counts[chosen.key],
                        ready_since=ready_since[chosen.key],
                    )
                )
                slice_counts[chosen.key] += 1
                capacity = round(capacity - amount, 2)
                left = round(remaining[chosen.key] - amount, 2)
                remaining[chosen.key] = left if left > EPSILON else 0.0
                if remaining[chosen.key] == 0.0 and chosen.topic is not None:
                    pending[chosen.topic.id] -= 1
                    if pending[chosen.topic.id] == 0:
                        finished_on[chosen.topic.id] = day.date

        return placements, remaining, finished_on, dict(slice_counts)

    def _pick(
        self,
        ready: Sequence[PoolEntry],
        remaining: Dict[str, float],
        capacity: float,
    ) -> Optional[PoolEntry]:
        for entry in ready:
            left = remaining[entry.key]
            if left <= EPSILON:
                continue
            amount = min(capacity, left)
            # A fragment below the minimum slice waits for a fuller day unless it finishes the entry.
            if amount + EPSILON < self._min_slice and amount + EPSILON < left:
                continue
            return entry
        return None

    def _select_priority_set(
        self,
        entries: Sequence[PoolEntry],
        available: float,
        first_day: date,
    ) -> Tuple[List[PoolEntry], List[str]]:
        units: Dict[str, List[PoolEntry]] = defaultdict(list)
        for entry in entries:
            units[entry.unit_id].append(entry)
        rank: Dict[str, Tuple[float, int, str, int, str]] = {
            unit_id: min(self._sort_key(entry, first_day) for entry in unit_entries)
            for unit_id, unit_entries in units.items()
        }

        topic_units = sorted((unit_id for unit_id in units if unit_id in self._graph), key=rank.__getitem__)
        review_units = sorted((unit_id for unit_id in units if unit_id not in self._graph), key=rank.__getitem__)

        drop_count = int(len(topic_units) * self._drop_percentile)
        kept_topics = topic_units[: len(topic_units) - drop_count]
        kept = self._graph.prerequisite_closure(kept_topics)

        # A prerequisite ranks as high as the best kept topic that depends on it.
        effective = dict(rank)
        for topic in reversed(self._graph.topological_order()):
            if topic.id not in kept or topic.id not in effective:
                continue
            for dependent in self._graph.dependents_of(topic.id):
                if dependent in kept and dependent in effective and effective[dependent] < effective[topic.id]:
                    effective[topic.id] = effective[dependent]

        ordered = [
            topic.id
            for topic in self._graph.topological_order(
                lambda topic: effective.get(topic.id, (0.0, topic.order_index, topic.id, 1, topic.id))
            )
        ]
        candidates = review_units + [unit_id for unit_id in ordered if unit_id in kept]

        budget = available
        admitted_units: Set[str] = set()
        for unit_id in candidates:
            hours = round(sum(entry.hours for entry in units[unit_id]), 2)
            if any(prereq not in admitted_units for prereq in self._graph.prerequisites_of(unit_id)):
                continue
            if hours > budget + EPSILON:
                continue
            admitted_units.add(unit_id)
            budget = round(budget - hours, 2)

        # Leftover budget goes to the best unit that did not fit whole; it is placed partially.
        if budget + EPSILON >= max(self._min_slice, EPSILON):
            for unit_id in candidates:
                if unit_id in admitted_units:
                    continue
                if all(prereq in admitted_units for prereq in self._graph.prerequisites_of(unit_id)):
                    admitted_units.add(unit_id)
                    break

        admitted = [entry for entry in entries if entry.unit_id in admitted_units]
        dropped = [unit_id for unit_id in review_units + topic_units if unit_id not in admitted_units]
        return admitted, dropped


__all__ = [
    "AllocationOutcome",
    "Allocator",
    "DEFAULT_MIN_SLICE_HOURS",
    "DEFAULT_PRIORITY_DROP_PERCENTILE",
    "EPSILON",
    "Placement",
    "PoolEntry",
]
