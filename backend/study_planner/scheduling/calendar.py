"""Expands the planning horizon into day slots with study capacity."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import FrozenSet, List, Mapping, Optional, Sequence

from .errors import NoHorizonError
from .models import CalendarDay, Course, PlanWarning, StudyPreferences

logger = logging.getLogger(__name__)

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
# Weekend first when days off are derived from study_days_per_week.
DERIVED_DAYS_OFF_ORDER = ("saturday", "sunday", "friday", "thursday", "wednesday", "tuesday", "monday")


@dataclass
class Horizon:
    start: date
    end: date  # exclusive
    courses: List[Course]
    warnings: List[PlanWarning] = field(default_factory=list)

    @property
    def length_days(self) -> int:
        return (self.end - self.start).days


def resolve_days_off(preferences: StudyPreferences) -> FrozenSet[str]:
    explicit = {day.strip().lower() for day in preferences.days_off if day and day.strip()}
    unknown = explicit.difference(WEEKDAYS)
    if unknown:
        logger.warning("Ignoring unknown weekday names in days_off: %s", ", ".join(sorted(unknown)))
    explicit &= set(WEEKDAYS)
    if explicit:
        return frozenset(explicit)
    off_count = 7 - preferences.study_days_per_week
    if off_count <= 0:
        return frozenset()
    return frozenset(DERIVED_DAYS_OFF_ORDER[:off_count])


def resolve_horizon(
    courses: Sequence[Course],
    today: date,
    *,
    default_days: int,
    max_days: int,
) -> Horizon:
    """Pick ``[today, end)`` from the exams of the courses being planned.

    The window runs to the latest upcoming exam, capped at ``max_days``;
    courses without an exam date contribute ``default_days``.
    """
    if not courses:
        raise NoHorizonError("no_active_courses")

    warnings: List[PlanWarning] = []
    planned: List[Course] = []
    span = 0
    for course in courses:
        if course.exam_date is None:
            warnings.append(
                PlanWarning(
                    code="NO_EXAM_DATE",
                    message=f"'{course.title or course.id}' has no exam date; using a {default_days}-day window.",
                    course_id=course.id,
                )
            )
            span = max(span, default_days)
            planned.append(course)
            continue
        days_left = (course.exam_date - today).days
        if days_left <= 0:
            warnings.append(
                PlanWarning(
                    code="EXAM_PASSED",
                    message=f"The exam for '{course.title or course.id}' has already passed.",
                    course_id=course.id,
                )
            )
            continue
        span = max(span, days_left)
        planned.append(course)

    if not planned:
        raise NoHorizonError("exam_passed")

    span = min(span, max_days)
    return Horizon(start=today, end=today + timedelta(days=span), courses=planned, warnings=warnings)


def build_calendar(
    start: date,
    end: date,
    preferences: StudyPreferences,
    *,
    reserved_hours: Optional[Mapping[date, float]] = None,
) -> List[CalendarDay]:
    """One slot per date in ``[start, end)``.

    ``reserved_hours`` removes capacity already consumed on a date, e.g. by
    items completed earlier today. Today gets full capacity regardless of the
    time of day.
    """
    days_off = resolve_days_off(preferences)
    daily_hours = max(float(preferences.daily_study_hours or 0.0), 0.0)
    reserved = reserved_hours or {}
    calendar: List[CalendarDay] = []
    current = start
    while current < end:
        is_day_off = WEEKDAYS[current.weekday()] in days_off
        capacity = 0.0 if is_day_off else max(daily_hours - reserved.get(current, 0.0), 0.0)
        calendar.append(CalendarDay(date=current, is_day_off=is_day_off, capacity_hours=round(capacity, 2)))
        current += timedelta(days=1)
    return calendar


__all__ = [
    "DERIVED_DAYS_OFF_ORDER",
    "Horizon",
    "WEEKDAYS",
    "build_calendar",
    "resolve_days_off",
    "resolve_horizon",
]
