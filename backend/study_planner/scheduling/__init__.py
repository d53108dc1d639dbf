"""Pure planning core: graph, calendar, scoring, allocation, replanning and explanations."""

from .engine import EngineOptions, PlanInputs, build_plan
from .errors import NoHorizonError, PersistenceError, SchedulingError, ValidationError
from .models import (
    CalendarDay,
    Course,
    ExistingPlanItem,
    PlanMetrics,
    PlannedDay,
    PlannedItem,
    PlanResult,
    PlanWarning,
    StudyPreferences,
    Topic,
)
from .rescheduler import replan

__all__ = [
    "CalendarDay",
    "Course",
    "EngineOptions",
    "ExistingPlanItem",
    "NoHorizonError",
    "PersistenceError",
    "PlanInputs",
    "PlanMetrics",
    "PlanResult",
    "PlanWarning",
    "PlannedDay",
    "PlannedItem",
    "SchedulingError",
    "StudyPreferences",
    "Topic",
    "ValidationError",
    "build_plan",
    "replan",
]
