"""Error taxonomy for the scheduling engine."""

from __future__ import annotations

from typing import Literal, Optional

NoHorizonReason = Literal["no_active_courses", "all_topics_completed", "exam_passed"]


class SchedulingError(Exception):
    """Base class for errors raised by the planning pipeline."""


class ValidationError(SchedulingError):
    """A single topic is malformed and must be excluded from the run."""

    def __init__(self, message: str, *, topic_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.topic_id = topic_id


class NoHorizonError(SchedulingError):
    """There is nothing to schedule: no courses, no open topics, or every exam has passed."""

    def __init__(self, reason: NoHorizonReason, message: Optional[str] = None) -> None:
        super().__init__(message or _DEFAULT_MESSAGES[reason])
        self.reason: NoHorizonReason = reason


class PersistenceError(SchedulingError):
    """Writing a generated plan failed; nothing from the run was committed."""


_DEFAULT_MESSAGES = {
    "no_active_courses": "Add a course with topics to generate a study plan.",
    "all_topics_completed": "All topics are completed, nothing left to plan.",
    "exam_passed": "The exam date has already passed.",
}


__all__ = [
    "NoHorizonError",
    "NoHorizonReason",
    "PersistenceError",
    "SchedulingError",
    "ValidationError",
]
