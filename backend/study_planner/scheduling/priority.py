"""Scheduling weight per topic: difficulty, exam importance and exam proximity."""

from __future__ import annotations

import math
from datetime import date
from typing import Dict, Optional, Sequence, Tuple

from .models import Course, Topic

# Sigmoid urgency: 0.5 at the midpoint, approaching 1 as the exam nears.
URGENCY_SIGMOID_STEEPNESS = 0.15
URGENCY_SIGMOID_MIDPOINT = 10
REVIEW_BASE_SCORE = 0.5


def urgency_score(
    days_until_exam: int,
    steepness: float = URGENCY_SIGMOID_STEEPNESS,
    midpoint: float = URGENCY_SIGMOID_MIDPOINT,
) -> float:
    if days_until_exam <= 0:
        return 1.0
    return 1.0 / (1.0 + math.exp(steepness * (days_until_exam - midpoint)))


def base_weight(topic: Topic) -> int:
    return topic.difficulty_weight * topic.exam_importance


class PriorityScorer:
    """Sort keys for the allocator.

    Base weights are normalised within each course so that courses compete on
    exam proximity rather than on how many heavy topics they happen to hold.
    Scores have no unit; only their ordering matters.
    """

    def __init__(
        self,
        topics: Sequence[Topic],
        courses: Sequence[Course],
        *,
        proximity_weight: float = 1.0,
        carryover_bonus: float = 1.0,
    ) -> None:
        self._proximity_weight = proximity_weight
        self._carryover_bonus = carryover_bonus
        self._exam_dates: Dict[str, Optional[date]] = {course.id: course.exam_date for course in courses}
        self._course_max: Dict[str, int] = {}
        for topic in topics:
            weight = base_weight(topic)
            if weight > self._course_max.get(topic.course_id, 0):
                self._course_max[topic.course_id] = weight

    def days_until_exam(self, course_id: str, day: date) -> Optional[int]:
        exam_date = self._exam_dates.get(course_id)
        if exam_date is None:
            return None
        return (exam_date - day).days

    def proximity(self, course_id: str, day: date) -> float:
        days_left = self.days_until_exam(course_id, day)
        if days_left is None:
            return 0.0
        return urgency_score(days_left)

    def score(self, topic: Optional[Topic], course_id: str, day: date, *, carryover: bool = False) -> float:
        if topic is None:
            normalised = REVIEW_BASE_SCORE
        else:
            normalised = base_weight(topic) / float(self._course_max.get(course_id) or base_weight(topic))
        value = normalised * (1.0 + self._proximity_weight * self.proximity(course_id, day))
        if carryover:
            value += self._carryover_bonus
        return round(value, 6)

    def sort_key(
        self,
        topic: Optional[Topic],
        course_id: str,
        day: date,
        *,
        carryover: bool = False,
        fallback_id: str = "",
    ) -> Tuple[float, int, str]:
        order_index = topic.order_index if topic is not None else -1
        topic_id = topic.id if topic is not None else fallback_id
        return (-self.score(topic, course_id, day, carryover=carryover), order_index, topic_id)


__all__ = [
    "PriorityScorer",
    "REVIEW_BASE_SCORE",
    "URGENCY_SIGMOID_MIDPOINT",
    "URGENCY_SIGMOID_STEEPNESS",
    "base_weight",
    "urgency_score",
]
