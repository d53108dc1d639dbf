"""Why-this-date explanations for placed plan items."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import List, Mapping, Optional

from .allocator import Placement
from .graph import DependencyGraph
from .models import ItemExplanation, ReasonCode, Topic
from .priority import PriorityScorer

EXAM_IMMINENT_DAYS = 7
EXAM_APPROACHING_DAYS = 14
HIGH_WEIGHT_THRESHOLD = 4
LOW_MASTERY_THRESHOLD = 50


@dataclass(frozen=True)
class ExplanationContext:
    graph: DependencyGraph
    scorer: PriorityScorer
    is_priority_mode: bool
    slice_counts: Mapping[str, int]


def explain(placement: Placement, topic: Optional[Topic], context: ExplanationContext) -> ItemExplanation:
    """Derive reason codes and display text for one placement. No side effects."""
    entry = placement.entry
    codes: List[ReasonCode] = []
    sentences: List[str] = []

    proximity = context.scorer.days_until_exam(entry.course_id, placement.date)
    prereq_ids: List[str] = context.graph.prerequisites_of(topic.id) if topic is not None else []
    total_slices = context.slice_counts.get(entry.key, 1)
    load_balance_note = _load_balance_note(placement)

    if topic is None:
        codes.append("REVIEW_TIME")
        sentences.append("Review time carried over from a missed study day.")
    else:
        if prereq_ids:
            codes.append("PREREQ_SATISFIED")
            noun = "prerequisite" if len(prereq_ids) == 1 else "prerequisites"
            sentences.append(f"Scheduled once its {len(prereq_ids)} {noun} finished on earlier days.")
        elif context.graph.dependents_of(topic.id):
            codes.append("FOUNDATION_TOPIC")
            sentences.append("Foundation topic that later topics build on.")
        if topic.exam_importance >= HIGH_WEIGHT_THRESHOLD:
            codes.append("HIGH_EXAM_WEIGHT")
            sentences.append("Carries a high weight on the exam.")
        if topic.difficulty_weight >= HIGH_WEIGHT_THRESHOLD:
            codes.append("HIGH_DIFFICULTY")
            sentences.append("Challenging material, so it is placed early.")
        if topic.mastery_score is not None and topic.mastery_score < LOW_MASTERY_THRESHOLD:
            codes.append("LOW_MASTERY")
            sentences.append(f"Current mastery is {topic.mastery_score}%.")

    if entry.carryover:
        codes.append("MISSED_CARRYOVER")
        if topic is not None:
            sentences.append("Carries over study time missed on an earlier day.")

    if proximity is not None:
        if proximity <= EXAM_IMMINENT_DAYS:
            codes.append("EXAM_IMMINENT")
        elif proximity <= EXAM_APPROACHING_DAYS:
            codes.append("EXAM_APPROACHING")
        sentences.append(f"Exam in {proximity} day{'s' if proximity != 1 else ''}.")

    if total_slices > 1:
        codes.append("SPLIT_SESSION")
        sentences.append(f"Part {placement.slice_index + 1} of {total_slices}.")

    if load_balance_note is not None:
        codes.append("LOAD_BALANCED")
        sentences.append(load_balance_note)

    if context.is_priority_mode:
        codes.append("PRIORITY_MODE")
        sentences.append("Kept while time is short because it ranks among the highest-priority topics.")

    return ItemExplanation(
        reason_codes=codes,
        explanation_text=" ".join(sentences),
        exam_proximity_days=proximity,
        load_balance_note=load_balance_note,
        prereq_topic_ids=prereq_ids,
        yield_weight=round(placement.score, 3),
        mastery_snapshot=topic.mastery_score if topic is not None else None,
    )


def _load_balance_note(placement: Placement) -> Optional[str]:
    if placement.slice_index != 0 or placement.ready_since >= placement.date:
        return None
    return (
        f"Ready from {_format_day(placement.ready_since)} but placed on {_format_day(placement.date)} "
        "because the earlier study days were already full."
    )


def _format_day(value: date) -> str:
    return value.strftime("%a %b %d")


__all__ = [
    "EXAM_APPROACHING_DAYS",
    "EXAM_IMMINENT_DAYS",
    "ExplanationContext",
    "HIGH_WEIGHT_THRESHOLD",
    "LOW_MASTERY_THRESHOLD",
    "explain",
]
