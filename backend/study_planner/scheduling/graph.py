"""Prerequisite graph over the incomplete topic pool."""

from __future__ import annotations

import heapq
import logging
import math
from datetime import date
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from .errors import SchedulingError, ValidationError
from .models import Course, PlanWarning, Topic

logger = logging.getLogger(__name__)

_WHITE, _GRAY, _BLACK = 0, 1, 2


def validate_topic(topic: Topic, course_ids: Set[str]) -> None:
    if topic.course_id not in course_ids:
        raise ValidationError(f"Topic {topic.id} belongs to unknown course {topic.course_id}.", topic_id=topic.id)
    hours = topic.estimated_hours
    if hours is None or not math.isfinite(hours) or hours <= 0:
        raise ValidationError(f"Topic {topic.id} has non-positive estimated hours ({hours}).", topic_id=topic.id)
    if not 1 <= topic.difficulty_weight <= 5:
        raise ValidationError(
            f"Topic {topic.id} difficulty weight {topic.difficulty_weight} is outside 1-5.", topic_id=topic.id
        )
    if not 1 <= topic.exam_importance <= 5:
        raise ValidationError(
            f"Topic {topic.id} exam importance {topic.exam_importance} is outside 1-5.", topic_id=topic.id
        )


def validate_topics(
    topics: Iterable[Topic],
    courses: Sequence[Course],
) -> Tuple[List[Topic], List[PlanWarning]]:
    """Split topics into schedulable ones and warnings for the rest."""
    course_ids = {course.id for course in courses}
    valid: List[Topic] = []
    warnings: List[PlanWarning] = []
    seen: Set[str] = set()
    for topic in topics:
        try:
            if topic.id in seen:
                raise ValidationError(f"Duplicate topic id {topic.id}.", topic_id=topic.id)
            validate_topic(topic, course_ids)
        except ValidationError as exc:
            logger.warning("Excluding topic from plan: %s", exc)
            warnings.append(
                PlanWarning(code="INVALID_TOPIC", message=str(exc), topic_id=exc.topic_id, course_id=topic.course_id)
            )
            continue
        seen.add(topic.id)
        valid.append(topic)
    return valid, warnings


def exclude_blocked(
    topics: Sequence[Topic],
    blocked_ids: Iterable[str],
) -> Tuple[List[Topic], List[PlanWarning]]:
    """Drop topics that wait, directly or transitively, on a prerequisite that cannot be scheduled.

    ``blocked_ids`` are open topics left out of the pool, e.g. invalid topics
    or topics of a course whose exam has passed. Their dependents stay out of
    the plan until the prerequisite is fixed or marked done.
    """
    blocked: Set[str] = set(blocked_ids)
    kept: List[Topic] = list(topics)
    warnings: List[PlanWarning] = []
    changed = bool(blocked)
    while changed:
        changed = False
        still_kept: List[Topic] = []
        for topic in kept:
            waiting = sorted({prereq for prereq in topic.prerequisite_ids if prereq in blocked and prereq != topic.id})
            if not waiting:
                still_kept.append(topic)
                continue
            blocked.add(topic.id)
            changed = True
            logger.warning("Excluding topic %s: blocked by prerequisites %s.", topic.id, ", ".join(waiting))
            warnings.append(
                PlanWarning(
                    code="INVALID_TOPIC",
                    message=(
                        f"'{topic.title or topic.id}' waits on prerequisites that cannot be scheduled: "
                        f"{', '.join(waiting)}."
                    ),
                    topic_id=topic.id,
                    course_id=topic.course_id,
                )
            )
        kept = still_kept
    return kept, warnings


class DependencyGraph:
    """Arena-backed prerequisite graph.

    Topics live in a flat list; edges are ``(dependent, prerequisite)`` index
    pairs with per-node adjacency lists derived from them. Prerequisite ids
    that are not part of the pool (done, archived, or deleted) are treated as
    satisfied and never become edges. Open prerequisites that were left out
    of the pool are handled before construction by ``exclude_blocked``.
    """

    def __init__(self, topics: Sequence[Topic]) -> None:
        self._topics: List[Topic] = list(topics)
        self._index: Dict[str, int] = {topic.id: idx for idx, topic in enumerate(self._topics)}
        self._edges: Set[Tuple[int, int]] = set()
        self.warnings: List[PlanWarning] = []
        self.cyclic_topic_ids: List[str] = []

        for idx, topic in enumerate(self._topics):
            for prereq_id in topic.prerequisite_ids:
                if prereq_id == topic.id:
                    logger.warning("Topic %s references itself as a prerequisite; skipping.", topic.id)
                    continue
                prereq_idx = self._index.get(prereq_id)
                if prereq_idx is None:
                    continue
                self._edges.add((idx, prereq_idx))

        self._rebuild_adjacency()
        self._break_cycles()

    @classmethod
    def build(cls, topics: Sequence[Topic]) -> "DependencyGraph":
        return cls([topic for topic in topics if topic.status != "done"])

    def __len__(self) -> int:
        return len(self._topics)

    def __contains__(self, topic_id: object) -> bool:
        return topic_id in self._index

    @property
    def topics(self) -> List[Topic]:
        return list(self._topics)

    @property
    def edge_count(self) -> int:
        return len(self._edges)

    def topic(self, topic_id: str) -> Topic:
        return self._topics[self._index[topic_id]]

    def prerequisites_of(self, topic_id: str) -> List[str]:
        idx = self._index.get(topic_id)
        if idx is None:
            return []
        return [self._topics[p].id for p in self._prereqs[idx]]

    def dependents_of(self, topic_id: str) -> List[str]:
        idx = self._index.get(topic_id)
        if idx is None:
            return []
        return [self._topics[d].id for d in self._dependents[idx]]

    def prerequisite_closure(self, topic_ids: Iterable[str]) -> Set[str]:
        """Return the given ids plus every transitive prerequisite in the pool."""
        pending = [self._index[topic_id] for topic_id in topic_ids if topic_id in self._index]
        seen: Set[int] = set(pending)
        while pending:
            node = pending.pop()
            for prereq in self._prereqs[node]:
                if prereq not in seen:
                    seen.add(prereq)
                    pending.append(prereq)
        return {self._topics[idx].id for idx in seen}

    def is_ready(self, topic_id: str, day: date, finished_on: Mapping[str, date]) -> bool:
        """True when every in-pool prerequisite finished on a day strictly before ``day``."""
        idx = self._index.get(topic_id)
        if idx is None:
            return True
        for prereq in self._prereqs[idx]:
            finished = finished_on.get(self._topics[prereq].id)
            if finished is None or finished >= day:
                return False
        return True

    def topological_order(self, sort_key: Optional[Callable[[Topic], Any]] = None) -> List[Topic]:
        """Kahn ordering where ties among available topics break on ``sort_key``."""
        key = sort_key or (lambda topic: (topic.order_index, topic.id))
        indegree = [len(prereqs) for prereqs in self._prereqs]
        available: List[Tuple[Any, int]] = []
        for idx, degree in enumerate(indegree):
            if degree == 0:
                heapq.heappush(available, (key(self._topics[idx]), idx))

        ordered: List[Topic] = []
        while available:
            _, idx = heapq.heappop(available)
            ordered.append(self._topics[idx])
            for dependent in self._dependents[idx]:
                indegree[dependent] -= 1
                if indegree[dependent] == 0:
                    heapq.heappush(available, (key(self._topics[dependent]), dependent))

        # Cycles are broken at construction time, so every node must drain.
        if len(ordered) != len(self._topics):
            drained = {topic.id for topic in ordered}
            stuck = sorted(topic.id for topic in self._topics if topic.id not in drained)
            raise SchedulingError(f"Prerequisite cycle survived cycle breaking: {', '.join(stuck)}.")
        return ordered

    def _rebuild_adjacency(self) -> None:
        self._prereqs: List[List[int]] = [[] for _ in self._topics]
        self._dependents: List[List[int]] = [[] for _ in self._topics]
        for dependent, prereq in sorted(self._edges):
            self._prereqs[dependent].append(prereq)
            self._dependents[prereq].append(dependent)

    def _break_cycles(self) -> None:
        while True:
            offender = self._find_back_edge_source()
            if offender is None:
                return
            topic = self._topics[offender]
            dropped = [self._topics[p].id for p in self._prereqs[offender]]
            self._edges = {edge for edge in self._edges if edge[0] != offender}
            self._rebuild_adjacency()
            self.cyclic_topic_ids.append(topic.id)
            logger.warning(
                "Detected prerequisite cycle at topic %s; dropping prerequisites %s.",
                topic.id,
                ", ".join(dropped),
            )
            self.warnings.append(
                PlanWarning(
                    code="CYCLE_DETECTED",
                    message=f"Circular prerequisites on '{topic.title or topic.id}' were ignored.",
                    topic_id=topic.id,
                    course_id=topic.course_id,
                )
            )

    def _find_back_edge_source(self) -> Optional[int]:
        color = [_WHITE] * len(self._topics)
        for root in range(len(self._topics)):
            if color[root] != _WHITE:
                continue
            color[root] = _GRAY
            stack = [(root, iter(self._prereqs[root]))]
            while stack:
                node, children = stack[-1]
                descended = False
                for child in children:
                    if color[child] == _GRAY:
                        return node
                    if color[child] == _WHITE:
                        color[child] = _GRAY
                        stack.append((child, iter(self._prereqs[child])))
                        descended = True
                        break
                if not descended:
                    color[node] = _BLACK
                    stack.pop()
        return None


__all__ = ["DependencyGraph", "exclude_blocked", "validate_topic", "validate_topics"]
