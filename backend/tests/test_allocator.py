"""Allocation scenarios and plan-wide properties for full generation."""

from __future__ import annotations

from collections import defaultdict
from datetime import date, timedelta
from typing import Dict, List, Sequence

import pytest

from study_planner.scheduling.allocator import EPSILON
from study_planner.scheduling.engine import EngineOptions, PlanInputs, build_plan, workload_intensity
from study_planner.scheduling.errors import NoHorizonError
from study_planner.scheduling.models import Course, ExistingPlanItem, PlanResult, StudyPreferences, Topic

TODAY = date(2026, 3, 2)


def _day(offset: int) -> date:
    return TODAY + timedelta(days=offset)


def _course(course_id: str = "c1", exam_in: int | None = 10) -> Course:
    return Course(id=course_id, title=course_id.upper(), exam_date=_day(exam_in) if exam_in is not None else None)


def _topic(
    topic_id: str,
    hours: float,
    *,
    course_id: str = "c1",
    prereqs: Sequence[str] = (),
    difficulty: int = 3,
    importance: int = 3,
    order_index: int = 0,
    status: str = "not_started",
) -> Topic:
    return Topic(
        id=topic_id,
        course_id=course_id,
        title=topic_id,
        estimated_hours=hours,
        difficulty_weight=difficulty,
        exam_importance=importance,
        prerequisite_ids=list(prereqs),
        order_index=order_index,
        status=status,
    )


def _inputs(
    courses: Sequence[Course],
    topics: Sequence[Topic],
    *,
    daily_hours: float = 2.0,
    days_off: Sequence[str] = (),
    existing: Sequence[ExistingPlanItem] = (),
) -> PlanInputs:
    return PlanInputs(
        courses=list(courses),
        topics=list(topics),
        preferences=StudyPreferences(daily_study_hours=daily_hours, days_off=list(days_off)),
        existing_items=list(existing),
    )


def _hours_by_day(result: PlanResult) -> Dict[date, List[tuple[str | None, float]]]:
    return {day.date: [(item.topic_id, item.hours) for item in day.items] for day in result.days}


def _assert_plan_invariants(result: PlanResult, topics: Sequence[Topic]) -> None:
    topic_map = {topic.id: topic for topic in topics}
    first_day: Dict[str, date] = {}
    last_day: Dict[str, date] = defaultdict(lambda: date.min)
    for day in result.days:
        assert sum(item.hours for item in day.items) <= day.capacity_hours + EPSILON
        for item in day.items:
            if item.topic_id is None:
                continue
            first_day.setdefault(item.topic_id, day.date)
            last_day[item.topic_id] = max(last_day[item.topic_id], day.date)
    for topic_id, start in first_day.items():
        for prereq in topic_map[topic_id].prerequisite_ids:
            prereq_topic = topic_map.get(prereq)
            if prereq_topic is None or prereq_topic.status == "done":
                continue
            assert prereq in last_day, f"{topic_id} scheduled before unscheduled prerequisite {prereq}"
            assert last_day[prereq] < start


def test_scenario_single_topic_splits_across_two_days() -> None:
    result = build_plan(_inputs([_course(exam_in=5)], [_topic("t1", 3.0)]), TODAY)

    by_day = _hours_by_day(result)
    assert len(result.days) == 5
    assert by_day[_day(0)] == [("t1", 2.0)]
    assert by_day[_day(1)] == [("t1", 1.0)]
    assert all(by_day[_day(offset)] == [] for offset in range(2, 5))
    assert "SPLIT_SESSION" in result.days[0].items[0].explanation.reason_codes
    assert result.metrics.topics_scheduled == 1
    assert result.metrics.estimated_completion_date == _day(1)


@pytest.mark.parametrize("daily_hours", [2.0, 3.0])
def test_scenario_dependent_topic_waits_for_next_day(daily_hours: float) -> None:
    topics = [_topic("x", 2.0), _topic("y", 2.0, prereqs=["x"])]
    result = build_plan(_inputs([_course(exam_in=5)], topics, daily_hours=daily_hours), TODAY)

    by_day = _hours_by_day(result)
    assert by_day[_day(0)] == [("x", 2.0)]
    assert by_day[_day(1)] == [("y", 2.0)]
    y_item = result.days[1].items[0]
    assert "PREREQ_SATISFIED" in y_item.explanation.reason_codes
    assert y_item.explanation.prereq_topic_ids == ["x"]
    assert "FOUNDATION_TOPIC" in result.days[0].items[0].explanation.reason_codes


def test_scenario_overloaded_plan_keeps_top_weighted_topics() -> None:
    weights = [(5, 5), (5, 4), (4, 4), (4, 3), (3, 3), (3, 2), (2, 2), (2, 1), (1, 1), (1, 1)]
    topics = [
        _topic(f"t{index}", 5.0, difficulty=difficulty, importance=importance, order_index=index)
        for index, (difficulty, importance) in enumerate(weights)
    ]
    result = build_plan(_inputs([_course(exam_in=10)], topics, daily_hours=2.0), TODAY)
    metrics = result.metrics

    assert metrics.total_required_hours == 50.0
    assert metrics.total_available_hours == 20.0
    assert metrics.coverage_ratio == pytest.approx(0.4)
    assert metrics.is_priority_mode
    assert metrics.workload_intensity == "overloaded"
    assert {item.topic_id for item in result.items} == {"t0", "t1", "t2", "t3"}
    assert metrics.topics_scheduled == 4
    assert metrics.topics_total == 10
    assert sorted(metrics.unscheduled_topic_ids) == sorted(f"t{index}" for index in range(4, 10))
    codes = [warning.code for warning in metrics.warnings]
    assert "OVERLOADED" in codes
    assert "PARTIAL_COVERAGE" in codes
    assert all("PRIORITY_MODE" in item.explanation.reason_codes for item in result.items)
    assert "consider_extending_daily_hours" in metrics.suggestions


def test_priority_mode_keeps_prerequisites_of_kept_topics() -> None:
    topics = [
        _topic("base", 2.0, difficulty=1, importance=1),
        _topic("core", 2.0, prereqs=["base"], difficulty=5, importance=5),
        _topic("extra-1", 2.0, difficulty=2, importance=2),
        _topic("extra-2", 2.0, difficulty=2, importance=2),
        _topic("extra-3", 2.0, difficulty=1, importance=2),
    ]
    result = build_plan(_inputs([_course(exam_in=3)], topics, daily_hours=2.0), TODAY)

    scheduled = {item.topic_id for item in result.items}
    assert result.metrics.is_priority_mode
    assert {"base", "core"} <= scheduled
    _assert_plan_invariants(result, topics)


def test_single_oversized_topic_is_partially_scheduled_in_priority_mode() -> None:
    result = build_plan(_inputs([_course(exam_in=3)], [_topic("big", 10.0)], daily_hours=2.0), TODAY)

    assert result.metrics.is_priority_mode
    assert result.metrics.total_hours_scheduled == 6.0
    assert result.metrics.partially_scheduled_topic_ids == ["big"]
    assert result.metrics.estimated_completion_date is None


def test_small_fragment_is_deferred_to_next_day() -> None:
    topics = [
        _topic("a", 1.9, difficulty=5, importance=5),
        _topic("b", 3.0, difficulty=1, importance=1),
    ]
    result = build_plan(_inputs([_course(exam_in=10)], topics, daily_hours=2.0), TODAY)

    by_day = _hours_by_day(result)
    assert by_day[_day(0)] == [("a", 1.9)]
    assert by_day[_day(1)] == [("b", 2.0)]
    assert by_day[_day(2)] == [("b", 1.0)]


def test_topics_are_never_scheduled_on_or_after_their_exam() -> None:
    topics = [
        _topic("a1", 10.0, course_id="a"),
        _topic("b1", 2.0, course_id="b"),
    ]
    courses = [_course("a", exam_in=2), _course("b", exam_in=20)]
    result = build_plan(_inputs(courses, topics, daily_hours=3.0), TODAY)

    a_dates = [day.date for day in result.days for item in day.items if item.course_id == "a"]
    assert a_dates == [_day(0), _day(1)]
    assert not result.metrics.is_priority_mode
    assert result.metrics.partially_scheduled_topic_ids == ["a1"]
    assert "PARTIAL_COVERAGE" in [warning.code for warning in result.metrics.warnings]
    assert "focus_on_urgent_courses" in result.metrics.suggestions
    summary = {course.course_id: course for course in result.metrics.courses}
    assert summary["a"].urgency == "high"
    assert summary["b"].urgency == "low"


def test_days_off_receive_no_items() -> None:
    topics = [_topic(f"t{index}", 3.0, order_index=index) for index in range(4)]
    result = build_plan(_inputs([_course(exam_in=14)], topics, days_off=["saturday", "sunday"]), TODAY)

    for day in result.days:
        if day.date.weekday() >= 5:
            assert day.is_day_off
            assert day.items == []


def test_capacity_and_dependency_invariants_on_mixed_plan() -> None:
    topics = [
        _topic("a", 1.5, course_id="c1", difficulty=2, importance=4),
        _topic("b", 2.75, course_id="c1", prereqs=["a"], difficulty=5, importance=5),
        _topic("c", 0.6, course_id="c1", prereqs=["b", "a"], difficulty=3, importance=2),
        _topic("d", 4.0, course_id="c2", difficulty=4, importance=4),
        _topic("e", 1.2, course_id="c2", prereqs=["d"], difficulty=1, importance=5),
        _topic("f", 2.2, course_id="c2", prereqs=["done-topic"], difficulty=2, importance=2),
        _topic("done-topic", 3.0, course_id="c2", status="done"),
    ]
    courses = [_course("c1", exam_in=6), _course("c2", exam_in=12)]
    result = build_plan(_inputs(courses, topics, daily_hours=1.75, days_off=["wednesday"]), TODAY)

    _assert_plan_invariants(result, topics)
    assert "done-topic" not in {item.topic_id for item in result.items}


def test_generation_is_deterministic() -> None:
    topics = [
        _topic("a", 2.5, difficulty=4, importance=2),
        _topic("b", 1.0, prereqs=["a"]),
        _topic("c", 3.0, course_id="c2", difficulty=2, importance=5),
    ]
    courses = [_course("c1", exam_in=8), _course("c2", exam_in=8)]

    first = build_plan(_inputs(courses, topics), TODAY)
    second = build_plan(_inputs(courses, topics), TODAY)

    assert first.model_dump() == second.model_dump()


def test_coverage_arithmetic_matches_priority_flag() -> None:
    for daily_hours in (0.5, 1.0, 2.0, 6.0):
        result = build_plan(_inputs([_course(exam_in=7)], [_topic("t", 7.0)], daily_hours=daily_hours), TODAY)
        metrics = result.metrics
        assert metrics.coverage_ratio == pytest.approx(metrics.total_available_hours / metrics.total_required_hours)
        assert metrics.is_priority_mode == (metrics.coverage_ratio < 1)
        assert metrics.workload_intensity == workload_intensity(metrics.coverage_ratio)


def test_workload_buckets() -> None:
    assert workload_intensity(0.99) == "overloaded"
    assert workload_intensity(1.0) == "heavy"
    assert workload_intensity(1.25) == "balanced"
    assert workload_intensity(2.0) == "light"


def test_completed_hours_are_credited_and_reserve_today() -> None:
    existing = [
        ExistingPlanItem(id="past", date=_day(-1), course_id="c1", topic_id="t", hours=1.0, is_completed=True),
        ExistingPlanItem(id="today", date=_day(0), course_id="c1", topic_id="t", hours=0.5, is_completed=True),
    ]
    result = build_plan(_inputs([_course(exam_in=5)], [_topic("t", 4.0)], existing=existing), TODAY)

    assert result.metrics.total_required_hours == 2.5
    assert result.days[0].capacity_hours == 1.5
    assert result.days[0].total_hours == 1.5


def test_invalid_topic_is_excluded_with_warning() -> None:
    topics = [_topic("good", 2.0), _topic("bad", -1.0)]
    result = build_plan(_inputs([_course(exam_in=5)], topics), TODAY)

    assert {item.topic_id for item in result.items} == {"good"}
    invalid = [warning for warning in result.metrics.warnings if warning.code == "INVALID_TOPIC"]
    assert [warning.topic_id for warning in invalid] == ["bad"]


def test_dependent_of_invalid_topic_is_not_scheduled() -> None:
    topics = [_topic("p", 2.0, difficulty=9), _topic("t", 2.0, prereqs=["p"]), _topic("free", 1.0)]
    result = build_plan(_inputs([_course(exam_in=5)], topics), TODAY)

    assert {item.topic_id for item in result.items} == {"free"}
    invalid = [warning for warning in result.metrics.warnings if warning.code == "INVALID_TOPIC"]
    assert [warning.topic_id for warning in invalid] == ["p", "t"]
    assert "p" in invalid[1].message


def test_dependent_of_topic_in_passed_exam_course_is_not_scheduled() -> None:
    courses = [_course("old", exam_in=-2), _course("c1", exam_in=5)]
    topics = [
        _topic("p", 2.0, course_id="old"),
        _topic("t", 2.0, prereqs=["p"]),
        _topic("free", 1.0),
    ]
    result = build_plan(_inputs(courses, topics), TODAY)

    assert {item.topic_id for item in result.items} == {"free"}
    codes = [(warning.code, warning.topic_id) for warning in result.metrics.warnings]
    assert ("INVALID_TOPIC", "t") in codes
    assert "EXAM_PASSED" in [code for code, _ in codes]


def test_prerequisite_credited_in_full_counts_as_satisfied() -> None:
    existing = [
        ExistingPlanItem(id="done", date=_day(-1), course_id="c1", topic_id="p", hours=2.0, is_completed=True),
    ]
    topics = [_topic("p", 2.0), _topic("t", 2.0, prereqs=["p"])]
    result = build_plan(_inputs([_course(exam_in=5)], topics, existing=existing), TODAY)

    assert _hours_by_day(result)[_day(0)] == [("t", 2.0)]


def test_cycle_is_reported_and_plan_still_generated() -> None:
    topics = [_topic("a", 1.0, prereqs=["b"]), _topic("b", 1.0, prereqs=["a"])]
    result = build_plan(_inputs([_course(exam_in=5)], topics), TODAY)

    assert {item.topic_id for item in result.items} == {"a", "b"}
    assert "CYCLE_DETECTED" in [warning.code for warning in result.metrics.warnings]
    assert "review_topic_prerequisites" in result.metrics.suggestions
    _assert_plan_invariants(
        result,
        [_topic("a", 1.0, prereqs=["b"]), _topic("b", 1.0)],
    )


def test_course_without_exam_uses_default_window() -> None:
    result = build_plan(
        _inputs([_course(exam_in=None)], [_topic("t", 1.0)]),
        TODAY,
        EngineOptions(default_horizon_days=14),
    )

    assert len(result.days) == 14
    assert "NO_EXAM_DATE" in [warning.code for warning in result.metrics.warnings]


def test_nothing_to_plan_when_every_topic_is_done() -> None:
    with pytest.raises(NoHorizonError) as excinfo:
        build_plan(_inputs([_course()], [_topic("t", 2.0, status="done")]), TODAY)
    assert excinfo.value.reason == "all_topics_completed"


def test_nothing_to_plan_without_active_courses() -> None:
    archived = Course(id="c1", exam_date=_day(5), status="archived")
    with pytest.raises(NoHorizonError) as excinfo:
        build_plan(_inputs([archived], [_topic("t", 2.0)]), TODAY)
    assert excinfo.value.reason == "no_active_courses"
