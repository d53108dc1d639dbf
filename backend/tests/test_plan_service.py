"""Plan service persistence tests against a temporary SQLite database."""

from __future__ import annotations

import os
from datetime import date, timedelta
from pathlib import Path
from typing import List, Sequence

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from study_planner.config import get_settings
from study_planner.db.base import Base
from study_planner.db.models import (
    CourseModel,
    PlanDayModel,
    PlanItemModel,
    PlanRunModel,
    StudyPreferencesModel,
    TopicModel,
)
from study_planner.db.session import dispose_engine, get_engine, session_scope
from study_planner.locks import PlanBusyError, plan_locks
from study_planner.plan_service import (
    analyze_missed_days,
    generate_plan,
    get_plan,
    recreate_plan,
    resolve_today,
    toggle_item_completion,
)
from study_planner.repositories.plans import plan_repository
from study_planner.scheduling.errors import NoHorizonError, PersistenceError
from study_planner.telemetry import TelemetryEvent, clear_listeners, register_listener

USER = "learner-1"
T0 = date(2026, 3, 2)


def _setup_db(tmp_path: Path) -> None:
    db_path = tmp_path / "study_plan.db"
    os.environ["STUDYPLAN_DATABASE_URL"] = f"sqlite:///{db_path}"
    get_settings.cache_clear()
    dispose_engine()
    engine = get_engine()
    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)


def _seed(
    *,
    user_id: str = USER,
    exam_date: date | None = T0 + timedelta(days=14),
    daily_hours: float = 2.0,
    topics: Sequence[tuple[str, float, List[str]]] = (("t1", 3.0, []), ("t2", 2.0, ["t1"])),
) -> None:
    with session_scope() as session:
        session.add(StudyPreferencesModel(user_id=user_id, daily_study_hours=daily_hours, days_off=[]))
        course = CourseModel(id=f"{user_id}-course", user_id=user_id, title="Chemistry", exam_date=exam_date)
        session.add(course)
        for index, (topic_id, hours, prereqs) in enumerate(topics):
            session.add(
                TopicModel(
                    id=topic_id,
                    course_id=course.id,
                    title=topic_id.upper(),
                    estimated_hours=hours,
                    difficulty_weight=3,
                    exam_importance=3,
                    prerequisite_ids=prereqs,
                    order_index=index,
                )
            )


def _collect_events() -> List[TelemetryEvent]:
    events: List[TelemetryEvent] = []
    clear_listeners()
    register_listener(events.append)
    return events


def teardown_function() -> None:
    clear_listeners()


def test_generate_plan_persists_days_items_and_run(tmp_path) -> None:
    _setup_db(tmp_path)
    _seed()
    events = _collect_events()

    result = generate_plan(USER, today=T0)

    assert result.plan_version == 1
    snapshot = get_plan(USER)
    assert snapshot.plan_version == 1
    assert len(snapshot.days) == 14
    first_day = snapshot.days[0]
    assert first_day.date == T0
    assert [(item.topic_id, item.hours) for item in first_day.items] == [("t1", 2.0)]
    assert first_day.items[0].explanation_text
    assert snapshot.last_run is not None
    assert snapshot.last_run.mode == "generate"
    assert snapshot.last_run.metrics.topics_total == 2
    assert events[-1].name == "plan_generation"
    assert events[-1].payload["status"] == "success"
    assert events[-1].payload["plan_version"] == 1


def test_regeneration_is_deterministic_and_bumps_version(tmp_path) -> None:
    _setup_db(tmp_path)
    _seed()

    generate_plan(USER, today=T0)
    first = get_plan(USER)
    second_result = generate_plan(USER, today=T0)
    second = get_plan(USER)

    def _shape(snapshot) -> list:
        return [(day.date, [(item.topic_id, item.hours, item.order_index) for item in day.items]) for day in snapshot.days]

    assert second_result.plan_version == 2
    assert second.plan_version == 2
    assert _shape(first) == _shape(second)
    with session_scope(commit=False) as session:
        runs = session.execute(select(func.count(PlanRunModel.id))).scalar_one()
    assert runs == 2


def test_toggle_updates_item_and_topic_status(tmp_path) -> None:
    _setup_db(tmp_path)
    _seed()
    generate_plan(USER, today=T0)
    t1_items = [item for day in get_plan(USER).days for item in day.items if item.topic_id == "t1"]
    assert len(t1_items) == 2
    events = _collect_events()

    toggle_item_completion(t1_items[0].id, True)
    with session_scope(commit=False) as session:
        assert session.get(TopicModel, "t1").status == "in_progress"
        assert session.get(PlanItemModel, t1_items[0].id).completed_at is not None

    toggle_item_completion(t1_items[1].id, True)
    with session_scope(commit=False) as session:
        assert session.get(TopicModel, "t1").status == "done"

    toggle_item_completion(t1_items[1].id, False)
    with session_scope(commit=False) as session:
        assert session.get(TopicModel, "t1").status == "in_progress"
        assert session.get(PlanItemModel, t1_items[1].id).completed_at is None

    assert [event.name for event in events] == ["plan_item_toggled"] * 3
    assert events[0].payload["topic_status"] == "in_progress"


def test_toggle_unknown_item_raises_lookup_error(tmp_path) -> None:
    _setup_db(tmp_path)
    with pytest.raises(LookupError):
        toggle_item_completion("missing", True)


def test_recreate_preserves_history_and_carries_missed_hours(tmp_path) -> None:
    _setup_db(tmp_path)
    _seed(topics=(("t1", 4.0, []), ("t2", 4.0, [])))
    generate_plan(USER, today=T0)
    before = get_plan(USER)
    past_before = [day for day in before.days if day.date < T0 + timedelta(days=2)]
    completed_id = past_before[0].items[0].id
    toggle_item_completion(completed_id, True)
    past_before = [day for day in get_plan(USER).days if day.date < T0 + timedelta(days=2)]

    result = recreate_plan(USER, today=T0 + timedelta(days=2))

    after = get_plan(USER)
    past_after = [day for day in after.days if day.date < T0 + timedelta(days=2)]
    assert [day.model_dump() for day in past_after] == [day.model_dump() for day in past_before]
    assert result.metrics.missed_hours_carried == 2.0
    upcoming = [day for day in after.days if day.date >= T0 + timedelta(days=2)]
    assert upcoming[0].plan_version == 2
    assert upcoming[0].items[0].is_carryover
    assert "MISSED_CARRYOVER" in upcoming[0].items[0].reason_codes
    with session_scope(commit=False) as session:
        completed = session.get(PlanItemModel, completed_id)
        assert completed is not None and completed.is_completed


def _items_from(start: date) -> list:
    return [item for day in get_plan(USER).days if day.date >= start for item in day.items]


def test_topic_done_after_completing_replanned_work(tmp_path) -> None:
    _setup_db(tmp_path)
    _seed(topics=(("t1", 4.0, []),))
    generate_plan(USER, today=T0)

    result = recreate_plan(USER, today=T0 + timedelta(days=1))

    assert [(item.date, item.hours, item.is_carryover) for item in result.items] == [
        (T0 + timedelta(days=1), 2.0, True),
        (T0 + timedelta(days=2), 2.0, False),
    ]
    for item in _items_from(T0 + timedelta(days=1)):
        toggle_item_completion(item.id, True)

    with session_scope(commit=False) as session:
        assert session.get(TopicModel, "t1").status == "done"
        missed = session.execute(
            select(PlanItemModel).join(PlanDayModel).where(PlanDayModel.date == T0)
        ).scalar_one()
        assert not missed.is_completed
        assert missed.carried_over_at is not None


def test_replans_do_not_recount_carried_items(tmp_path) -> None:
    _setup_db(tmp_path)
    _seed(topics=(("t1", 4.0, []),))
    generate_plan(USER, today=T0)
    first = recreate_plan(USER, today=T0 + timedelta(days=1))
    assert first.metrics.missed_hours_carried == 2.0

    summary = analyze_missed_days(USER, today=T0 + timedelta(days=2))
    assert [day.date for day in summary.days] == [T0 + timedelta(days=1)]
    assert summary.total_missed_hours == 2.0

    second = recreate_plan(USER, today=T0 + timedelta(days=2))

    assert second.metrics.missed_hours_carried == 2.0
    carried = [item for item in second.items if item.is_carryover]
    assert [(item.date, item.hours) for item in carried] == [(T0 + timedelta(days=2), 2.0)]
    assert analyze_missed_days(USER, today=T0 + timedelta(days=2)).days == []


def test_topic_done_once_completed_hours_cover_estimate(tmp_path) -> None:
    _setup_db(tmp_path)
    _seed(topics=(("t1", 3.0, []),))
    generate_plan(USER, today=T0)
    with session_scope() as session:
        session.get(TopicModel, "t1").estimated_hours = 2.0
    first_item = get_plan(USER).days[0].items[0]

    toggle_item_completion(first_item.id, True)

    with session_scope(commit=False) as session:
        assert session.get(TopicModel, "t1").status == "done"


def test_out_of_range_study_days_are_clamped(tmp_path) -> None:
    _setup_db(tmp_path)
    _seed()
    with session_scope() as session:
        session.get(StudyPreferencesModel, USER).study_days_per_week = 9

    result = generate_plan(USER, today=T0)

    assert result.days
    assert not any(day.is_day_off for day in result.days)


def test_completed_items_today_survive_regeneration(tmp_path) -> None:
    _setup_db(tmp_path)
    _seed(daily_hours=3.0, topics=(("t1", 1.0, []), ("t2", 4.0, [])))
    generate_plan(USER, today=T0)
    today_items = get_plan(USER).days[0].items
    finished = today_items[0]
    toggle_item_completion(finished.id, True)

    generate_plan(USER, today=T0)

    today = get_plan(USER).days[0]
    assert today.items[0].id == finished.id
    assert today.items[0].is_completed
    assert today.total_hours <= today.capacity_hours + 1e-6
    assert today.capacity_hours == 3.0
    assert sum(item.hours for item in today.items) == pytest.approx(today.total_hours)
    assert {item.order_index for item in today.items} == set(range(len(today.items)))


def test_nothing_to_plan_without_courses(tmp_path) -> None:
    _setup_db(tmp_path)
    events = _collect_events()

    with pytest.raises(NoHorizonError) as excinfo:
        generate_plan("nobody", today=T0)

    assert excinfo.value.reason == "no_active_courses"
    assert events[-1].payload["status"] == "nothing_to_plan"
    assert get_plan("nobody").days == []


def test_persistence_failure_rolls_back(tmp_path, monkeypatch) -> None:
    _setup_db(tmp_path)
    _seed()

    def _boom(*_args, **_kwargs):
        raise OperationalError("INSERT INTO plan_runs", {}, Exception("disk full"))

    monkeypatch.setattr(plan_repository, "record_run", _boom)

    with pytest.raises(PersistenceError):
        generate_plan(USER, today=T0)

    with session_scope(commit=False) as session:
        assert session.execute(select(func.count(PlanDayModel.id))).scalar_one() == 0


def test_concurrent_run_for_same_user_is_rejected(tmp_path, monkeypatch) -> None:
    _setup_db(tmp_path)
    _seed()
    monkeypatch.setenv("STUDYPLAN_LOCK_TIMEOUT_SECONDS", "0")
    get_settings.cache_clear()

    with plan_locks.hold(USER, timeout=0):
        with pytest.raises(PlanBusyError):
            generate_plan(USER, today=T0)

    assert generate_plan(USER, today=T0).plan_version == 1


def test_analyze_missed_days_counts_incomplete_items(tmp_path) -> None:
    _setup_db(tmp_path)
    _seed()
    generate_plan(USER, today=T0)
    first_day_item = get_plan(USER).days[0].items[0]
    toggle_item_completion(first_day_item.id, True)

    summary = analyze_missed_days(USER, today=T0 + timedelta(days=3))

    assert summary.window_start == T0 + timedelta(days=3) - timedelta(days=7)
    assert [day.date for day in summary.days] == [T0 + timedelta(days=1), T0 + timedelta(days=2)]
    assert summary.total_missed_items == 2
    assert summary.total_missed_hours == pytest.approx(3.0)


def test_resolve_today_falls_back_to_utc_for_unknown_zone() -> None:
    from datetime import datetime, timezone

    late_evening = datetime(2026, 3, 2, 23, 30, tzinfo=timezone.utc)
    assert resolve_today("Asia/Tokyo", now=late_evening) == date(2026, 3, 3)
    assert resolve_today("Not/AZone", now=late_evening) == date(2026, 3, 2)
    assert resolve_today(None, now=late_evening) == date(2026, 3, 2)
