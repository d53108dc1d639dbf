"""Plan generation entry points: load inputs, run the engine, persist the window."""

from __future__ import annotations

import logging
import time
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .config import get_settings
from .db.session import session_scope
from .locks import plan_locks
from .plan_models import MissedDayPayload, MissedDaysSummary, PlanSnapshot
from .repositories.plans import plan_repository
from .scheduling.engine import EngineOptions, PlanInputs, build_plan
from .scheduling.errors import NoHorizonError, PersistenceError
from .scheduling.models import PlanMode, PlanResult
from .scheduling.rescheduler import replan
from .telemetry import emit_event

logger = logging.getLogger(__name__)

Planner = Callable[[PlanInputs, date, EngineOptions], PlanResult]

_PLANNERS: Dict[PlanMode, Planner] = {
    "generate": build_plan,
    "recreate": replan,
}
_EVENT_NAMES: Dict[PlanMode, str] = {
    "generate": "plan_generation",
    "recreate": "plan_recreation",
}


def resolve_today(timezone_name: Optional[str], *, now: Optional[datetime] = None) -> date:
    """Current date in the learner's timezone, UTC when unknown."""
    tz = timezone.utc
    if timezone_name:
        try:
            tz = ZoneInfo(timezone_name)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("Unknown timezone %s; falling back to UTC.", timezone_name)
    current = now or datetime.now(timezone.utc)
    return current.astimezone(tz).date()


def generate_plan(user_id: str, today: Optional[date] = None) -> PlanResult:
    """Regenerate the plan from ``today`` onward; earlier days are left untouched."""
    return _run(user_id, "generate", today)


def recreate_plan(user_id: str, today: Optional[date] = None) -> PlanResult:
    """Replan the future window, carrying missed hours ahead of fresh work."""
    return _run(user_id, "recreate", today)


def _run(user_id: str, mode: PlanMode, today: Optional[date]) -> PlanResult:
    settings = get_settings()
    options = EngineOptions.from_settings(settings)
    event_name = _EVENT_NAMES[mode]
    started_at = time.perf_counter()

    def _duration_ms() -> float:
        return round((time.perf_counter() - started_at) * 1000.0, 2)

    with plan_locks.hold(user_id, settings.plan_lock_timeout_seconds):
        try:
            with session_scope() as session:
                inputs = plan_repository.load_inputs(
                    session,
                    user_id,
                    default_daily_hours=settings.default_daily_study_hours,
                    lock=True,
                )
                run_today = today or resolve_today(inputs.preferences.timezone)
                result = _PLANNERS[mode](inputs, run_today, options)
                plan_version = plan_repository.next_plan_version(session, user_id)
                plan_repository.replace_future_window(session, user_id, result, plan_version)
                plan_repository.mark_carried_over(session, result.carried_item_ids)
                plan_repository.record_run(session, user_id, mode, plan_version, result)
        except NoHorizonError as exc:
            logger.info("Nothing to plan for %s (%s): %s", user_id, exc.reason, exc)
            emit_event(
                event_name,
                user_id=user_id,
                status="nothing_to_plan",
                reason=exc.reason,
                duration_ms=_duration_ms(),
            )
            raise
        except SQLAlchemyError as exc:
            logger.exception("Failed to persist %s plan for %s", mode, user_id)
            emit_event(
                event_name,
                user_id=user_id,
                status="error",
                duration_ms=_duration_ms(),
                error=str(exc),
                exception_type=exc.__class__.__name__,
            )
            raise PersistenceError(f"Could not save the study plan for {user_id}.") from exc
        except Exception as exc:  # noqa: BLE001
            logger.exception("Failed to build %s plan for %s", mode, user_id)
            emit_event(
                event_name,
                user_id=user_id,
                status="error",
                duration_ms=_duration_ms(),
                error=str(exc),
                exception_type=exc.__class__.__name__,
            )
            raise

    metrics = result.metrics
    emit_event(
        event_name,
        user_id=user_id,
        status="success",
        duration_ms=_duration_ms(),
        today=run_today,
        plan_version=plan_version,
        coverage_ratio=round(metrics.coverage_ratio, 4),
        is_priority_mode=metrics.is_priority_mode,
        items=len(result.items),
        warnings=[warning.code for warning in metrics.warnings],
        missed_hours_carried=metrics.missed_hours_carried,
    )
    return result.model_copy(update={"plan_version": plan_version})


def toggle_item_completion(item_id: str, completed: bool, *, now: Optional[datetime] = None) -> None:
    """Flip one item's completion flag and resync its topic status.

    Raises ``LookupError`` when the item does not exist.
    """
    try:
        with session_scope() as session:
            item = plan_repository.set_item_completion(session, item_id, completed, now=now)
            user_id = item.user_id
            topic_id = item.topic_id
            topic_status = plan_repository.sync_topic_status(session, topic_id) if topic_id else None
    except SQLAlchemyError as exc:
        logger.exception("Failed to toggle plan item %s", item_id)
        raise PersistenceError(f"Could not update plan item {item_id}.") from exc

    emit_event(
        "plan_item_toggled",
        user_id=user_id,
        item_id=item_id,
        completed=completed,
        topic_id=topic_id,
        topic_status=topic_status,
    )


def get_plan(user_id: str) -> PlanSnapshot:
    with session_scope(commit=False) as session:
        return plan_repository.get_plan(session, user_id)


def analyze_missed_days(
    user_id: str,
    today: Optional[date] = None,
    window_days: Optional[int] = None,
) -> MissedDaysSummary:
    """Study days in the trailing window that still hold incomplete items not yet carried into a replan."""
    window = window_days or get_settings().missed_window_days
    with session_scope(commit=False) as session:
        if today is None:
            today = resolve_today(plan_repository.user_timezone(session, user_id))
        start = today - timedelta(days=window)
        days = plan_repository.days_between(session, user_id, start, today)

        missed = []
        for day in days:
            incomplete = [item for item in day.items if not item.is_completed and item.carried_over_at is None]
            if not incomplete:
                continue
            missed.append(
                MissedDayPayload(
                    date=day.date,
                    missed_items=len(incomplete),
                    total_items=len(day.items),
                    missed_hours=round(sum(item.hours for item in incomplete), 2),
                )
            )

    return MissedDaysSummary(
        user_id=user_id,
        window_start=start,
        window_end=today,
        days=missed,
        total_missed_items=sum(day.missed_items for day in missed),
        total_missed_hours=round(sum(day.missed_hours for day in missed), 2),
    )


__all__ = [
    "analyze_missed_days",
    "generate_plan",
    "get_plan",
    "recreate_plan",
    "resolve_today",
    "toggle_item_completion",
]
