"""Database-backed study plan repository."""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Dict, List, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from ..db.models import (
    CourseModel,
    PlanDayModel,
    PlanItemModel,
    PlanRunModel,
    StudyPreferencesModel,
    TopicModel,
)
from ..plan_models import PlanDayPayload, PlanItemPayload, PlanRunPayload, PlanSnapshot
from ..scheduling.engine import PlanInputs
from ..scheduling.models import (
    Course,
    ExistingPlanItem,
    PlanMetrics,
    PlanMode,
    PlannedItem,
    PlanResult,
    StudyPreferences,
    Topic,
)

DEFAULT_TOPIC_HOURS = 1.5
DEFAULT_TOPIC_WEIGHT = 3
HOURS_EPSILON = 1e-6

logger = logging.getLogger(__name__)


class PlanRepository:
    """Reads planning inputs and writes plan windows for a single user."""

    def load_inputs(
        self,
        session: Session,
        user_id: str,
        *,
        default_daily_hours: float = 3.0,
        lock: bool = False,
    ) -> PlanInputs:
        stmt = select(StudyPreferencesModel).where(StudyPreferencesModel.user_id == user_id)
        if lock:
            # Serialises concurrent writers across workers; SQLite ignores it.
            stmt = stmt.with_for_update()
        prefs_model = session.execute(stmt).scalar_one_or_none()

        courses = session.execute(
            select(CourseModel).where(CourseModel.user_id == user_id).order_by(CourseModel.id)
        ).scalars().all()
        topics = session.execute(
            select(TopicModel)
            .join(CourseModel, TopicModel.course_id == CourseModel.id)
            .where(CourseModel.user_id == user_id)
            .order_by(TopicModel.course_id, TopicModel.order_index, TopicModel.id)
        ).scalars().all()
        rows = session.execute(
            select(PlanItemModel, PlanDayModel.date)
            .join(PlanDayModel, PlanItemModel.plan_day_id == PlanDayModel.id)
            .where(PlanDayModel.user_id == user_id)
            .order_by(PlanDayModel.date, PlanItemModel.order_index)
        ).all()

        return PlanInputs(
            courses=[self._course_to_domain(model) for model in courses],
            topics=[self._topic_to_domain(model) for model in topics],
            preferences=self._preferences_to_domain(prefs_model, default_daily_hours),
            existing_items=[
                ExistingPlanItem(
                    id=item.id,
                    date=day_date,
                    course_id=item.course_id,
                    topic_id=item.topic_id,
                    hours=item.hours,
                    is_completed=item.is_completed,
                    is_carried_over=item.carried_over_at is not None,
                )
                for item, day_date in rows
            ],
        )

    def user_timezone(self, session: Session, user_id: str) -> Optional[str]:
        return session.execute(
            select(StudyPreferencesModel.timezone).where(StudyPreferencesModel.user_id == user_id)
        ).scalar_one_or_none()

    def next_plan_version(self, session: Session, user_id: str) -> int:
        current = session.execute(
            select(func.max(PlanDayModel.plan_version)).where(PlanDayModel.user_id == user_id)
        ).scalar_one_or_none()
        return (current or 0) + 1

    def replace_future_window(
        self,
        session: Session,
        user_id: str,
        result: PlanResult,
        plan_version: int,
    ) -> List[PlanDayModel]:
        """Swap every incomplete item dated today or later for the new plan.

        Days before ``result.today`` are left alone. Completed items are kept
        and the new items for their day are appended after them.
        """
        existing = session.execute(
            select(PlanDayModel)
            .options(selectinload(PlanDayModel.items))
            .where(PlanDayModel.user_id == user_id, PlanDayModel.date >= result.today)
            .order_by(PlanDayModel.date)
        ).scalars().all()

        kept: Dict[date, PlanDayModel] = {}
        for day in existing:
            for item in list(day.items):
                if not item.is_completed:
                    day.items.remove(item)
            if day.items:
                kept[day.date] = day
            else:
                session.delete(day)
        session.flush()

        written: List[PlanDayModel] = []
        planned_dates = set()
        for planned in result.days:
            planned_dates.add(planned.date)
            day = kept.get(planned.date)
            completed_hours = 0.0
            offset = 0
            if day is None:
                day = PlanDayModel(user_id=user_id, date=planned.date)
                session.add(day)
            else:
                completed_hours = sum(item.hours for item in day.items)
                offset = max(item.order_index for item in day.items) + 1

            day.is_day_off = planned.is_day_off
            day.capacity_hours = round(planned.capacity_hours + (0.0 if planned.is_day_off else completed_hours), 2)
            day.total_hours = round(completed_hours + planned.total_hours, 2)
            day.plan_version = plan_version
            for item in planned.items:
                day.items.append(self._item_to_model(user_id, item, offset))
            written.append(day)

        for day_date, day in kept.items():
            if day_date not in planned_dates:
                day.total_hours = round(sum(item.hours for item in day.items), 2)

        session.flush()
        return written

    def record_run(
        self,
        session: Session,
        user_id: str,
        mode: PlanMode,
        plan_version: int,
        result: PlanResult,
    ) -> PlanRunModel:
        run = PlanRunModel(
            user_id=user_id,
            mode=mode,
            plan_version=plan_version,
            metrics=result.metrics.model_dump(mode="json", exclude={"warnings"}),
            warnings=[warning.model_dump(mode="json") for warning in result.metrics.warnings],
        )
        session.add(run)
        session.flush()
        return run

    def get_plan(self, session: Session, user_id: str, *, start: Optional[date] = None) -> PlanSnapshot:
        stmt = (
            select(PlanDayModel)
            .options(selectinload(PlanDayModel.items))
            .where(PlanDayModel.user_id == user_id)
            .order_by(PlanDayModel.date)
        )
        if start is not None:
            stmt = stmt.where(PlanDayModel.date >= start)
        days = session.execute(stmt).scalars().all()
        last_run = session.execute(
            select(PlanRunModel)
            .where(PlanRunModel.user_id == user_id)
            .order_by(PlanRunModel.created_at.desc(), PlanRunModel.id.desc())
            .limit(1)
        ).scalar_one_or_none()
        return PlanSnapshot(
            user_id=user_id,
            plan_version=max((day.plan_version for day in days), default=None),
            days=[self._day_to_payload(day) for day in days],
            last_run=self._run_to_payload(last_run) if last_run is not None else None,
        )

    def set_item_completion(
        self,
        session: Session,
        item_id: str,
        completed: bool,
        *,
        now: Optional[datetime] = None,
    ) -> PlanItemModel:
        item = session.get(PlanItemModel, item_id)
        if item is None:
            raise LookupError(f"Plan item {item_id} not found.")
        item.is_completed = completed
        item.completed_at = (now or datetime.now(timezone.utc)) if completed else None
        session.flush()
        return item

    def mark_carried_over(
        self,
        session: Session,
        item_ids: Sequence[str],
        *,
        now: Optional[datetime] = None,
    ) -> int:
        """Stamp missed items a replan has accounted for; completed items are left alone."""
        if not item_ids:
            return 0
        stamp = now or datetime.now(timezone.utc)
        items = session.execute(
            select(PlanItemModel).where(
                PlanItemModel.id.in_(list(item_ids)),
                PlanItemModel.is_completed.is_(False),
                PlanItemModel.carried_over_at.is_(None),
            )
        ).scalars().all()
        for item in items:
            item.carried_over_at = stamp
        session.flush()
        return len(items)

    def sync_topic_status(self, session: Session, topic_id: str) -> Optional[str]:
        """Mark a topic done once its completed hours cover the estimate.

        A topic whose outstanding items are all completed is done as well.
        Missed items already carried into a replan no longer count as
        outstanding.
        """
        topic = session.get(TopicModel, topic_id)
        if topic is None:
            return None
        flags = session.execute(
            select(PlanItemModel.is_completed).where(
                PlanItemModel.topic_id == topic_id,
                PlanItemModel.carried_over_at.is_(None),
            )
        ).scalars().all()
        completed_hours = session.execute(
            select(func.coalesce(func.sum(PlanItemModel.hours), 0.0)).where(
                PlanItemModel.topic_id == topic_id,
                PlanItemModel.is_completed.is_(True),
            )
        ).scalar_one()
        estimate = topic.estimated_hours if topic.estimated_hours is not None else DEFAULT_TOPIC_HOURS
        all_outstanding_done = bool(flags) and all(flags)
        covered = completed_hours > 0 and completed_hours + HOURS_EPSILON >= estimate
        topic.status = "done" if all_outstanding_done or covered else "in_progress"
        session.flush()
        return topic.status

    def days_between(self, session: Session, user_id: str, start: date, end: date) -> List[PlanDayModel]:
        """Study days (not days off) in ``[start, end)`` with their items loaded."""
        return list(
            session.execute(
                select(PlanDayModel)
                .options(selectinload(PlanDayModel.items))
                .where(
                    PlanDayModel.user_id == user_id,
                    PlanDayModel.date >= start,
                    PlanDayModel.date < end,
                    PlanDayModel.is_day_off.is_(False),
                )
                .order_by(PlanDayModel.date)
            ).scalars().all()
        )

    @staticmethod
    def _course_to_domain(model: CourseModel) -> Course:
        return Course(id=model.id, title=model.title or "", exam_date=model.exam_date, status=model.status)

    @staticmethod
    def _topic_to_domain(model: TopicModel) -> Topic:
        return Topic(
            id=model.id,
            course_id=model.course_id,
            title=model.title or "",
            estimated_hours=model.estimated_hours if model.estimated_hours is not None else DEFAULT_TOPIC_HOURS,
            difficulty_weight=model.difficulty_weight if model.difficulty_weight is not None else DEFAULT_TOPIC_WEIGHT,
            exam_importance=model.exam_importance if model.exam_importance is not None else DEFAULT_TOPIC_WEIGHT,
            prerequisite_ids=list(model.prerequisite_ids or []),
            status=model.status,
            order_index=model.order_index,
            mastery_score=model.mastery_score,
        )

    @staticmethod
    def _preferences_to_domain(model: Optional[StudyPreferencesModel], default_daily_hours: float) -> StudyPreferences:
        if model is None:
            return StudyPreferences(daily_study_hours=default_daily_hours)
        study_days = min(max(model.study_days_per_week, 0), 7)
        if study_days != model.study_days_per_week:
            logger.warning(
                "Clamping study_days_per_week=%s to %s for user %s.",
                model.study_days_per_week,
                study_days,
                model.user_id,
            )
        return StudyPreferences(
            daily_study_hours=model.daily_study_hours,
            study_days_per_week=study_days,
            days_off=list(model.days_off or []),
            timezone=model.timezone,
        )

    @staticmethod
    def _item_to_model(user_id: str, item: PlannedItem, offset: int) -> PlanItemModel:
        explanation = item.explanation
        return PlanItemModel(
            user_id=user_id,
            course_id=item.course_id,
            topic_id=item.topic_id,
            hours=item.hours,
            order_index=offset + item.order_index,
            is_completed=False,
            is_review=item.is_review,
            is_carryover=item.is_carryover,
            reason_codes=list(explanation.reason_codes),
            explanation_text=explanation.explanation_text,
            exam_proximity_days=explanation.exam_proximity_days,
            load_balance_note=explanation.load_balance_note,
            prereq_topic_ids=list(explanation.prereq_topic_ids),
            yield_weight=explanation.yield_weight,
            mastery_snapshot=explanation.mastery_snapshot,
        )

    @staticmethod
    def _day_to_payload(model: PlanDayModel) -> PlanDayPayload:
        return PlanDayPayload(
            id=model.id,
            date=model.date,
            is_day_off=model.is_day_off,
            capacity_hours=model.capacity_hours,
            total_hours=model.total_hours,
            plan_version=model.plan_version,
            items=[
                PlanItemPayload(
                    id=item.id,
                    course_id=item.course_id,
                    topic_id=item.topic_id,
                    hours=item.hours,
                    order_index=item.order_index,
                    is_completed=item.is_completed,
                    completed_at=item.completed_at,
                    is_review=item.is_review,
                    is_carryover=item.is_carryover,
                    reason_codes=list(item.reason_codes or []),
                    explanation_text=item.explanation_text or "",
                    exam_proximity_days=item.exam_proximity_days,
                    load_balance_note=item.load_balance_note,
                    prereq_topic_ids=list(item.prereq_topic_ids or []),
                    yield_weight=item.yield_weight,
                    mastery_snapshot=item.mastery_snapshot,
                )
                for item in sorted(model.items, key=lambda item: item.order_index)
            ],
        )

    @staticmethod
    def _run_to_payload(model: PlanRunModel) -> PlanRunPayload:
        metrics = dict(model.metrics or {})
        metrics["warnings"] = list(model.warnings or [])
        return PlanRunPayload(
            mode=model.mode,
            plan_version=model.plan_version,
            created_at=model.created_at,
            metrics=PlanMetrics.model_validate(metrics),
            warnings=list(model.warnings or []),
        )


plan_repository = PlanRepository()


__all__ = ["DEFAULT_TOPIC_HOURS", "DEFAULT_TOPIC_WEIGHT", "HOURS_EPSILON", "PlanRepository", "plan_repository"]
