"""Pydantic payloads returned by the plan endpoints."""

from __future__ import annotations

from datetime import date, datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from .scheduling.errors import NoHorizonReason
from .scheduling.models import PlanMetrics, PlanMode, PlannedDay, PlanWarning


class PlanItemPayload(BaseModel):
    id: str
    course_id: str
    topic_id: Optional[str] = None
    hours: float
    order_index: int
    is_completed: bool = False
    completed_at: Optional[datetime] = None
    is_review: bool = False
    is_carryover: bool = False
    reason_codes: List[str] = Field(default_factory=list)
    explanation_text: str = ""
    exam_proximity_days: Optional[int] = None
    load_balance_note: Optional[str] = None
    prereq_topic_ids: List[str] = Field(default_factory=list)
    yield_weight: float = 0.0
    mastery_snapshot: Optional[int] = None


class PlanDayPayload(BaseModel):
    id: str
    date: date
    is_day_off: bool
    capacity_hours: float
    total_hours: float
    plan_version: int
    items: List[PlanItemPayload] = Field(default_factory=list)


class PlanRunPayload(BaseModel):
    mode: PlanMode
    plan_version: int
    created_at: datetime
    metrics: PlanMetrics
    warnings: List[PlanWarning] = Field(default_factory=list)


class PlanSnapshot(BaseModel):
    user_id: str
    plan_version: Optional[int] = None
    days: List[PlanDayPayload] = Field(default_factory=list)
    last_run: Optional[PlanRunPayload] = None


class GenerationResponse(BaseModel):
    status: Literal["ok", "nothing_to_plan"] = "ok"
    mode: PlanMode
    plan_version: Optional[int] = None
    reason: Optional[NoHorizonReason] = None
    message: Optional[str] = None
    horizon_end: Optional[date] = None
    days: List[PlannedDay] = Field(default_factory=list)
    metrics: Optional[PlanMetrics] = None


class MissedDayPayload(BaseModel):
    date: date
    missed_items: int
    total_items: int
    missed_hours: float


class MissedDaysSummary(BaseModel):
    user_id: str
    window_start: date
    window_end: date
    days: List[MissedDayPayload] = Field(default_factory=list)
    total_missed_items: int = 0
    total_missed_hours: float = 0.0


class ItemCompletionRequest(BaseModel):
    completed: bool


__all__ = [
    "GenerationResponse",
    "ItemCompletionRequest",
    "MissedDayPayload",
    "MissedDaysSummary",
    "PlanDayPayload",
    "PlanItemPayload",
    "PlanRunPayload",
    "PlanSnapshot",
]
