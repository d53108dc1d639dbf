"""Study plan REST endpoints."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Response, status

from .locks import PlanBusyError
from .plan_models import GenerationResponse, ItemCompletionRequest, MissedDaysSummary, PlanSnapshot
from .plan_service import (
    analyze_missed_days,
    generate_plan,
    get_plan,
    recreate_plan,
    toggle_item_completion,
)
from .scheduling.errors import NoHorizonError, PersistenceError
from .scheduling.models import PlanMode, PlanResult

router = APIRouter(prefix="/api/plans", tags=["plans"])
logger = logging.getLogger(__name__)


def _generation_response(result: PlanResult) -> GenerationResponse:
    return GenerationResponse(
        status="ok",
        mode=result.mode,
        plan_version=result.plan_version,
        horizon_end=result.horizon_end,
        days=result.days,
        metrics=result.metrics,
    )


def _run_planner(user_id: str, mode: PlanMode) -> GenerationResponse:
    planner = generate_plan if mode == "generate" else recreate_plan
    try:
        result = planner(user_id)
    except NoHorizonError as exc:
        return GenerationResponse(status="nothing_to_plan", mode=mode, reason=exc.reason, message=str(exc))
    except PlanBusyError as exc:
        logger.warning("Rejected concurrent %s run for %s", mode, user_id)
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except PersistenceError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Unable to save the study plan. Try again shortly.",
        ) from exc
    return _generation_response(result)


@router.post("/{user_id}/generate", response_model=GenerationResponse)
def generate_plan_endpoint(user_id: str) -> GenerationResponse:
    return _run_planner(user_id, "generate")


@router.post("/{user_id}/recreate", response_model=GenerationResponse)
def recreate_plan_endpoint(user_id: str) -> GenerationResponse:
    return _run_planner(user_id, "recreate")


@router.get("/{user_id}", response_model=PlanSnapshot)
def get_plan_endpoint(user_id: str) -> PlanSnapshot:
    return get_plan(user_id)


@router.get("/{user_id}/missed", response_model=MissedDaysSummary)
def missed_days_endpoint(
    user_id: str,
    window_days: Optional[int] = Query(
        default=None,
        ge=1,
        le=60,
        description="Number of past days to inspect. Defaults to the configured window.",
    ),
) -> MissedDaysSummary:
    return analyze_missed_days(user_id, window_days=window_days)


@router.patch("/items/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
def toggle_item_endpoint(item_id: str, payload: ItemCompletionRequest) -> Response:
    try:
        toggle_item_completion(item_id, payload.completed)
    except LookupError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except PersistenceError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Unable to update the plan item. Try again shortly.",
        ) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


__all__ = ["router"]
