"""
api/routes/v1/identity_goals.py -- Identity goal routes.

Routes (in registration order to avoid FastAPI path capture conflicts):
  GET    /identity-goals                              -- list (optional ?identityAreaId=)
  POST   /identity-goals                              -- create under an owned area (201)
  POST   /identity-goals/reorder/{identity_area_id}   -- position in goalIds becomes order
  GET    /identity-goals/{goal_id}                    -- one goal
  PUT    /identity-goals/{goal_id}                    -- partial update, may move areas
  PATCH  /identity-goals/{goal_id}/progress           -- record progress / achievement
  DELETE /identity-goals/{goal_id}                    -- soft delete
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from api.models import ApiResponse, GoalCreate, GoalOut, GoalReorder, GoalUpdate, ProgressUpdate
from api.routes.v1.common import habit_store, store_errors
from auth.dependencies import get_current_principal
from auth.models import Principal
from core.errors import not_found
from habits.models import IdentityGoal

router = APIRouter()


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


@router.get("/identity-goals", response_model=ApiResponse[list[GoalOut]])
def list_goals(
    request: Request,
    identity_area_id: Optional[str] = Query(default=None, alias="identityAreaId"),
    principal: Principal = Depends(get_current_principal),
):
    with store_errors("FETCH_ERROR", "Failed to fetch identity goals"):
        goals = habit_store(request).list_goals(principal.id, identity_area_id)
    return ApiResponse(data=[GoalOut.from_domain(g) for g in goals])


@router.post("/identity-goals", response_model=ApiResponse[GoalOut], status_code=201)
def create_goal(request: Request, body: GoalCreate, principal: Principal = Depends(get_current_principal)):
    goal = IdentityGoal(
        user_id=principal.id,
        identity_area_id=body.identity_area_id,
        title=body.title,
        description=body.description,
        target_value=body.target_value,
        current_value=body.current_value,
        unit=body.unit,
        goal_type=body.goal_type,
        target_date=_iso(body.target_date),
        color=body.color,
        order=body.order,
    )
    with store_errors("CREATE_ERROR", "Failed to create identity goal"):
        created = habit_store(request).create_goal(goal)
    return ApiResponse(data=GoalOut.from_domain(created), message="Identity goal created successfully")


@router.post("/identity-goals/reorder/{identity_area_id}", response_model=ApiResponse[list[GoalOut]])
def reorder_goals(
    request: Request,
    identity_area_id: str,
    body: GoalReorder,
    principal: Principal = Depends(get_current_principal),
):
    with store_errors("REORDER_ERROR", "Failed to reorder identity goals"):
        goals = habit_store(request).reorder_goals(principal.id, identity_area_id, body.goal_ids)
    return ApiResponse(data=[GoalOut.from_domain(g) for g in goals], message="Identity goals reordered successfully")


@router.get("/identity-goals/{goal_id}", response_model=ApiResponse[GoalOut])
def get_goal(request: Request, goal_id: str, principal: Principal = Depends(get_current_principal)):
    with store_errors("FETCH_ERROR", "Failed to fetch identity goal"):
        goal = habit_store(request).get_goal(principal.id, goal_id)
    if goal is None:
        raise not_found("Identity goal not found")
    return ApiResponse(data=GoalOut.from_domain(goal))


@router.put("/identity-goals/{goal_id}", response_model=ApiResponse[GoalOut])
def update_goal(
    request: Request,
    goal_id: str,
    body: GoalUpdate,
    principal: Principal = Depends(get_current_principal),
):
    fields = body.changes()
    if "target_date" in fields:
        fields["target_date"] = _iso(fields["target_date"])
    with store_errors("UPDATE_ERROR", "Failed to update identity goal"):
        goal = habit_store(request).update_goal(principal.id, goal_id, **fields)
    return ApiResponse(data=GoalOut.from_domain(goal), message="Identity goal updated successfully")


@router.patch("/identity-goals/{goal_id}/progress", response_model=ApiResponse[GoalOut])
def update_progress(
    request: Request,
    goal_id: str,
    body: ProgressUpdate,
    principal: Principal = Depends(get_current_principal),
):
    """Record the current value. Omitting isAchieved counts as not achieved."""
    with store_errors("PROGRESS_ERROR", "Failed to update goal progress"):
        goal = habit_store(request).update_goal_progress(principal.id, goal_id, body.current_value, body.is_achieved)
    return ApiResponse(data=GoalOut.from_domain(goal), message="Goal progress updated successfully")


@router.delete("/identity-goals/{goal_id}", response_model=ApiResponse[None])
def delete_goal(request: Request, goal_id: str, principal: Principal = Depends(get_current_principal)):
    with store_errors("DELETE_ERROR", "Failed to delete identity goal"):
        habit_store(request).delete_goal(principal.id, goal_id)
    return ApiResponse(message="Identity goal deleted successfully")
