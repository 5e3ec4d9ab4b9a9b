"""
api/routes/v1/atomic_systems.py -- Atomic system and execution routes.

Routes:
  GET    /atomic-systems                        -- list (optional ?identityAreaId=)
  POST   /atomic-systems                        -- create under an owned area (201)
  GET    /atomic-systems/{system_id}            -- detail + executions from the last 30 days
  PUT    /atomic-systems/{system_id}            -- partial update (area is fixed)
  DELETE /atomic-systems/{system_id}            -- soft delete
  POST   /atomic-systems/{system_id}/execute    -- record one execution (201)
  GET    /atomic-systems/{system_id}/executions -- execution log, newest first

Executions are append-only. Recording one never changes the system itself.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from api.models import ApiResponse, ExecuteRequest, ExecutionOut, SystemCreate, SystemOut, SystemUpdate
from api.routes.v1.common import habit_store, store_errors
from auth.dependencies import get_current_principal
from auth.models import Principal
from core.errors import not_found
from habits.models import AtomicSystem, SystemExecution

router = APIRouter()


@router.get("/atomic-systems", response_model=ApiResponse[list[SystemOut]])
def list_systems(
    request: Request,
    identity_area_id: Optional[str] = Query(default=None, alias="identityAreaId"),
    principal: Principal = Depends(get_current_principal),
):
    with store_errors("FETCH_ERROR", "Failed to fetch atomic systems"):
        systems = habit_store(request).list_systems(principal.id, identity_area_id)
    return ApiResponse(data=[SystemOut.from_domain(s) for s in systems])


@router.post("/atomic-systems", response_model=ApiResponse[SystemOut], status_code=201)
def create_system(request: Request, body: SystemCreate, principal: Principal = Depends(get_current_principal)):
    system = AtomicSystem(
        user_id=principal.id,
        identity_area_id=body.identity_area_id,
        name=body.name,
        description=body.description,
        cue=body.cue,
        craving=body.craving,
        response=body.response,
        reward=body.reward,
        frequency=body.frequency,
        time_of_day=body.time_of_day,
        estimated_min=body.estimated_min,
        difficulty=body.difficulty,
        order=body.order,
    )
    with store_errors("CREATE_ERROR", "Failed to create atomic system"):
        created = habit_store(request).create_system(system)
    return ApiResponse(data=SystemOut.from_domain(created, with_executions=True), message="Atomic system created successfully")


@router.get("/atomic-systems/{system_id}", response_model=ApiResponse[SystemOut])
def get_system(request: Request, system_id: str, principal: Principal = Depends(get_current_principal)):
    with store_errors("FETCH_ERROR", "Failed to fetch atomic system"):
        system = habit_store(request).get_system(principal.id, system_id)
    if system is None:
        raise not_found("Atomic system not found")
    return ApiResponse(data=SystemOut.from_domain(system, with_executions=True))


@router.put("/atomic-systems/{system_id}", response_model=ApiResponse[SystemOut])
def update_system(
    request: Request,
    system_id: str,
    body: SystemUpdate,
    principal: Principal = Depends(get_current_principal),
):
    with store_errors("UPDATE_ERROR", "Failed to update atomic system"):
        system = habit_store(request).update_system(principal.id, system_id, **body.changes())
    return ApiResponse(data=SystemOut.from_domain(system, with_executions=True), message="Atomic system updated successfully")


@router.delete("/atomic-systems/{system_id}", response_model=ApiResponse[None])
def delete_system(request: Request, system_id: str, principal: Principal = Depends(get_current_principal)):
    with store_errors("DELETE_ERROR", "Failed to delete atomic system"):
        habit_store(request).delete_system(principal.id, system_id)
    return ApiResponse(message="Atomic system deleted successfully")


# ---------------------------------------------------------------------------
# Executions
# ---------------------------------------------------------------------------


@router.post("/atomic-systems/{system_id}/execute", response_model=ApiResponse[ExecutionOut], status_code=201)
def execute_system(
    request: Request,
    system_id: str,
    body: ExecuteRequest,
    principal: Principal = Depends(get_current_principal),
):
    """Record that the caller performed the system just now."""
    execution = SystemExecution(
        system_id=system_id,
        user_id=principal.id,
        quality=body.quality,
        notes=body.notes,
        strengthens_identity=body.strengthens_identity,
    )
    with store_errors("EXECUTION_ERROR", "Failed to record system execution"):
        created = habit_store(request).create_execution(execution)
    return ApiResponse(data=ExecutionOut.from_domain(created), message="System execution recorded successfully")


@router.get("/atomic-systems/{system_id}/executions", response_model=ApiResponse[list[ExecutionOut]])
def list_executions(
    request: Request,
    system_id: str,
    limit: int = Query(default=50, ge=1, le=200),
    principal: Principal = Depends(get_current_principal),
):
    with store_errors("FETCH_ERROR", "Failed to fetch system executions"):
        executions = habit_store(request).list_executions(principal.id, system_id, limit=limit)
    if executions is None:
        raise not_found("Atomic system not found")
    return ApiResponse(data=[ExecutionOut.from_domain(e) for e in executions])
