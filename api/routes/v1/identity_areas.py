"""
api/routes/v1/identity_areas.py -- Identity area routes.

Routes (in registration order to avoid FastAPI path capture conflicts):
  GET    /identity-areas           -- list active areas with their systems
  POST   /identity-areas           -- create area (201)
  POST   /identity-areas/reorder   -- apply explicit orders atomically
  GET    /identity-areas/{area_id} -- one area with its systems
  PUT    /identity-areas/{area_id} -- partial update
  DELETE /identity-areas/{area_id} -- soft delete; refused while systems are active

All routes require a bearer access token. Every store call is scoped by the
caller's id, so another user's area is reported as NOT_FOUND.
"""

from fastapi import APIRouter, Depends, Request

from api.models import ApiResponse, AreaCreate, AreaOut, AreaReorder, AreaUpdate
from api.routes.v1.common import habit_store, store_errors
from auth.dependencies import get_current_principal
from auth.models import Principal
from core.errors import not_found
from habits.models import IdentityArea

router = APIRouter()


@router.get("/identity-areas", response_model=ApiResponse[list[AreaOut]])
def list_areas(request: Request, principal: Principal = Depends(get_current_principal)):
    with store_errors("FETCH_ERROR", "Failed to fetch identity areas"):
        areas = habit_store(request).list_areas(principal.id)
    return ApiResponse(data=[AreaOut.from_domain(a) for a in areas])


@router.post("/identity-areas", response_model=ApiResponse[AreaOut], status_code=201)
def create_area(request: Request, body: AreaCreate, principal: Principal = Depends(get_current_principal)):
    area = IdentityArea(
        user_id=principal.id,
        name=body.name,
        description=body.description,
        color=body.color,
        order=body.order,
    )
    with store_errors("CREATE_ERROR", "Failed to create identity area"):
        created = habit_store(request).create_area(area)
    return ApiResponse(data=AreaOut.from_domain(created), message="Identity area created successfully")


@router.post("/identity-areas/reorder", response_model=ApiResponse[list[AreaOut]])
def reorder_areas(request: Request, body: AreaReorder, principal: Principal = Depends(get_current_principal)):
    """Set explicit orders. Either every listed area is updated or none is."""
    pairs = [(item.id, item.order) for item in body.areas]
    with store_errors("REORDER_ERROR", "Failed to reorder identity areas"):
        areas = habit_store(request).reorder_areas(principal.id, pairs)
    return ApiResponse(data=[AreaOut.from_domain(a) for a in areas], message="Identity areas reordered successfully")


@router.get("/identity-areas/{area_id}", response_model=ApiResponse[AreaOut])
def get_area(request: Request, area_id: str, principal: Principal = Depends(get_current_principal)):
    with store_errors("FETCH_ERROR", "Failed to fetch identity area"):
        area = habit_store(request).get_area(principal.id, area_id)
    if area is None:
        raise not_found("Identity area not found")
    return ApiResponse(data=AreaOut.from_domain(area))


@router.put("/identity-areas/{area_id}", response_model=ApiResponse[AreaOut])
def update_area(
    request: Request,
    area_id: str,
    body: AreaUpdate,
    principal: Principal = Depends(get_current_principal),
):
    with store_errors("UPDATE_ERROR", "Failed to update identity area"):
        area = habit_store(request).update_area(principal.id, area_id, **body.changes())
    return ApiResponse(data=AreaOut.from_domain(area), message="Identity area updated successfully")


@router.delete("/identity-areas/{area_id}", response_model=ApiResponse[None])
def delete_area(request: Request, area_id: str, principal: Principal = Depends(get_current_principal)):
    with store_errors("DELETE_ERROR", "Failed to delete identity area"):
        habit_store(request).delete_area(principal.id, area_id)
    return ApiResponse(message="Identity area deleted successfully")
