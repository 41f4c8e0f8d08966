# backend/fieldshare/api/routers/fields.py
from fastapi import APIRouter, Depends, HTTPException, Query
from typing import List, Optional

from fieldshare.api.deps import get_access_service, get_current_user_id, get_field_service, get_proximity_engine
from fieldshare.schemas.access import PermissionNeededOut
from fieldshare.schemas.activity import FieldUpdateOut
from fieldshare.schemas.commons import OverlapCheckIn, OverlapCheckOut
from fieldshare.schemas.field import FieldIn, FieldUpdate
from fieldshare.schemas.views import AdjacentFieldOut, ApprovedView, FieldView, OwnerView
from fieldshare.services.access.visibility import AccessService, Visibility
from fieldshare.services.fields.service import FieldService
from fieldshare.services.proximity.engine import ProximityEngine

router = APIRouter()


@router.get("")
@router.get("/")
def list_fields(
    user_id: str = Depends(get_current_user_id),
    svc: FieldService = Depends(get_field_service),
) -> List[OwnerView]:
    return svc.list_fields(user_id)


@router.post("", status_code=201)
@router.post("/", status_code=201)
def create_field(
    payload: FieldIn,
    user_id: str = Depends(get_current_user_id),
    svc: FieldService = Depends(get_field_service),
) -> OwnerView:
    field = svc.create_field(user_id, payload)
    return svc.access.project(field, Visibility.OWNER)


# 固定パスは /{field_id} より前に定義すること
@router.post("/check-overlap")
def check_overlap(
    payload: OverlapCheckIn,
    user_id: str = Depends(get_current_user_id),
    engine: ProximityEngine = Depends(get_proximity_engine),
) -> OverlapCheckOut:
    result = engine.check_overlap(payload.geometry, exclude_field_id=payload.exclude_field_id, user_id=user_id)
    return OverlapCheckOut(has_overlap=result.has_overlap, overlapping_fields=result.overlapping_fields)


@router.get("/nearby")
def nearby_fields(
    lon: Optional[float] = None,
    lat: Optional[float] = None,
    radius_m: Optional[float] = None,
    user_id: str = Depends(get_current_user_id),
    svc: FieldService = Depends(get_field_service),
) -> List[FieldView]:
    if (lon is None) != (lat is None):
        raise HTTPException(status_code=400, detail="lon and lat must be given together")
    if lon is not None:
        return svc.fields_near_point(user_id, lon, lat, radius_m)
    return svc.get_nearby_fields(user_id)


@router.get("/permitted")
def permitted_fields(
    user_id: str = Depends(get_current_user_id),
    access: AccessService = Depends(get_access_service),
) -> List[ApprovedView]:
    return access.permitted_fields(user_id)


@router.get("/adjacent-needing-permission")
def adjacent_needing_permission(
    user_id: str = Depends(get_current_user_id),
    access: AccessService = Depends(get_access_service),
) -> List[PermissionNeededOut]:
    return [PermissionNeededOut(**item) for item in access.adjacent_needing_permission(user_id)]


@router.get("/{field_id}")
def get_field(
    field_id: str,
    user_id: str = Depends(get_current_user_id),
    svc: FieldService = Depends(get_field_service),
) -> FieldView:
    return svc.get_field_view(user_id, field_id)


@router.patch("/{field_id}")
def update_field(
    field_id: str,
    payload: FieldUpdate,
    user_id: str = Depends(get_current_user_id),
    svc: FieldService = Depends(get_field_service),
) -> OwnerView:
    field = svc.update_field(user_id, field_id, payload)
    return svc.access.project(field, Visibility.OWNER)


@router.delete("/{field_id}")
def delete_field(
    field_id: str,
    user_id: str = Depends(get_current_user_id),
    svc: FieldService = Depends(get_field_service),
):
    svc.delete_field(user_id, field_id)
    return {"ok": True, "deleted_id": field_id}


@router.get("/{field_id}/adjacent")
def adjacent_fields(
    field_id: str,
    user_id: str = Depends(get_current_user_id),
    svc: FieldService = Depends(get_field_service),
) -> List[AdjacentFieldOut]:
    return [AdjacentFieldOut(**item) for item in svc.get_adjacent(user_id, field_id)]


@router.post("/{field_id}/adjacency/recompute")
def recompute_adjacency(
    field_id: str,
    user_id: str = Depends(get_current_user_id),
    svc: FieldService = Depends(get_field_service),
):
    records = svc.refresh_adjacency(user_id, field_id)
    return {
        "field_id": field_id,
        "adjacent": [
            {"adjacent_field_id": r.adjacent_field_id, "distance_m": r.distance_m, "shared_boundary_m": r.shared_boundary_m}
            for r in records
        ],
    }


@router.get("/{field_id}/updates")
def field_updates(
    field_id: str,
    limit: int = Query(10, ge=1, le=100),
    user_id: str = Depends(get_current_user_id),
    svc: FieldService = Depends(get_field_service),
) -> List[FieldUpdateOut]:
    return [FieldUpdateOut.model_validate(u, from_attributes=True) for u in svc.field_updates(user_id, field_id, limit)]
