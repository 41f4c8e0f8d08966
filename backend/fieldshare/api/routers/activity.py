# backend/fieldshare/api/routers/activity.py
from fastapi import APIRouter, Depends, Query
from typing import List

from fieldshare.api.deps import get_current_user_id, get_field_service
from fieldshare.schemas.activity import FieldUpdateOut, UserStatsOut
from fieldshare.services.fields.service import FieldService

router = APIRouter()


@router.get("/stats")
def user_stats(
    user_id: str = Depends(get_current_user_id),
    svc: FieldService = Depends(get_field_service),
) -> UserStatsOut:
    return UserStatsOut(**svc.user_stats(user_id))


@router.get("/updates")
def recent_updates(
    limit: int = Query(10, ge=1, le=100),
    user_id: str = Depends(get_current_user_id),
    svc: FieldService = Depends(get_field_service),
) -> List[FieldUpdateOut]:
    return [FieldUpdateOut.model_validate(u, from_attributes=True) for u in svc.recent_updates(user_id, limit)]
