# backend/fieldshare/api/routers/access.py
from fastapi import APIRouter, Depends
from typing import List

from fieldshare.api.deps import get_access_service, get_current_user_id
from fieldshare.schemas.access import AccessGrantOut, AccessRequestIn, DecisionIn
from fieldshare.services.access.visibility import AccessService

router = APIRouter()


def _out(grant) -> AccessGrantOut:
    return AccessGrantOut.model_validate(grant, from_attributes=True)


@router.post("/requests", status_code=201)
def request_access(
    payload: AccessRequestIn,
    user_id: str = Depends(get_current_user_id),
    access: AccessService = Depends(get_access_service),
) -> AccessGrantOut:
    grant = access.request_access(user_id, payload.owner_field_id, payload.viewer_field_id)
    return _out(grant)


@router.get("/requests/pending")
def pending_requests(
    user_id: str = Depends(get_current_user_id),
    access: AccessService = Depends(get_access_service),
) -> List[AccessGrantOut]:
    return [_out(g) for g in access.pending_requests(user_id)]


@router.get("/requests/mine")
def my_requests(
    user_id: str = Depends(get_current_user_id),
    access: AccessService = Depends(get_access_service),
) -> List[AccessGrantOut]:
    return [_out(g) for g in access.requests_by_viewer(user_id)]


@router.put("/fields/{owner_field_id}/requests/{grant_id}")
def decide_request(
    owner_field_id: str,
    grant_id: str,
    payload: DecisionIn,
    user_id: str = Depends(get_current_user_id),
    access: AccessService = Depends(get_access_service),
) -> AccessGrantOut:
    return _out(access.decide(user_id, owner_field_id, grant_id, payload.decision))


@router.post("/requests/{grant_id}/revoke")
def revoke_grant(
    grant_id: str,
    user_id: str = Depends(get_current_user_id),
    access: AccessService = Depends(get_access_service),
) -> AccessGrantOut:
    return _out(access.revoke(user_id, grant_id))
