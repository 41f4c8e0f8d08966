# backend/fieldshare/schemas/access.py
from pydantic import BaseModel
from typing import Literal, Optional
import datetime as dt

GrantStatus = Literal["pending", "approved", "denied", "revoked"]


class AccessRequestIn(BaseModel):
    owner_field_id: str
    viewer_field_id: Optional[str] = None


class DecisionIn(BaseModel):
    decision: str  # approved | denied


class AccessGrantOut(BaseModel):
    id: str
    owner_field_id: str
    owner_user_id: str
    viewer_user_id: str
    viewer_field_id: Optional[str] = None
    status: GrantStatus
    grant_source: str
    created_at: dt.datetime
    updated_at: dt.datetime
    decided_at: Optional[dt.datetime] = None


class PermissionNeededOut(BaseModel):
    # 権限未取得の隣接圃場: 所有者情報・属性は返さない
    field_id: str
    distance_m: float
    request_status: Optional[GrantStatus] = None
