# backend/fieldshare/schemas/activity.py
from pydantic import BaseModel
from typing import Any, Optional
import datetime as dt


class FieldUpdateOut(BaseModel):
    id: str
    field_id: str
    user_id: str
    update_type: str
    description: Optional[str] = None
    old_value: Optional[Any] = None
    new_value: Optional[Any] = None
    created_at: dt.datetime


class UserStatsOut(BaseModel):
    my_fields_count: int
    adjacent_fields_count: int
    current_crops_count: int
    recent_updates_count: int
