# backend/fieldshare/schemas/commons.py
from pydantic import BaseModel
from typing import List, Literal, Optional

FieldStatus = Literal["planted", "growing", "harvested", "fallow"]


class OverlapCheckIn(BaseModel):
    geometry: dict  # Polygon もしくは Polygon を包む Feature
    exclude_field_id: Optional[str] = None


class OverlapCheckOut(BaseModel):
    has_overlap: bool
    overlapping_fields: List[str]
