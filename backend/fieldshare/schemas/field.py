# backend/fieldshare/schemas/field.py
from pydantic import BaseModel, ConfigDict
from typing import List, Optional
import datetime as dt

from .commons import FieldStatus


class FieldIn(BaseModel):
    name: str
    geometry: dict  # GeoJSON Polygon / Feature (EPSG:4326)
    crop: str
    season: str
    acres: Optional[float] = None  # 未指定なら形状から算出
    spray_type: Optional[str] = None
    spray_types: List[str] = []
    variety: Optional[str] = None
    status: FieldStatus = "planted"
    planting_date: Optional[dt.date] = None
    harvest_date: Optional[dt.date] = None
    notes: Optional[str] = None


class FieldUpdate(BaseModel):
    # unknown keys are kept so the service can reject immutable attributes explicitly
    model_config = ConfigDict(extra="allow")

    name: Optional[str] = None
    geometry: Optional[dict] = None
    crop: Optional[str] = None
    season: Optional[str] = None
    acres: Optional[float] = None
    spray_type: Optional[str] = None
    spray_types: Optional[List[str]] = None
    variety: Optional[str] = None
    status: Optional[FieldStatus] = None
    planting_date: Optional[dt.date] = None
    harvest_date: Optional[dt.date] = None
    notes: Optional[str] = None
