# backend/fieldshare/schemas/views.py
"""
What a viewer gets to see of a field.

The three shapes are distinct types so callers match on ``access_level``
instead of probing optional attributes. Only ``OwnerView`` has ``notes``.
"""
from pydantic import BaseModel, Field
from typing import Annotated, List, Literal, Optional, Union
import datetime as dt


class FieldAttributes(BaseModel):
    id: str
    owner_id: str
    name: str
    geometry: dict
    centroid: List[float]  # [lon, lat]
    acres: float
    crop: str
    spray_type: Optional[str] = None
    spray_types: List[str] = []
    variety: Optional[str] = None
    status: Optional[str] = None
    season: str
    planting_date: Optional[dt.date] = None
    harvest_date: Optional[dt.date] = None
    adjacency_stale: bool = False
    created_at: dt.datetime
    updated_at: dt.datetime
    distance_m: Optional[float] = None


class OwnerView(FieldAttributes):
    access_level: Literal["owner"] = "owner"
    notes: Optional[str] = None


class ApprovedView(FieldAttributes):
    access_level: Literal["approved"] = "approved"


class RestrictedView(BaseModel):
    access_level: Literal["restricted"] = "restricted"
    id: str
    name: str
    geometry: dict  # rounded outline, enough to draw on a map
    approximate: bool = True
    distance_m: Optional[float] = None


FieldView = Annotated[Union[OwnerView, ApprovedView, RestrictedView], Field(discriminator="access_level")]


class AdjacentFieldOut(BaseModel):
    adjacent_field_id: str
    distance_m: float
    shared_boundary_m: float
    field: FieldView
