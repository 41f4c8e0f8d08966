# backend/fieldshare/services/fields/repository.py
"""
Field storage used by the proximity core.

Nothing here commits: the caller owns the transaction so a field write and
whatever depends on it can land together.
"""
from __future__ import annotations

import json
from typing import Iterable, List, Optional

from shapely.geometry import Polygon
from sqlalchemy import and_, select
from sqlalchemy.orm import Session

from fieldshare.models.field import FarmField
from fieldshare.services.geometry.polygons import (
    PREFILTER_SLACK,
    area_acres,
    centroid_lonlat,
    metres_to_degrees,
    to_geojson,
)


def apply_geometry(field: FarmField, poly: Polygon, acres: Optional[float] = None) -> None:
    """Store the boundary and everything derived from it."""
    lon, lat = centroid_lonlat(poly)
    minx, miny, maxx, maxy = poly.bounds
    field.geometry = json.dumps(to_geojson(poly))
    field.centroid_lon, field.centroid_lat = lon, lat
    field.min_lon, field.min_lat, field.max_lon, field.max_lat = minx, miny, maxx, maxy
    field.acres = round(acres if acres is not None else area_acres(poly), 2)


def load_geometry(field: FarmField) -> dict:
    return json.loads(field.geometry)


class FieldRepository:
    def __init__(self, db: Session):
        self.db = db

    def get_field(self, field_id: str, lock: bool = False) -> Optional[FarmField]:
        if not lock:
            return self.db.get(FarmField, field_id)
        # FOR UPDATE is dropped silently on backends without row locks (SQLite)
        stmt = select(FarmField).where(FarmField.id == field_id).with_for_update()
        return self.db.execute(stmt).scalar_one_or_none()

    def get_fields(self, field_ids: Iterable[str]) -> List[FarmField]:
        ids = list(set(field_ids))
        if not ids:
            return []
        return list(self.db.execute(select(FarmField).where(FarmField.id.in_(ids))).scalars())

    def get_fields_by_user_id(self, user_id: str) -> List[FarmField]:
        stmt = select(FarmField).where(FarmField.owner_id == user_id).order_by(FarmField.created_at.asc())
        return list(self.db.execute(stmt).scalars())

    def get_candidates_near(self, field: FarmField, margin_m: float) -> List[FarmField]:
        """Fields whose bounding box comes within margin_m of this field's box."""
        lat = max(abs(field.min_lat), abs(field.max_lat))
        dlon, dlat = metres_to_degrees(margin_m * PREFILTER_SLACK, lat)
        return self.get_in_bbox(
            field.min_lon - dlon, field.min_lat - dlat,
            field.max_lon + dlon, field.max_lat + dlat,
            exclude_field_id=field.id,
        )

    def get_in_bbox(self, min_lon: float, min_lat: float, max_lon: float, max_lat: float,
                    exclude_field_id: Optional[str] = None,
                    owner_id: Optional[str] = None) -> List[FarmField]:
        conditions = [
            FarmField.max_lon >= min_lon,
            FarmField.min_lon <= max_lon,
            FarmField.max_lat >= min_lat,
            FarmField.min_lat <= max_lat,
        ]
        if exclude_field_id is not None:
            conditions.append(FarmField.id != exclude_field_id)
        if owner_id is not None:
            conditions.append(FarmField.owner_id == owner_id)
        return list(self.db.execute(select(FarmField).where(and_(*conditions))).scalars())

    def get_stale_fields(self) -> List[FarmField]:
        stmt = select(FarmField).where(FarmField.adjacency_stale.is_(True))
        return list(self.db.execute(stmt).scalars())

    def create_field(self, data: dict, poly: Polygon) -> FarmField:
        acres = data.pop("acres", None)
        field = FarmField(**data)
        apply_geometry(field, poly, acres)
        field.adjacency_stale = True
        self.db.add(field)
        self.db.flush()  # id 採番
        return field

    def update_field(self, field: FarmField, data: dict, poly: Optional[Polygon] = None) -> FarmField:
        acres = data.pop("acres", None)
        for key, value in data.items():
            setattr(field, key, value)
        if poly is not None:
            apply_geometry(field, poly, acres)
            field.adjacency_stale = True
        elif acres is not None:
            field.acres = round(acres, 2)
        self.db.add(field)
        self.db.flush()
        return field

    def delete_field(self, field: FarmField) -> None:
        self.db.delete(field)
        self.db.flush()
