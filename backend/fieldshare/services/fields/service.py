# backend/fieldshare/services/fields/service.py
"""
Field operations exposed to the web layer.

Every write validates first (boundary, overlap, ownership) and only then
touches the store. Adjacency is refreshed after the field write has
committed; if that keeps failing the field stays flagged
``adjacency_stale`` for the offline recompute to pick up.
"""
from __future__ import annotations

import datetime as dt
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel
from sqlalchemy import delete
from sqlalchemy.orm import Session, sessionmaker

from fieldshare.config import Settings, get_settings
from fieldshare.db import SessionLocal, transaction
from fieldshare.exceptions import (
    FieldValidationError,
    ForbiddenError,
    InvalidGeometryError,
    NotFoundError,
    OverlapError,
    StoreError,
)
from fieldshare.models.field import FIELD_STATUSES, FarmField
from fieldshare.models.field_update import FieldUpdateLog
from fieldshare.services.access.visibility import AccessService, Visibility
from fieldshare.services.adjacency.store import AdjacencyStore
from fieldshare.services.audit.log import (
    AuditLog,
    count_recent_updates_for_user,
    recent_updates_for_user,
    updates_for_field,
)
from fieldshare.services.fields.repository import FieldRepository
from fieldshare.services.proximity.engine import ProximityEngine, validate_boundary
from fieldshare.utils.logging_setup import get_logger

logger = get_logger(__name__)

MUTABLE_KEYS = {
    "name", "geometry", "crop", "season", "acres", "spray_type", "spray_types",
    "variety", "status", "planting_date", "harvest_date", "notes",
}
IMMUTABLE_KEYS = {"id", "owner_id", "created_at", "updated_at", "version"}
REQUIRED_KEYS = ("name", "crop", "season")
NOT_NULL_KEYS = {"name", "geometry", "crop", "season", "status"}
AUDITED_KEYS = (
    "name", "crop", "status", "season", "variety", "acres", "spray_type",
    "spray_types", "planting_date", "harvest_date", "notes",
)

Payload = Union[BaseModel, Dict[str, Any]]


def _snapshot(field: FarmField) -> dict:
    snap = {}
    for key in AUDITED_KEYS:
        value = getattr(field, key)
        if isinstance(value, dt.date):
            value = value.isoformat()
        elif isinstance(value, list):
            value = list(value)
        snap[key] = value
    return snap


def _update_type(changed: List[str], geometry_changed: bool) -> str:
    if geometry_changed:
        return "geometry_changed"
    if "crop" in changed:
        return "crop_changed"
    if "status" in changed:
        return "status_changed"
    return "metadata_changed"


class FieldService:
    def __init__(self, db: Session, settings: Optional[Settings] = None,
                 session_factory: Optional[sessionmaker] = None, audit: Optional[AuditLog] = None):
        self.db = db
        self.settings = settings or get_settings()
        self.fields = FieldRepository(db)
        self.store = AdjacencyStore(db)
        self.engine = ProximityEngine(db, self.settings, self.fields, self.store)
        self.access = AccessService(db, self.settings, self.fields, self.store)
        self.audit = audit or AuditLog(session_factory or SessionLocal)

    # -- helpers ------------------------------------------------------------

    def _get(self, field_id: str) -> FarmField:
        field = self.fields.get_field(field_id)
        if field is None:
            raise NotFoundError("Field not found", {"field_id": field_id})
        return field

    def _owned(self, user_id: str, field_id: str) -> FarmField:
        field = self._get(field_id)
        if field.owner_id != user_id:
            raise ForbiddenError("Field belongs to another user", {"field_id": field_id})
        return field

    def _ensure_no_overlap(self, poly, user_id: str, exclude_field_id: Optional[str] = None) -> None:
        result = self.engine.check_overlap(poly, exclude_field_id=exclude_field_id, user_id=user_id)
        if result.has_overlap:
            raise OverlapError(
                "Field boundaries cannot overlap with existing fields",
                result.overlapping_fields,
            )

    @staticmethod
    def _payload(data: Payload, exclude_unset: bool) -> dict:
        if isinstance(data, BaseModel):
            values = data.model_dump(exclude_unset=exclude_unset)
            values.update(data.model_extra or {})
            return values
        return dict(data)

    @staticmethod
    def _check_keys(values: dict) -> None:
        immutable = sorted(k for k in values if k in IMMUTABLE_KEYS)
        if immutable:
            raise FieldValidationError("Attributes cannot be changed", {"attributes": ",".join(immutable)})
        unknown = sorted(k for k in values if k not in MUTABLE_KEYS)
        if unknown:
            raise FieldValidationError("Unknown field attributes", {"attributes": ",".join(unknown)})
        status = values.get("status")
        if status is not None and status not in FIELD_STATUSES:
            raise FieldValidationError("Unknown field status", {"status": status})
        acres = values.get("acres")
        if acres is not None and acres <= 0:
            raise FieldValidationError("Acres must be positive", {"acres": acres})

    def refresh_adjacency_best_effort(self, field_id: str) -> bool:
        attempts = self.settings.adjacency_retry_attempts
        for attempt in range(1, attempts + 1):
            try:
                self.engine.recompute_adjacency(field_id)
                return True
            except StoreError as e:
                logger.warning(f"Adjacency recompute attempt {attempt}/{attempts} for field {field_id} failed: {e}")
        logger.error(f"Adjacency for field {field_id} left stale after {attempts} attempts")
        return False

    # -- writes -------------------------------------------------------------

    def create_field(self, user_id: str, field_in: Payload) -> FarmField:
        data = self._payload(field_in, exclude_unset=False)
        self._check_keys(data)
        missing = [k for k in REQUIRED_KEYS if not data.get(k)]
        if missing:
            raise FieldValidationError("Missing required attributes", {"attributes": ",".join(missing)})
        geometry = data.pop("geometry", None)
        if geometry is None:
            raise InvalidGeometryError("Field boundary is required")

        poly = validate_boundary(geometry)
        self._ensure_no_overlap(poly, user_id)

        data["owner_id"] = user_id
        data["spray_types"] = list(data.get("spray_types") or [])
        data["status"] = data.get("status") or "planted"
        with transaction(self.db, "create field"):
            field = self.fields.create_field(data, poly)
        logger.info(f"Field {field.id} created for user {user_id}")

        self.refresh_adjacency_best_effort(field.id)
        self.audit.append_field_update(
            field.id, user_id, "metadata_changed", "Field created",
            new_value={"name": field.name, "crop": field.crop},
        )
        return field

    def update_field(self, user_id: str, field_id: str, patch: Payload) -> FarmField:
        field = self._owned(user_id, field_id)
        changes = self._payload(patch, exclude_unset=True)
        self._check_keys(changes)
        cleared = sorted(k for k in NOT_NULL_KEYS if k in changes and changes[k] is None)
        if cleared:
            raise FieldValidationError("Attributes cannot be cleared", {"attributes": ",".join(cleared)})

        poly = None
        geometry = changes.pop("geometry", None)
        if geometry is not None:
            poly = validate_boundary(geometry)
            self._ensure_no_overlap(poly, user_id, exclude_field_id=field.id)

        before = _snapshot(field)
        old_geometry = field.geometry
        with transaction(self.db, "update field"):
            self.fields.update_field(field, changes, poly)
        after = _snapshot(field)
        geometry_changed = poly is not None and field.geometry != old_geometry

        if poly is not None:
            self.refresh_adjacency_best_effort(field.id)

        changed = [k for k in AUDITED_KEYS if before[k] != after[k]]
        if changed or geometry_changed:
            old_value = {k: before[k] for k in changed}
            new_value = {k: after[k] for k in changed}
            if geometry_changed:
                new_value["centroid"] = [field.centroid_lon, field.centroid_lat]
            self.audit.append_field_update(
                field.id, user_id, _update_type(changed, geometry_changed), "Field updated",
                old_value=old_value, new_value=new_value,
            )
        return field

    def delete_field(self, user_id: str, field_id: str) -> None:
        field = self._owned(user_id, field_id)
        name = field.name
        with transaction(self.db, "delete field"):
            self.store.delete_all_for(field_id, commit=False)
            self.access.delete_grants_for_field(field_id)
            self.db.execute(delete(FieldUpdateLog).where(FieldUpdateLog.field_id == field_id))
            self.fields.delete_field(field)
        logger.info(f'Field {field_id} ("{name}") deleted by {user_id}')

    def refresh_adjacency(self, user_id: str, field_id: str):
        self._owned(user_id, field_id)
        return self.engine.recompute_adjacency(field_id)

    # -- reads --------------------------------------------------------------

    def get_field_view(self, user_id: str, field_id: str):
        return self.access.view_for(user_id, self._get(field_id))

    def list_fields(self, user_id: str):
        return [self.access.project(f, Visibility.OWNER) for f in self.fields.get_fields_by_user_id(user_id)]

    def get_nearby_fields(self, user_id: str) -> list:
        """The user's own fields plus every adjacent field, projected for the user."""
        own = self.fields.get_fields_by_user_id(user_id)
        own_ids = {f.id for f in own}
        views = [self.access.project(f, Visibility.OWNER) for f in own]

        closest = self.store.closest_distances_for_user(user_id)
        others = [f for f in self.store.get_all_adjacent_for_user(user_id) if f.id not in own_ids]
        levels = self.access.resolve_many(user_id, others)
        views.extend(self.access.project(f, levels[f.id], closest.get(f.id)) for f in others)
        return views

    def fields_near_point(self, user_id: str, lon: float, lat: float, radius_m: Optional[float] = None) -> list:
        hits = self.engine.find_nearby_fields(lon, lat, radius_m)
        levels = self.access.resolve_many(user_id, [f for f, _ in hits])
        return [self.access.project(f, levels[f.id], d) for f, d in hits]

    def get_adjacent(self, user_id: str, field_id: str) -> List[dict]:
        self._owned(user_id, field_id)
        records = [r for r in self.store.get_adjacent(field_id) if r.adjacent_field is not None]
        levels = self.access.resolve_many(user_id, [r.adjacent_field for r in records])
        return [
            {
                "adjacent_field_id": r.adjacent_field_id,
                "distance_m": r.distance_m,
                "shared_boundary_m": r.shared_boundary_m,
                "field": self.access.project(r.adjacent_field, levels[r.adjacent_field_id], r.distance_m),
            }
            for r in records
        ]

    def field_updates(self, user_id: str, field_id: str, limit: int = 10) -> List[FieldUpdateLog]:
        self._owned(user_id, field_id)
        return updates_for_field(self.db, field_id, limit)

    def recent_updates(self, user_id: str, limit: int = 10) -> List[FieldUpdateLog]:
        return recent_updates_for_user(self.db, user_id, limit)

    def user_stats(self, user_id: str) -> dict:
        own = self.fields.get_fields_by_user_id(user_id)
        current_season = str(dt.date.today().year)
        return {
            "my_fields_count": len(own),
            "adjacent_fields_count": self.store.count_adjacent_for_user(user_id),
            "current_crops_count": sum(1 for f in own if f.season == current_season),
            "recent_updates_count": count_recent_updates_for_user(self.db, user_id),
        }
