# backend/fieldshare/services/access/visibility.py
"""
Access grants and the projection of fields per viewer.

Grant lifecycle::

    pending --decide--> approved --revoke--> revoked
    pending --decide--> denied

denied and revoked are final for that grant; asking again opens a new
pending grant. At most one pending/approved grant exists per
(owner field, viewer) pair.
"""
from __future__ import annotations

import json
from enum import Enum
from typing import Dict, List, Optional

from sqlalchemy import and_, delete, or_, select
from sqlalchemy.orm import Session

from fieldshare.config import Settings, get_settings
from fieldshare.db import transaction
from fieldshare.exceptions import (
    FieldValidationError,
    ForbiddenError,
    GeometryError,
    InvalidStateError,
    NotFoundError,
    StoreError,
)
from fieldshare.models.access_grant import ACTIVE_STATUSES, AccessGrant
from fieldshare.models.base import utcnow
from fieldshare.models.field import FarmField
from fieldshare.schemas.views import ApprovedView, OwnerView, RestrictedView
from fieldshare.services.adjacency.store import AdjacencyStore
from fieldshare.services.fields.repository import FieldRepository, load_geometry
from fieldshare.services.geometry.polygons import approximate_geojson, parse_polygon
from fieldshare.utils.logging_setup import get_logger

logger = get_logger(__name__)

DECISIONS = ("approved", "denied")


class Visibility(str, Enum):
    OWNER = "owner"
    APPROVED = "approved"
    RESTRICTED = "restricted"


def _attributes(field: FarmField, distance_m: Optional[float]) -> dict:
    return dict(
        id=field.id,
        owner_id=field.owner_id,
        name=field.name,
        geometry=load_geometry(field),
        centroid=[field.centroid_lon, field.centroid_lat],
        acres=field.acres,
        crop=field.crop,
        spray_type=field.spray_type,
        spray_types=list(field.spray_types or []),
        variety=field.variety,
        status=field.status,
        season=field.season,
        planting_date=field.planting_date,
        harvest_date=field.harvest_date,
        adjacency_stale=bool(field.adjacency_stale),
        created_at=field.created_at,
        updated_at=field.updated_at,
        distance_m=distance_m,
    )


class AccessService:
    def __init__(self, db: Session, settings: Optional[Settings] = None,
                 fields: Optional[FieldRepository] = None, store: Optional[AdjacencyStore] = None):
        self.db = db
        self.settings = settings or get_settings()
        self.fields = fields or FieldRepository(db)
        self.store = store or AdjacencyStore(db)

    # -- grants -------------------------------------------------------------

    def _active_grant(self, owner_field_id: str, viewer_user_id: str) -> Optional[AccessGrant]:
        stmt = select(AccessGrant).where(
            AccessGrant.owner_field_id == owner_field_id,
            AccessGrant.viewer_user_id == viewer_user_id,
            AccessGrant.status.in_(ACTIVE_STATUSES),
        )
        return self.db.execute(stmt).scalars().first()

    def get_grant(self, grant_id: str) -> AccessGrant:
        grant = self.db.get(AccessGrant, grant_id)
        if grant is None:
            raise NotFoundError("Access request not found", {"grant_id": grant_id})
        return grant

    def request_access(self, viewer_user_id: str, owner_field_id: str,
                       viewer_field_id: Optional[str] = None) -> AccessGrant:
        """Open a pending grant, or return the active one already on file."""
        field = self.fields.get_field(owner_field_id)
        if field is None:
            raise NotFoundError("Field not found", {"field_id": owner_field_id})
        if field.owner_id == viewer_user_id:
            raise FieldValidationError("Cannot request access to your own field", {"field_id": owner_field_id})
        if viewer_field_id is not None:
            viewer_field = self.fields.get_field(viewer_field_id)
            if viewer_field is None:
                raise NotFoundError("Field not found", {"field_id": viewer_field_id})
            if viewer_field.owner_id != viewer_user_id:
                raise ForbiddenError("Viewer field belongs to another user", {"field_id": viewer_field_id})

        existing = self._active_grant(owner_field_id, viewer_user_id)
        if existing is not None:
            return existing

        grant = AccessGrant(
            owner_field_id=owner_field_id,
            owner_user_id=field.owner_id,
            viewer_user_id=viewer_user_id,
            viewer_field_id=viewer_field_id,
            status="pending",
            grant_source="manual",
        )
        try:
            with transaction(self.db, "request access"):
                self.db.add(grant)
        except StoreError:
            # a concurrent request for the same pair won the race on the unique index
            winner = self._active_grant(owner_field_id, viewer_user_id)
            if winner is None:
                raise
            return winner
        logger.info(f"Access requested to field {owner_field_id} by {viewer_user_id}")
        return grant

    def decide(self, acting_user_id: str, owner_field_id: str, grant_id: str, decision: str) -> AccessGrant:
        grant = self.get_grant(grant_id)
        if grant.owner_field_id != owner_field_id:
            raise NotFoundError("Access request not found", {"grant_id": grant_id})
        field = self.fields.get_field(owner_field_id)
        if field is None:
            raise NotFoundError("Field not found", {"field_id": owner_field_id})
        if field.owner_id != acting_user_id:
            raise ForbiddenError("Only the field owner can decide access requests", {"grant_id": grant_id})
        if decision not in DECISIONS:
            raise InvalidStateError(
                f"Cannot move an access request to '{decision}'",
                {"grant_id": grant_id, "status": grant.status},
            )
        if grant.status != "pending":
            raise InvalidStateError(
                f"Only pending requests can be {decision}",
                {"grant_id": grant_id, "status": grant.status},
            )
        with transaction(self.db, "decide access request"):
            grant.status = decision
            grant.decided_at = utcnow()
        logger.info(f"Access request {grant_id} {decision}")
        return grant

    def revoke(self, acting_user_id: str, grant_id: str) -> AccessGrant:
        grant = self.get_grant(grant_id)
        if acting_user_id not in (grant.owner_user_id, grant.viewer_user_id):
            raise ForbiddenError("Not allowed to revoke this grant", {"grant_id": grant_id})
        if grant.status != "approved":
            raise InvalidStateError(
                "Only approved grants can be revoked",
                {"grant_id": grant_id, "status": grant.status},
            )
        with transaction(self.db, "revoke access"):
            grant.status = "revoked"
            grant.decided_at = utcnow()
        logger.info(f"Access grant {grant_id} revoked by {acting_user_id}")
        return grant

    def pending_requests(self, owner_user_id: str) -> List[AccessGrant]:
        stmt = (
            select(AccessGrant)
            .where(AccessGrant.owner_user_id == owner_user_id, AccessGrant.status == "pending")
            .order_by(AccessGrant.created_at.desc())
        )
        return list(self.db.execute(stmt).scalars())

    def requests_by_viewer(self, viewer_user_id: str) -> List[AccessGrant]:
        stmt = (
            select(AccessGrant)
            .where(AccessGrant.viewer_user_id == viewer_user_id)
            .order_by(AccessGrant.created_at.desc())
        )
        return list(self.db.execute(stmt).scalars())

    def delete_grants_for_field(self, field_id: str) -> None:
        """Remove grants naming the field on either side; caller commits."""
        self.db.execute(delete(AccessGrant).where(
            or_(AccessGrant.owner_field_id == field_id, AccessGrant.viewer_field_id == field_id)
        ))

    # -- visibility ---------------------------------------------------------

    def _approved_field_ids(self, viewer_user_id: str, field_ids: Optional[List[str]] = None) -> set:
        own_field_ids = select(FarmField.id).where(FarmField.owner_id == viewer_user_id)
        stmt = select(AccessGrant.owner_field_id).where(
            AccessGrant.status == "approved",
            or_(
                AccessGrant.viewer_user_id == viewer_user_id,
                and_(AccessGrant.viewer_field_id.is_not(None), AccessGrant.viewer_field_id.in_(own_field_ids)),
            ),
        )
        if field_ids is not None:
            if not field_ids:
                return set()
            stmt = stmt.where(AccessGrant.owner_field_id.in_(field_ids))
        return set(self.db.execute(stmt).scalars())

    def resolve_visibility(self, viewer_user_id: str, field: FarmField) -> Visibility:
        if field.owner_id == viewer_user_id:
            return Visibility.OWNER
        if field.id in self._approved_field_ids(viewer_user_id, [field.id]):
            return Visibility.APPROVED
        return Visibility.RESTRICTED

    def resolve_many(self, viewer_user_id: str, fields: List[FarmField]) -> Dict[str, Visibility]:
        others = [f.id for f in fields if f.owner_id != viewer_user_id]
        approved = self._approved_field_ids(viewer_user_id, others)
        levels = {}
        for f in fields:
            if f.owner_id == viewer_user_id:
                levels[f.id] = Visibility.OWNER
            elif f.id in approved:
                levels[f.id] = Visibility.APPROVED
            else:
                levels[f.id] = Visibility.RESTRICTED
        return levels

    def _restricted_geometry(self, field: FarmField) -> dict:
        try:
            poly = parse_polygon(load_geometry(field))
        except (GeometryError, json.JSONDecodeError):
            logger.warning(f"Field {field.id} has a malformed stored boundary")
            return {"type": "Polygon", "coordinates": []}
        return approximate_geojson(poly, self.settings.restricted_precision)

    def project(self, field: FarmField, visibility: Visibility, distance_m: Optional[float] = None):
        if visibility == Visibility.OWNER:
            return OwnerView(notes=field.notes, **_attributes(field, distance_m))
        if visibility == Visibility.APPROVED:
            return ApprovedView(**_attributes(field, distance_m))
        return RestrictedView(
            id=field.id,
            name=self.settings.restricted_name,
            geometry=self._restricted_geometry(field),
            distance_m=distance_m,
        )

    def view_for(self, viewer_user_id: str, field: FarmField, distance_m: Optional[float] = None):
        return self.project(field, self.resolve_visibility(viewer_user_id, field), distance_m)

    def permitted_fields(self, viewer_user_id: str) -> List[ApprovedView]:
        ids = self._approved_field_ids(viewer_user_id)
        fields = [f for f in self.fields.get_fields(ids) if f.owner_id != viewer_user_id]
        fields.sort(key=lambda f: (f.name, f.id))
        return [self.project(f, Visibility.APPROVED) for f in fields]

    def adjacent_needing_permission(self, user_id: str) -> List[dict]:
        """Adjacent fields of other owners the user cannot see yet, nearest first."""
        closest = self.store.closest_distances_for_user(user_id)
        if not closest:
            return []
        candidates = [f for f in self.fields.get_fields(closest) if f.owner_id != user_id]
        if not candidates:
            return []
        candidate_ids = [f.id for f in candidates]
        approved = self._approved_field_ids(user_id, candidate_ids)
        pending = set(self.db.execute(
            select(AccessGrant.owner_field_id).where(
                AccessGrant.viewer_user_id == user_id,
                AccessGrant.status == "pending",
                AccessGrant.owner_field_id.in_(candidate_ids),
            )
        ).scalars())
        needing = [
            {
                "field_id": f.id,
                "distance_m": closest[f.id],
                "request_status": "pending" if f.id in pending else None,
            }
            for f in candidates
            if f.id not in approved
        ]
        needing.sort(key=lambda item: (item["distance_m"], item["field_id"]))
        return needing
