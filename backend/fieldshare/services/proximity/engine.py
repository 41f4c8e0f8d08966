# backend/fieldshare/services/proximity/engine.py
"""
Adjacency computation and overlap detection.

Two fields are adjacent when the minimum distance between their boundaries
is at most ``Settings.adjacency_threshold_m`` metres (0 when they touch or
overlap). Adjacency is symmetric and spans owners; overlap is only checked
against fields of the same owner unless ``overlap_scope`` is ``"all"``.
"""
from __future__ import annotations

from dataclasses import dataclass, field as dc_field
from typing import List, Optional

from shapely.geometry import Polygon
from sqlalchemy.orm import Session

from fieldshare.config import Settings, get_settings
from fieldshare.db import transaction
from fieldshare.exceptions import FieldValidationError, GeometryError, InvalidGeometryError, NotFoundError, StoreError
from fieldshare.models.base import utcnow
from fieldshare.models.field import FarmField
from fieldshare.services.adjacency.store import AdjacencyCandidate, AdjacencyStore, AdjacentField
from fieldshare.services.fields.repository import FieldRepository, load_geometry
from fieldshare.services.geometry.polygons import (
    PREFILTER_SLACK,
    bounding_radius_m,
    centroid_lonlat,
    haversine_m,
    intersects,
    metres_to_degrees,
    min_distance,
    parse_polygon,
    shared_boundary_length,
)
from fieldshare.utils.logging_setup import get_logger, log_performance

logger = get_logger(__name__)


@dataclass
class OverlapResult:
    has_overlap: bool
    overlapping_fields: List[str] = dc_field(default_factory=list)


def validate_boundary(geometry) -> Polygon:
    """parse_polygon for user input: failures become InvalidGeometryError."""
    try:
        return parse_polygon(geometry)
    except GeometryError as e:
        raise InvalidGeometryError(f"Invalid field boundary: {e.message}", e.context) from e


class ProximityEngine:
    def __init__(self, db: Session, settings: Optional[Settings] = None,
                 fields: Optional[FieldRepository] = None, store: Optional[AdjacencyStore] = None):
        self.db = db
        self.settings = settings or get_settings()
        self.fields = fields or FieldRepository(db)
        self.store = store or AdjacencyStore(db)

    @property
    def threshold_m(self) -> float:
        return self.settings.adjacency_threshold_m

    def _stored_polygon(self, field: FarmField) -> Polygon:
        return parse_polygon(load_geometry(field))

    def compute_adjacency(self, field: FarmField, poly: Optional[Polygon] = None) -> List[AdjacencyCandidate]:
        """Neighbours of `field` within the threshold, without touching the store."""
        if poly is None:
            try:
                poly = self._stored_polygon(field)
            except GeometryError as e:
                raise InvalidGeometryError(
                    "Stored field boundary is malformed", {"field_id": field.id, **e.context}
                ) from e

        threshold = self.threshold_m
        lon, lat = centroid_lonlat(poly)
        radius = bounding_radius_m(poly)
        found: List[AdjacencyCandidate] = []

        for other in self.fields.get_candidates_near(field, threshold):
            try:
                other_poly = self._stored_polygon(other)
            except GeometryError as e:
                logger.warning(f"Skipping field {other.id} with malformed boundary: {e}")
                continue
            # bounding circles further apart than the threshold cannot be adjacent
            gap = haversine_m(lon, lat, other.centroid_lon, other.centroid_lat) - radius - bounding_radius_m(other_poly)
            if gap > threshold * PREFILTER_SLACK:
                continue
            distance = min_distance(poly, other_poly)
            if distance <= threshold:
                shared = shared_boundary_length(poly, other_poly, self.settings.shared_boundary_tolerance_m)
                found.append(AdjacencyCandidate(other.id, distance, shared))

        found.sort(key=lambda c: (c.distance_m, c.adjacent_field_id))
        return found

    @log_performance
    def recompute_adjacency(self, field_id: str) -> List[AdjacentField]:
        """Replace every adjacency record of `field_id` with a fresh computation."""
        with transaction(self.db, "recompute adjacency"):
            field = self.fields.get_field(field_id, lock=True)
            if field is None:
                raise NotFoundError("Field not found", {"field_id": field_id})
            candidates = self.compute_adjacency(field)
            self.store.replace_adjacency(field_id, candidates, commit=False)
            field.adjacency_stale = False
            field.adjacency_computed_at = utcnow()
        logger.info(f"Field {field_id} has {len(candidates)} adjacent fields")
        return self.store.get_adjacent(field_id)

    def recompute_stale(self) -> dict:
        """Recompute every field whose adjacency is flagged stale."""
        stale_ids = [f.id for f in self.fields.get_stale_fields()]
        return self.recompute_many(stale_ids)

    def recompute_many(self, field_ids: List[str]) -> dict:
        summary = {"recomputed": 0, "failed": 0, "skipped": 0}
        for field_id in field_ids:
            try:
                self.recompute_adjacency(field_id)
                summary["recomputed"] += 1
            except NotFoundError:
                summary["skipped"] += 1
            except (StoreError, InvalidGeometryError) as e:
                logger.error(f"Adjacency recompute failed for field {field_id}: {e}")
                summary["failed"] += 1
        return summary

    def check_overlap(self, geometry, exclude_field_id: Optional[str] = None,
                      user_id: Optional[str] = None) -> OverlapResult:
        """Fields whose interior shares area with `geometry`."""
        poly = geometry if isinstance(geometry, Polygon) else validate_boundary(geometry)
        owner_scope = self.settings.overlap_scope == "owner"
        if owner_scope and user_id is None:
            raise ValueError("user_id is required when overlap scope is 'owner'")

        minx, miny, maxx, maxy = poly.bounds
        candidates = self.fields.get_in_bbox(
            minx, miny, maxx, maxy,
            exclude_field_id=exclude_field_id,
            owner_id=user_id if owner_scope else None,
        )
        overlapping = []
        for other in candidates:
            try:
                other_poly = self._stored_polygon(other)
            except GeometryError as e:
                logger.warning(f"Skipping field {other.id} with malformed boundary: {e}")
                continue
            if intersects(poly, other_poly):
                overlapping.append(other.id)

        overlapping.sort()
        if overlapping:
            logger.info(f"Boundary overlaps {len(overlapping)} existing fields", extra={"overlapping_fields": overlapping})
        return OverlapResult(has_overlap=bool(overlapping), overlapping_fields=overlapping)

    def find_nearby_fields(self, lon: float, lat: float, radius_m: Optional[float] = None) -> List[tuple]:
        """(field, centroid distance in metres) for fields centred within radius_m of a point."""
        radius = radius_m if radius_m is not None else self.settings.nearby_radius_m
        limit = self.settings.nearby_max_radius_m
        if not 0 < radius <= limit:
            raise FieldValidationError(
                f"radius_m must be greater than 0 and at most {limit:g}", {"radius_m": radius}
            )
        dlon, dlat = metres_to_degrees(radius, lat)
        hits = []
        for field in self.fields.get_in_bbox(lon - dlon, lat - dlat, lon + dlon, lat + dlat):
            d = haversine_m(lon, lat, field.centroid_lon, field.centroid_lat)
            if d <= radius:
                hits.append((field, d))
        hits.sort(key=lambda pair: (pair[1], pair[0].id))
        return hits
