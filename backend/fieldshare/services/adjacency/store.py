# backend/fieldshare/services/adjacency/store.py
"""
Persistence and queries over adjacency records.

Pairs are stored once, ordered so that field_a_id < field_b_id; reads
resolve each row to "the other field" relative to the field asked about.
"""
from __future__ import annotations

from contextlib import nullcontext
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from sqlalchemy import delete, func, or_, select
from sqlalchemy.orm import Session

from fieldshare.db import transaction
from fieldshare.models.adjacency import AdjacencyRecord
from fieldshare.models.base import utcnow
from fieldshare.models.field import FarmField
from fieldshare.utils.logging_setup import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class AdjacencyCandidate:
    """A neighbour found by the proximity engine, before it is stored."""
    adjacent_field_id: str
    distance_m: float
    shared_boundary_m: float = 0.0


@dataclass
class AdjacentField:
    field_id: str
    adjacent_field_id: str
    distance_m: float
    shared_boundary_m: float
    adjacent_field: Optional[FarmField] = None


def _touching(field_id: str):
    return or_(AdjacencyRecord.field_a_id == field_id, AdjacencyRecord.field_b_id == field_id)


def _touching_any(field_ids: List[str]):
    return or_(AdjacencyRecord.field_a_id.in_(field_ids), AdjacencyRecord.field_b_id.in_(field_ids))


class AdjacencyStore:
    def __init__(self, db: Session):
        self.db = db

    def _records_for(self, field_id: str) -> List[AdjacencyRecord]:
        stmt = select(AdjacencyRecord).where(_touching(field_id)).order_by(AdjacencyRecord.distance_m.asc())
        return list(self.db.execute(stmt).scalars())

    def get_adjacent(self, field_id: str) -> List[AdjacentField]:
        records = self._records_for(field_id)
        others = {r.other(field_id) for r in records}
        fields: Dict[str, FarmField] = {}
        if others:
            stmt = select(FarmField).where(FarmField.id.in_(others))
            fields = {f.id: f for f in self.db.execute(stmt).scalars()}
        return [
            AdjacentField(
                field_id=field_id,
                adjacent_field_id=r.other(field_id),
                distance_m=r.distance_m,
                shared_boundary_m=r.shared_boundary_m or 0.0,
                adjacent_field=fields.get(r.other(field_id)),
            )
            for r in records
        ]

    def get_adjacent_ids(self, field_id: str) -> List[str]:
        return [r.other(field_id) for r in self._records_for(field_id)]

    def closest_distances_for_user(self, user_id: str) -> Dict[str, float]:
        """Other field id -> smallest distance to any of the user's fields."""
        own_ids = list(self.db.execute(select(FarmField.id).where(FarmField.owner_id == user_id)).scalars())
        if not own_ids:
            return {}
        own = set(own_ids)
        closest: Dict[str, float] = {}
        stmt = select(AdjacencyRecord).where(_touching_any(own_ids))
        for record in self.db.execute(stmt).scalars():
            # a pair of the user's own fields yields both ends
            for mine, other in ((record.field_a_id, record.field_b_id), (record.field_b_id, record.field_a_id)):
                if mine in own:
                    previous = closest.get(other)
                    if previous is None or record.distance_m < previous:
                        closest[other] = record.distance_m
        return closest

    def get_all_adjacent_for_user(self, user_id: str) -> List[FarmField]:
        """Union of adjacency over every field the user owns, one entry per field."""
        closest = self.closest_distances_for_user(user_id)
        if not closest:
            return []
        stmt = select(FarmField).where(FarmField.id.in_(list(closest)))
        return sorted(self.db.execute(stmt).scalars(), key=lambda f: (closest[f.id], f.id))

    def count_adjacent_for_user(self, user_id: str) -> int:
        return sum(1 for f in self.get_all_adjacent_for_user(user_id) if f.owner_id != user_id)

    def count_records(self) -> int:
        return self.db.execute(select(func.count()).select_from(AdjacencyRecord)).scalar_one()

    def replace_adjacency(self, field_id: str, new_records: Iterable[AdjacencyCandidate],
                          commit: bool = True) -> List[AdjacencyRecord]:
        """Swap every record referencing field_id for new_records in one transaction."""
        best: Dict[str, AdjacencyCandidate] = {}
        for candidate in new_records:
            other = candidate.adjacent_field_id
            if other == field_id:
                continue
            if other not in best or candidate.distance_m < best[other].distance_m:
                best[other] = candidate

        now = utcnow()
        rows = []
        for other, candidate in best.items():
            a, b = sorted((field_id, other))
            rows.append(AdjacencyRecord(
                field_a_id=a,
                field_b_id=b,
                distance_m=float(candidate.distance_m),
                shared_boundary_m=float(candidate.shared_boundary_m),
                computed_at=now,
            ))

        scope = transaction(self.db, "replace adjacency") if commit else nullcontext(self.db)
        with scope:
            self.db.execute(delete(AdjacencyRecord).where(_touching(field_id)))
            self.db.add_all(rows)
            self.db.flush()
        logger.debug(f"Stored {len(rows)} adjacency records for field {field_id}")
        return rows

    def delete_all_for(self, field_id: str, commit: bool = True) -> int:
        scope = transaction(self.db, "delete adjacency") if commit else nullcontext(self.db)
        with scope:
            result = self.db.execute(delete(AdjacencyRecord).where(_touching(field_id)))
        return result.rowcount or 0
