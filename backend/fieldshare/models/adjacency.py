# backend/fieldshare/models/adjacency.py
from sqlalchemy import CheckConstraint, Column, DateTime, Float, ForeignKey, String, UniqueConstraint
from .base import Base, new_id, utcnow


class AdjacencyRecord(Base):
    """One row per unordered pair; field_a_id always sorts before field_b_id."""

    __tablename__ = "adjacent_fields"
    id = Column(String(36), primary_key=True, default=new_id)
    field_a_id = Column(String(36), ForeignKey("fields.id", ondelete="CASCADE"), nullable=False, index=True)
    field_b_id = Column(String(36), ForeignKey("fields.id", ondelete="CASCADE"), nullable=False, index=True)
    distance_m = Column(Float, nullable=False)  # 0 when touching or overlapping
    shared_boundary_m = Column(Float, nullable=False, default=0.0)
    computed_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("field_a_id", "field_b_id", name="uq_adjacent_pair"),
        CheckConstraint("field_a_id < field_b_id", name="ck_adjacent_canonical"),
    )

    def other(self, field_id: str) -> str:
        return self.field_b_id if self.field_a_id == field_id else self.field_a_id
