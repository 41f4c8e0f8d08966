# backend/fieldshare/models/field_update.py
from sqlalchemy import Column, DateTime, ForeignKey, JSON, String, Text
from .base import Base, new_id, utcnow

UPDATE_TYPES = ("crop_changed", "status_changed", "geometry_changed", "metadata_changed")


class FieldUpdateLog(Base):
    """Append-only audit trail; rows only disappear with their field."""

    __tablename__ = "field_updates"
    id = Column(String(36), primary_key=True, default=new_id)
    field_id = Column(String(36), ForeignKey("fields.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String, nullable=False)
    update_type = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    old_value = Column(JSON, nullable=True)
    new_value = Column(JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
