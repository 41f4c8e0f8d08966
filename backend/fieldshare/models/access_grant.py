# backend/fieldshare/models/access_grant.py
from sqlalchemy import Column, DateTime, ForeignKey, Index, String
from .base import Base, new_id, utcnow

ACTIVE_STATUSES = ("pending", "approved")


class AccessGrant(Base):
    __tablename__ = "access_grants"
    id = Column(String(36), primary_key=True, default=new_id)
    owner_field_id = Column(String(36), ForeignKey("fields.id", ondelete="CASCADE"), nullable=False, index=True)
    owner_user_id = Column(String, nullable=False, index=True)
    viewer_user_id = Column(String, nullable=False, index=True)
    # set for field-to-field grants
    viewer_field_id = Column(String(36), ForeignKey("fields.id", ondelete="CASCADE"), nullable=True)
    status = Column(String, nullable=False, default="pending")  # pending|approved|denied|revoked
    grant_source = Column(String, nullable=False, default="manual")  # manual: requested by the viewer
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    decided_at = Column(DateTime, nullable=True)

    __table_args__ = (
        # at most one pending/approved grant per (field, viewer)
        Index(
            "uq_access_grants_active",
            "owner_field_id",
            "viewer_user_id",
            unique=True,
            sqlite_where=status.in_(ACTIVE_STATUSES),
            postgresql_where=status.in_(ACTIVE_STATUSES),
        ),
    )
