# backend/fieldshare/services/audit/log.py
from datetime import timedelta
from typing import Any, List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from fieldshare.models.base import utcnow
from fieldshare.models.field import FarmField
from fieldshare.models.field_update import UPDATE_TYPES, FieldUpdateLog
from fieldshare.utils.logging_setup import get_logger

logger = get_logger(__name__)


class AuditLog:
    """Append-only field update trail, written in its own session."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def append_field_update(self, field_id: str, user_id: str, update_type: str,
                            description: Optional[str] = None,
                            old_value: Any = None, new_value: Any = None) -> Optional[str]:
        """Record an update; a failure here is logged and never reaches the caller."""
        if update_type not in UPDATE_TYPES:
            logger.error(f"Unknown field update type {update_type!r}, audit record dropped")
            return None
        db: Session = self.session_factory()
        try:
            record = FieldUpdateLog(
                field_id=field_id,
                user_id=user_id,
                update_type=update_type,
                description=description,
                old_value=old_value,
                new_value=new_value,
            )
            db.add(record)
            db.commit()
            return record.id
        except SQLAlchemyError:
            db.rollback()
            logger.exception(f"Failed to append audit record for field {field_id}")
            return None
        finally:
            db.close()


def updates_for_field(db: Session, field_id: str, limit: int = 10) -> List[FieldUpdateLog]:
    stmt = (
        select(FieldUpdateLog)
        .where(FieldUpdateLog.field_id == field_id)
        .order_by(FieldUpdateLog.created_at.desc())
        .limit(limit)
    )
    return list(db.execute(stmt).scalars())


def recent_updates_for_user(db: Session, user_id: str, limit: int = 10) -> List[FieldUpdateLog]:
    stmt = (
        select(FieldUpdateLog)
        .join(FarmField, FieldUpdateLog.field_id == FarmField.id)
        .where(FarmField.owner_id == user_id)
        .order_by(FieldUpdateLog.created_at.desc())
        .limit(limit)
    )
    return list(db.execute(stmt).scalars())


def count_recent_updates_for_user(db: Session, user_id: str, days: int = 7) -> int:
    since = utcnow() - timedelta(days=days)
    stmt = (
        select(func.count())
        .select_from(FieldUpdateLog)
        .join(FarmField, FieldUpdateLog.field_id == FarmField.id)
        .where(FarmField.owner_id == user_id, FieldUpdateLog.created_at >= since)
    )
    return db.execute(stmt).scalar_one()
