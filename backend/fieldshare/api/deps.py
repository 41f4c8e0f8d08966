# backend/fieldshare/api/deps.py
from typing import Optional

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session, sessionmaker

from fieldshare.config import Settings, get_settings
from fieldshare.db import get_db, get_session_factory
from fieldshare.services.access.visibility import AccessService
from fieldshare.services.fields.service import FieldService
from fieldshare.services.proximity.engine import ProximityEngine


def get_current_user_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    # 認証はゲートウェイ側で済んでいる前提。ここでは解決済みのIDを受け取るだけ
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="missing X-User-Id header")
    return x_user_id.strip()


def get_field_service(
    db: Session = Depends(get_db),
    session_factory: sessionmaker = Depends(get_session_factory),
    settings: Settings = Depends(get_settings),
) -> FieldService:
    return FieldService(db, settings=settings, session_factory=session_factory)


def get_access_service(db: Session = Depends(get_db), settings: Settings = Depends(get_settings)) -> AccessService:
    return AccessService(db, settings=settings)


def get_proximity_engine(db: Session = Depends(get_db), settings: Settings = Depends(get_settings)) -> ProximityEngine:
    return ProximityEngine(db, settings=settings)
