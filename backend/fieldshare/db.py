from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, Session

# モデル定義側の Base（fieldshare.models.base）を利用してメタデータを統一
from fieldshare.models.base import Base
from fieldshare.config import get_settings
from fieldshare.exceptions import StoreError
from fieldshare.utils.logging_setup import get_logger

logger = get_logger(__name__)


def default_database_url() -> str:
    # 1) DATABASE_URL が指定されていれば優先（例: postgresql+psycopg://...）
    # 2) それ以外は SQLite を使用
    url = get_settings().database_url
    if url:
        return url
    _container_data = Path("/app/data")
    if _container_data.exists():
        db_path = _container_data / "fieldshare.db"
    else:
        # backend/fieldshare/db.py → ../../.. = <repo root>
        repo_root = Path(__file__).resolve().parents[2]
        db_path = repo_root / "data" / "fieldshare.db"
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{db_path}"


def make_engine(url: str) -> Engine:
    is_sqlite = url.startswith("sqlite")
    connect_args = {"check_same_thread": False} if is_sqlite else {}
    eng = create_engine(url, connect_args=connect_args)
    if is_sqlite:
        # SQLite は既定で外部キー制約を無視するため、接続ごとに有効化
        @event.listens_for(eng, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()
    return eng


def make_session_factory(eng: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=eng)


SQLALCHEMY_DATABASE_URL = default_database_url()
engine = make_engine(SQLALCHEMY_DATABASE_URL)
SessionLocal = make_session_factory(engine)


def init_db(bind: Engine = None) -> None:
    # パッケージ配下の各モデルモジュールを明示 import してメタデータ登録を確実化
    import fieldshare.models.field  # noqa: F401
    import fieldshare.models.adjacency  # noqa: F401
    import fieldshare.models.access_grant  # noqa: F401
    import fieldshare.models.field_update  # noqa: F401
    Base.metadata.create_all(bind=bind or engine)


@contextmanager
def transaction(db: Session, action: str):
    """Commit on success; roll back and raise StoreError on a database failure."""
    try:
        yield db
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception(f"Store failure during {action}")
        raise StoreError(f"Failed to {action}", {"cause": type(e).__name__}) from e
    except Exception:
        db.rollback()
        raise


def get_db():
    db: Session = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory() -> sessionmaker:
    return SessionLocal
