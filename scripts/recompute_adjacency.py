# scripts/recompute_adjacency.py
# 隣接関係の再計算（オフライン）。既定では adjacency_stale の圃場のみ対象
import argparse

from fieldshare.config import get_settings
from fieldshare.db import SessionLocal, init_db
from fieldshare.models.field import FarmField
from fieldshare.services.proximity.engine import ProximityEngine
from fieldshare.utils.logging_setup import setup_logging


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Recompute field adjacency")
    parser.add_argument("--all", action="store_true", help="recompute every field, not only stale ones")
    args = parser.parse_args(argv)

    settings = get_settings()
    setup_logging(settings.environment, settings.log_level, settings.log_dir)
    init_db()

    db = SessionLocal()
    try:
        engine = ProximityEngine(db, settings)
        if args.all:
            ids = [fid for (fid,) in db.query(FarmField.id).order_by(FarmField.id).all()]
            summary = engine.recompute_many(ids)
        else:
            summary = engine.recompute_stale()
    finally:
        db.close()

    print(f"recomputed={summary['recomputed']} failed={summary['failed']} skipped={summary['skipped']}")
    return 1 if summary["failed"] else 0


if __name__ == "__main__":
    raise SystemExit(main())
