#!/usr/bin/env python3
from __future__ import annotations

import argparse
import os
import sys
from datetime import datetime
from pathlib import Path

from sqlalchemy import select

APP_DIR = Path(__file__).resolve().parents[1]
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from db.base import Base
from db.engine import build_engine, build_session_factory
from models.rental_models import MouldType


MOULD_TYPES = [
    "Ashlar 8",
    "Indiana",
    "European fan",
    "Tile mart 1",
    "Ashler",
    "Ashlar Bold",
    "Ashler bold C",
    "Royal Ashler Bold 1",
    "Stone",
    "Stone/flower rock",
    "Big couble",
    "Square Ashlar",
    "Compass",
    "Y wood",
    "Royal ashler B2",
    "Double bold Wood",
    "London Couble stone",
]


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Create tables and insert the default mould-type catalogue with no stock.",
    )
    parser.add_argument(
        "--db-url",
        default=os.environ.get("MOULD_RENTAL_DB_URL", "").strip(),
        help="SQLAlchemy DB URL; defaults to MOULD_RENTAL_DB_URL env var.",
    )
    return parser


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()
    if not args.db_url:
        parser.error("Missing DB URL. Set MOULD_RENTAL_DB_URL or pass --db-url.")

    engine = build_engine(args.db_url)
    Base.metadata.create_all(engine)
    session_factory = build_session_factory(engine)

    created = 0
    with session_factory() as db:
        existing = set(db.execute(select(MouldType.Name)).scalars().all())
        for name in MOULD_TYPES:
            if name in existing:
                continue
            db.add(
                MouldType(
                    Name=name,
                    Quantity=0,
                    Available=0,
                    CreatedDate=datetime.now(),
                    UpdatedDate=datetime.now(),
                )
            )
            created += 1
        db.commit()

    print(f"OK created={created} existing={len(MOULD_TYPES) - created}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
