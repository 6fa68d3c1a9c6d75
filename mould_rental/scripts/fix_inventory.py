#!/usr/bin/env python3
"""Recompute available stock for every mould type from ACTIVE rentals."""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path

APP_DIR = Path(__file__).resolve().parents[1]
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from db.engine import build_engine, build_session_factory
from services.inventory_service import ReconcileReport, reconcile_all


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Check and repair MouldTypes.Available against currently rented units.",
    )
    parser.add_argument(
        "--db-url",
        default=os.environ.get("MOULD_RENTAL_DB_URL", "").strip(),
        help="SQLAlchemy DB URL; defaults to MOULD_RENTAL_DB_URL env var.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Report mismatches without writing corrections.",
    )
    return parser


def _print_report(report: ReconcileReport) -> None:
    print(f"{report.name}:")
    print(f"   Total quantity: {report.quantity}")
    print(f"   Currently rented: {report.quantity - report.new_available}")
    print(f"   Available (database): {report.old_available}")
    print(f"   Available (should be): {report.new_available}")
    if report.consistency_violation:
        print("   CONSISTENCY VIOLATION")
    print("   MISMATCH" if report.delta else "   OK")


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()
    if not args.db_url:
        parser.error("Missing DB URL. Set MOULD_RENTAL_DB_URL or pass --db-url.")

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s %(message)s")

    engine = build_engine(args.db_url)
    session_factory = build_session_factory(engine)
    with session_factory() as db:
        reports = reconcile_all(db)
        if args.dry_run:
            db.rollback()
        else:
            db.commit()

    for report in reports:
        _print_report(report)

    mismatches = sum(1 for report in reports if report.delta)
    action = "found" if args.dry_run else "fixed"
    print(f"\nInventory check complete: {len(reports)} mould type(s), {mismatches} mismatch(es) {action}.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
