#!/usr/bin/env python3
"""Report and repair vehicle/customer fields that drifted from rental records."""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path

APP_DIR = Path(__file__).resolve().parents[1]
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from db.engine import build_engine, build_sessionmaker  # noqa: E402
from db.tenant import TenantScope  # noqa: E402
from services.reconciliation_service import dealer_ids, reconcile_dealer  # noqa: E402


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Reconcile Vehicle/Customer denormalized fields against Rental rows.",
    )
    parser.add_argument("--dealer-id", type=int, default=None, help="Only reconcile this dealer.")
    parser.add_argument(
        "--apply",
        action="store_true",
        help="Commit the repairs. Without it the run is a dry run and rolls back.",
    )
    parser.add_argument(
        "--db-url",
        default=os.environ.get("RENTAL_MANAGEMENT_DB_URL", "").strip(),
        help="SQLAlchemy DB URL; defaults to RENTAL_MANAGEMENT_DB_URL env var.",
    )
    parser.add_argument("--verbose", action="store_true", help="Log every finding.")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    if not args.db_url:
        print("Missing --db-url (or RENTAL_MANAGEMENT_DB_URL).", file=sys.stderr)
        return 2

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.ERROR,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    session_factory = build_sessionmaker(build_engine(args.db_url))
    total = 0
    with session_factory() as db:
        targets = [args.dealer_id] if args.dealer_id is not None else dealer_ids(db)
        for dealer_id in targets:
            findings = reconcile_dealer(TenantScope(db, dealer_id))
            total += len(findings)
            for finding in findings:
                print(
                    f"dealer={finding.dealer_id} {finding.entity}={finding.entity_id} "
                    f"issue={finding.issue} action={finding.action}"
                )
        if args.apply:
            db.commit()
        else:
            db.rollback()

    mode = "applied" if args.apply else "dry-run"
    print(f"OK findings={total} mode={mode}")
    return 1 if total and not args.apply else 0


if __name__ == "__main__":
    raise SystemExit(main())
