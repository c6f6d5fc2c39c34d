#!/usr/bin/env python3
"""
Runs the Bookloop maintenance sweeps. Meant to be called by cron, e.g.

    0 * * * *  python scripts/sweep.py overdue
    0 0 * * *  python scripts/sweep.py unlock-reissues
"""
import argparse
import logging
import sys
from datetime import datetime
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from bookloop.configs import LOG_LEVEL
from bookloop.core import db
from bookloop.core.lifecycle import BorrowLifecycle

SWEEPS = {
    "overdue": BorrowLifecycle.recompute_overdue,
    "unlock-reissues": BorrowLifecycle.unlock_expired_reissues,
}


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Recompute overdue fines or unlock expired reissue locks"
    )
    parser.add_argument(
        "sweep",
        choices=sorted(SWEEPS) + ["all"],
        help="Which sweep to run"
    )
    parser.add_argument(
        "--as-of",
        type=datetime.fromisoformat,
        default=None,
        help="Evaluate as of this ISO timestamp instead of now (UTC)"
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

    db.init()
    engine = BorrowLifecycle(db.SessionLocal())
    names = sorted(SWEEPS) if args.sweep == "all" else [args.sweep]

    failed = 0
    try:
        for name in names:
            report = SWEEPS[name](engine, args.as_of)
            print(f"{name}: processed={report.processed} updated={report.updated} failed={report.failed}")
            failed += report.failed
    finally:
        engine.db.close()
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
