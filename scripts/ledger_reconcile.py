"""Print the balance snapshot reconciliation report as JSON.

Run from the repository root: `python -m scripts.ledger_reconcile [--rebuild]`.
Exit status is 1 when stale snapshots remain.
"""

import argparse
import json
import sys

from ledgerbot.common.db import SessionLocal
from ledgerbot.common.logging import configure_logging
from ledgerbot.services.ledger.service import LedgerService


def main() -> int:
    """CLI entrypoint for reconciliation checks."""

    parser = argparse.ArgumentParser(description="Compare cached balance snapshots with the ledger log.")
    parser.add_argument("--limit", type=int, default=1000)
    parser.add_argument("--rebuild", action="store_true", help="re-derive every stale snapshot from the log")
    args = parser.parse_args()

    configure_logging()
    service = LedgerService(SessionLocal)
    report = service.reconcile(limit=args.limit)
    if args.rebuild and report["stale"]:
        for status in report["stale"]:
            service.rebuild_snapshot(status["phone"], status["currency"])
        report["rebuilt"] = report["stale_count"]
        after = service.reconcile(limit=args.limit)
        report["stale_after_rebuild"] = after["stale_count"]
    print(json.dumps(report, indent=2, default=str))
    remaining = report.get("stale_after_rebuild", report["stale_count"])
    return 1 if remaining else 0


if __name__ == "__main__":
    sys.exit(main())
