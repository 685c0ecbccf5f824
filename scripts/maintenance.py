"""Periodic maintenance jobs, run from cron.

Usage::

    python scripts/maintenance.py reconcile-pending --older-than 30
    python scripts/maintenance.py purge-webhook-events
"""
from __future__ import annotations

import argparse
import logging

from dotenv import load_dotenv

load_dotenv()

from paygate.config import get_settings  # noqa: E402
from paygate.core.logging import setup_logging  # noqa: E402
from paygate.db import session_scope  # noqa: E402
from paygate.services.payments import PaymentService  # noqa: E402
from paygate.services.webhook_events import purge_expired_events  # noqa: E402

logger = logging.getLogger("paygate.maintenance")


def reconcile_pending(older_than: int, limit: int) -> dict[str, int]:
    with session_scope() as db:
        return PaymentService(db).reconcile_stale_pending(older_than_minutes=older_than, limit=limit)


def purge_webhook_events() -> int:
    with session_scope() as db:
        return purge_expired_events(db)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="paygate maintenance jobs")
    sub = parser.add_subparsers(dest="command", required=True)

    reconcile = sub.add_parser("reconcile-pending", help="Poll providers for stale pending payments")
    reconcile.add_argument("--older-than", type=int, default=30, help="Minutes since creation (default: 30)")
    reconcile.add_argument("--limit", type=int, default=100, help="Maximum payments per run (default: 100)")

    sub.add_parser("purge-webhook-events", help="Delete webhook dedup records past retention")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(get_settings().LOG_LEVEL)

    if args.command == "reconcile-pending":
        stats = reconcile_pending(args.older_than, args.limit)
        print(f"checked={stats['checked']} updated={stats['updated']} errors={stats['errors']}")
    else:
        removed = purge_webhook_events()
        print(f"purged={removed}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
