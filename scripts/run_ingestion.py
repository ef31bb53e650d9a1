#!/usr/bin/env python3
"""
Run the mailbox ingestion loop and the data sync on fixed intervals.

Every INGESTION_INTERVAL_MINUTES (default 10) one ingestion cycle polls each
connected mailbox, stores new emails and resolves waiting tasks. Every
SYNC_INTERVAL_MINUTES (default 15) the data sync copies recent mail and all
HubSpot contacts and notes into the local store and embeds them. Each
service's own lock drops a run that would overlap a running one.

Run from project root:

    python scripts/run_ingestion.py             # loop forever
    python scripts/run_ingestion.py --once      # single ingestion cycle, then exit
    python scripts/run_ingestion.py --no-sync   # ingestion only
"""

import argparse
import logging
from datetime import datetime, timedelta

from apscheduler.schedulers.blocking import BlockingScheduler

from inboxpilot.bootstrap import build_services
from inboxpilot.core.config import INGESTION_INTERVAL_MINUTES, LOG_LEVEL, SYNC_INTERVAL_MINUTES

logging.basicConfig(level=LOG_LEVEL)
logger = logging.getLogger("inboxpilot.ingestion")


def main() -> None:
    parser = argparse.ArgumentParser(description="Poll mailboxes, resolve waiting tasks and sync CRM data.")
    parser.add_argument("--once", action="store_true", help="Run a single cycle and exit.")
    parser.add_argument(
        "--interval",
        type=int,
        default=INGESTION_INTERVAL_MINUTES,
        help="Minutes between ingestion cycles (default: INGESTION_INTERVAL_MINUTES).",
    )
    parser.add_argument(
        "--sync-interval",
        type=int,
        default=SYNC_INTERVAL_MINUTES,
        help="Minutes between data syncs (default: SYNC_INTERVAL_MINUTES).",
    )
    parser.add_argument("--no-sync", action="store_true", help="Do not schedule the data sync.")
    args = parser.parse_args()

    services = build_services()
    if args.once:
        if not args.no_sync:
            results = services.sync.sync_all_owners()
            print([r.to_dict() for r in results] if results is not None else "Skipped: a sync is already running.")
        report = services.ingestion.run_ingestion_cycle()
        print(report.to_dict() if report else "Skipped: a cycle is already running.")
        return

    scheduler = BlockingScheduler()
    scheduler.add_job(
        services.ingestion.run_ingestion_cycle,
        trigger="interval",
        minutes=args.interval,
        next_run_time=datetime.now(),
        max_instances=1,
        coalesce=True,
        id="ingestion_cycle",
    )
    if not args.no_sync:
        # First sync one minute after start.
        scheduler.add_job(
            services.sync.sync_all_owners,
            trigger="interval",
            minutes=args.sync_interval,
            next_run_time=datetime.now() + timedelta(minutes=1),
            max_instances=1,
            coalesce=True,
            id="data_sync",
        )
    logger.info(
        "Scheduler started (ingestion every %d min, sync %s)",
        args.interval,
        "off" if args.no_sync else f"every {args.sync_interval} min",
    )
    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Scheduler stopped")


if __name__ == "__main__":
    main()
