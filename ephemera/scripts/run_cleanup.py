"""
Run the two-stage cleanup (soft delete expired, then hard delete after
retention) from the command line or a cron job.

Usage:
  ephemera-cleanup [--init-db] [--interval SECONDS]

Without --interval a single run is made and its report printed as JSON.
The exit code is 1 if the run reported a stage error or any failure.
"""
import argparse
import json
import logging
import sys
import time
from typing import List, Optional

from ephemera.core.config import settings
from ephemera.core.logging import setup_logging
from ephemera.db import SessionLocal, init_db
from ephemera.services.lifecycle import CleanupReport, run_cleanup_once
from ephemera.services.notifier import build_notifier
from ephemera.storage.client import build_storage_client

logger = logging.getLogger(__name__)


def _failed(report: CleanupReport) -> bool:
    return bool(report.errors or report.failed_remote_count or report.failed_metadata_count)


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Expire and purge ephemeral objects")
    ap.add_argument("--interval", type=float, default=None,
                    help="Keep running, sleeping this many seconds between runs")
    ap.add_argument("--init-db", action="store_true", help="Create missing tables before running")
    args = ap.parse_args(argv)

    if args.interval is not None and args.interval <= 0:
        ap.error("--interval must be positive")

    setup_logging(settings.LOG_LEVEL, json_format=settings.LOG_JSON)

    if args.init_db:
        init_db()

    storage = build_storage_client(settings)
    notifier = build_notifier(settings)

    while True:
        report = run_cleanup_once(SessionLocal, storage, settings=settings, notifier=notifier)
        print(json.dumps(report.to_dict()), flush=True)

        if args.interval is None:
            return 1 if _failed(report) else 0

        try:
            time.sleep(args.interval)
        except KeyboardInterrupt:
            logger.info("Cleanup loop stopped")
            return 0


if __name__ == "__main__":
    sys.exit(main())
