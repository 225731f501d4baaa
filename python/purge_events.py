#!/usr/bin/env python3
"""
Event Retention Purge for the ANPR Event Service

Deletes ANPR events older than the retention window. Meant to run from cron
or a systemd timer.

Usage:
    python purge_events.py [--days N] [--config config.yaml]
"""

import sys
import argparse
import logging
from pathlib import Path

# Add parent to path
sys.path.insert(0, str(Path(__file__).parent))

from config_manager import get_config, setup_logging
from database.anpr_service import ANPRService
from database.connection import DatabaseSettings, init_db, close_db

logger = logging.getLogger(__name__)


def purge(db, days: int) -> int:
    """Delete events older than ``days`` days in one transaction.

    Returns:
        Number of events deleted
    """
    with db.get_unit_of_work() as uow:
        return ANPRService(uow.session).cleanup_old_events(days)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Delete ANPR events older than the retention window")
    parser.add_argument("--days", type=int, help="Retention in days (default: retention.event_retention_days)")
    parser.add_argument("--config", help="Path to config.yaml")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    args = parser.parse_args(argv)

    config = get_config(args.config)
    setup_logging(config.logging)
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    days = args.days if args.days is not None else config.retention.event_retention_days
    if days <= 0:
        parser.error("--days must be positive")

    try:
        db = init_db(DatabaseSettings.from_env(config.database))
        deleted = purge(db, days)
        logger.info("Purge complete: deleted_count=%d days=%d", deleted, days)
        print(f"Deleted {deleted} events older than {days} days")
        return 0
    except Exception as e:
        logger.error("Purge failed: %s", e)
        return 1
    finally:
        close_db()


if __name__ == "__main__":
    sys.exit(main())
