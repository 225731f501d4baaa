#!/usr/bin/env python3
"""
Initial Data Loading Script for the ANPR Event Service

Bootstraps the database:
- Creates missing tables
- Seeds the default whitelist and blacklist
- Sample plates on the default blacklist (optional, for development)

Usage:
    python load_initial_data.py [--with-samples]
"""

import sys
import argparse
import logging
from pathlib import Path

# Add parent to path
sys.path.insert(0, str(Path(__file__).parent))

from config_manager import get_config
from database.connection import DatabaseSettings, init_db, close_db
from database.models import normalize_plate
from database.repositories import ListRepository, PlateRepository

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

SAMPLE_BLACKLIST_NAME = "default_blacklist"

SAMPLE_PLATES = [
    {"number": "AB 123 CD", "note": "Sample: reported stolen"},
    {"number": "XY-987-ZT", "note": "Sample: unpaid parking fines"},
    {"number": "TEST 001", "note": "Sample: test vehicle"},
]


def load_sample_plates(session):
    """Put the sample plates on the default blacklist."""
    plates = PlateRepository(session)
    lists = ListRepository(session)

    blacklist = lists.get_by_name(SAMPLE_BLACKLIST_NAME)
    if blacklist is None:
        raise RuntimeError(f"List not found: {SAMPLE_BLACKLIST_NAME}")

    created = 0
    for sample in SAMPLE_PLATES:
        plate = plates.get_or_create(normalize_plate(sample["number"]), sample["number"])
        _, added = lists.add_plate(blacklist.id, plate.id, note=sample["note"])
        if added:
            created += 1
            logger.info(f"Added sample plate to blacklist: {plate.normalized}")
        else:
            logger.info(f"Sample plate already on blacklist: {plate.normalized}")

    return created


def main():
    parser = argparse.ArgumentParser(description="Load initial data into the ANPR database")
    parser.add_argument("--with-samples", action="store_true", help="Include sample blacklisted plates for development")
    parser.add_argument("--config", help="Path to config.yaml")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    logger.info("=" * 50)
    logger.info("ANPR Initial Data Loading")
    logger.info("=" * 50)

    try:
        config = get_config(args.config)
        db = init_db(DatabaseSettings.from_env(config.database))

        logger.info("[1/2] Creating tables and default lists...")
        lists_created = db.create_tables()
        logger.info(f"Default lists created: {lists_created}")

        if args.with_samples:
            logger.info("[2/2] Loading sample plates...")
            with db.session_scope() as session:
                samples_created = load_sample_plates(session)
            logger.info(f"Sample plates added: {samples_created}")
        else:
            logger.info("[2/2] Skipping sample plates (use --with-samples to include)")

        logger.info("=" * 50)
        logger.info("Initial data loading complete!")
        logger.info("=" * 50)
    except Exception as e:
        logger.error(f"Error loading initial data: {e}")
        raise
    finally:
        close_db()


if __name__ == "__main__":
    main()
