"""
Entry point for running the Universe purge scheduler.

Sweeps idle hashtag groups and the daily IST-midnight purge for every
configured community until interrupted.

Usage:
    python -m universe
"""

import asyncio
import logging
import sys

from dotenv import load_dotenv

from universe.services.purge_sweeper import PurgeScheduler
from universe.services.purge_sweeper import PurgeSweeper
from universe.shared.config import get_settings
from universe.shared.database import DatabaseManager

logger = logging.getLogger("universe.run")


async def run_purge_scheduler() -> None:
    """Connect to the database and sweep until cancelled."""
    settings = get_settings()
    database = DatabaseManager(settings)
    await database.init()

    scheduler = PurgeScheduler(
        PurgeSweeper(database.session_maker),
        settings.communities,
        settings.purge_sweep_interval_seconds,
    )

    try:
        await database.create_tables()
        await scheduler.start()
    finally:
        await scheduler.stop()
        await database.close()


def main() -> None:
    load_dotenv()
    settings = get_settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    logger.info("Starting Universe purge scheduler...")
    try:
        asyncio.run(run_purge_scheduler())
    except KeyboardInterrupt:
        logger.info("Purge scheduler stopped by user")
    except Exception as e:
        logger.error(f"Purge scheduler error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
