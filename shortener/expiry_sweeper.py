"""Background sweeper that removes expired mappings.

Resolve already purges an expired mapping when it meets one. This worker
catches the rest: mappings that expire and are never requested again.

Usage:
    python -m shortener.expiry_sweeper          # loop forever
    python -m shortener.expiry_sweeper --once   # single pass
"""

import argparse
import asyncio
import logging

from shortener.config import get_settings
from shortener.database import close_db
from shortener.dependencies import ServiceManager
from shortener.service import ShortenerService

__all__ = ["run", "sweep"]

logger = logging.getLogger(__name__)


async def sweep(service: ShortenerService, batch_size: int) -> int:
    """Purge expired mappings batch by batch until a batch comes back short."""
    total = 0
    while True:
        purged = await service.purge_expired(batch_size)
        total += purged
        if purged < batch_size:
            return total


async def run(once: bool = False) -> None:
    settings = get_settings()
    manager = ServiceManager()
    await manager.initialize()

    iteration = 0
    try:
        while True:
            iteration += 1
            try:
                purged = await sweep(manager.service, settings.EXPIRY_SWEEP_BATCH_SIZE)
                logger.info(f"Expiry sweep {iteration} removed {purged} mappings")
            except Exception as e:
                logger.warning(f"Expiry sweep {iteration} failed: {e}")

            if once:
                return
            await asyncio.sleep(settings.EXPIRY_SWEEP_INTERVAL_SECONDS)
    finally:
        await manager.cleanup()
        await close_db()


def main() -> None:
    parser = argparse.ArgumentParser(description="Remove expired short URL mappings")
    parser.add_argument("--once", action="store_true", help="Run a single sweep and exit")
    args = parser.parse_args()
    asyncio.run(run(once=args.once))


if __name__ == "__main__":
    main()
