"""
Background task keeping the record store in sync with the registry.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Optional

from greenwood.services.importer.package_sync import PackageSynchronizer

logger = logging.getLogger(__name__)


async def run_sync_cycle(synchronizer: PackageSynchronizer, cycle: int, legacy_every: int) -> None:
    """
    One cycle: current registry first, then the legacy backfill on every
    `legacy_every`-th cycle (the first one included).
    """
    await synchronizer.update_packages()
    if cycle % legacy_every == 0:
        await synchronizer.sync_legacy()


async def sync_loop(
    synchronizer: PackageSynchronizer,
    interval_seconds: float = 60,
    legacy_every: int = 60,
    max_cycles: Optional[int] = None,
) -> None:
    """
    Run synchronization cycles sequentially, forever unless `max_cycles` is given.

    A failing cycle is logged and the next one runs at the usual time.
    """
    cycle = 0
    while max_cycles is None or cycle < max_cycles:
        try:
            await run_sync_cycle(synchronizer, cycle, legacy_every)
        except Exception as e:
            logger.error(f"Error in sync loop: {e}", exc_info=True)
        cycle += 1
        if max_cycles is None or cycle < max_cycles:
            await asyncio.sleep(interval_seconds)
