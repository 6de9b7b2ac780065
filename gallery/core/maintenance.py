"""
Background maintenance loops (cache expiry sweep, library housekeeping).
"""
from __future__ import annotations

import asyncio
import logging
from typing import Optional, Set

from .image_cache import DerivativeCache

logger = logging.getLogger(__name__)

_maintenance_tasks: Set[asyncio.Task] = set()
_maintenance_started = False
_stop_requested = False


def register_maintenance_task(task: asyncio.Task) -> asyncio.Task:
    _maintenance_tasks.add(task)
    task.add_done_callback(_maintenance_tasks.discard)
    return task


def maintenance_status() -> bool:
    return _maintenance_started and any(not task.done() for task in _maintenance_tasks)


def request_maintenance_stop() -> None:
    """Cancel every registered maintenance task."""
    global _maintenance_started, _stop_requested
    _stop_requested = True
    for task in list(_maintenance_tasks):
        if not task.done():
            task.cancel()
    _maintenance_tasks.clear()
    _maintenance_started = False


async def cache_sweep_loop(cache: DerivativeCache, interval_seconds: float, delay_seconds: float = 0.0):
    """Periodic job: expire old derivatives and persist the cache index."""
    if delay_seconds:
        await asyncio.sleep(delay_seconds)
    while not _stop_requested:
        try:
            report = await asyncio.to_thread(cache.sweep)
            logger.info(
                "[maintenance] cache sweep: %d expired, %d orphaned, %d errors",
                report.expired_entries,
                report.orphan_files,
                len(report.errors),
            )
        except Exception as exc:
            logger.error("[maintenance] cache sweep failed: %s", exc)
        await asyncio.sleep(interval_seconds)


async def housekeeping_loop(library, interval_seconds: float, delay_seconds: float = 0.0):
    """Periodic job: drop posts whose folders disappeared."""
    if delay_seconds:
        await asyncio.sleep(delay_seconds)
    while not _stop_requested:
        try:
            records, posts = await asyncio.to_thread(library.housekeeping)
            logger.info("[maintenance] housekeeping removed %d records, %d post files", records, posts)
        except Exception as exc:
            logger.error("[maintenance] housekeeping failed: %s", exc)
        await asyncio.sleep(interval_seconds)


def start_maintenance_background(
    cache: DerivativeCache,
    library=None,
    *,
    sweep_interval_seconds: float,
    housekeeping_interval_seconds: float,
    delay_seconds: Optional[float] = None,
) -> bool:
    """Start the loops on the running event loop; no-op if already running."""
    global _maintenance_started, _stop_requested
    if maintenance_status():
        return False
    _stop_requested = False
    delay = delay_seconds or 0.0
    register_maintenance_task(
        asyncio.create_task(cache_sweep_loop(cache, sweep_interval_seconds, delay))
    )
    if library is not None:
        register_maintenance_task(
            asyncio.create_task(housekeeping_loop(library, housekeeping_interval_seconds, delay))
        )
    _maintenance_started = True
    logger.info("[maintenance] background loops started")
    return True
