"""Periodic refresh of every READY guild.

Provides ``tick_refresh`` which APScheduler invokes every
``settings.update_interval`` minutes. The scheduler is only started once the
startup sweep has finished, so the first tick never races initialization.

Errors are logged but never propagated so the scheduler keeps running.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

if TYPE_CHECKING:
    from issuebot.core.registry import GuildRegistry

logger = logging.getLogger(__name__)

REFRESH_JOB_ID = "refresh_all_guilds"


async def tick_refresh(registry: GuildRegistry) -> None:
    """Refresh all READY guilds. Never raises."""
    try:
        await registry.refresh_all()
    except Exception:  # Last-resort handler — keeps the interval job alive
        logger.exception("tick_refresh_error")


def start_refresh_scheduler(
    registry: GuildRegistry,
    interval_minutes: int,
) -> AsyncIOScheduler:
    """Create and start the interval job. Must be called from the running loop."""
    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        tick_refresh,
        trigger=IntervalTrigger(minutes=interval_minutes),
        kwargs={"registry": registry},
        id=REFRESH_JOB_ID,
        name="Refresh issue embeds",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.start()
    logger.info("scheduler_started interval_minutes=%d", interval_minutes)
    return scheduler
