"""
Periodic maintenance run inside the API process.

  lock_expired_rounds     every ROUND_SWEEP_INTERVAL_MINUTES
  close_inactive_lobbies  every LOBBY_SWEEP_INTERVAL_MINUTES

Each job opens its own session and commits on its own; a failing run is
logged and the next tick tries again.
"""

from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from apoxer.db.session import AsyncSessionLocal
from apoxer.services.event_service import advance_event_statuses
from apoxer.services.lobby_service import close_inactive_lobbies
from apoxer.services.round_service import lock_expired_rounds
from apoxer.services.cache_service import get_event_list_cache
from apoxer.core.config import get_settings
from apoxer.core.logging import get_logger

logger = get_logger(__name__)
settings = get_settings()

_scheduler: Optional[AsyncIOScheduler] = None


async def sweep_rounds_job() -> None:
    try:
        async with AsyncSessionLocal() as session:
            locked = await lock_expired_rounds(session)
            advanced = await advance_event_statuses(session)
            await session.commit()
        if advanced:
            await get_event_list_cache().clear()
        if locked or advanced:
            logger.info("round_sweep_done", locked=locked, events_advanced=advanced)
    except Exception as e:
        logger.error("round_sweep_failed", error=str(e), exc_info=True)


async def sweep_lobbies_job() -> None:
    try:
        async with AsyncSessionLocal() as session:
            closed = await close_inactive_lobbies(session)
            await session.commit()
        if closed:
            logger.info("lobby_sweep_done", closed=closed)
    except Exception as e:
        logger.error("lobby_sweep_failed", error=str(e), exc_info=True)


def start_scheduler() -> Optional[AsyncIOScheduler]:
    global _scheduler

    if not settings.SCHEDULER_ENABLED:
        logger.info("scheduler_disabled")
        return None

    scheduler = AsyncIOScheduler(timezone="UTC")
    scheduler.add_job(
        sweep_rounds_job,
        trigger=IntervalTrigger(minutes=settings.ROUND_SWEEP_INTERVAL_MINUTES),
        id="lock_expired_rounds",
        name="Lock rounds past their voting deadline",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.add_job(
        sweep_lobbies_job,
        trigger=IntervalTrigger(minutes=settings.LOBBY_SWEEP_INTERVAL_MINUTES),
        id="close_inactive_lobbies",
        name="Close lobbies with an idle host",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.start()
    _scheduler = scheduler

    logger.info(
        "scheduler_started",
        round_interval=settings.ROUND_SWEEP_INTERVAL_MINUTES,
        lobby_interval=settings.LOBBY_SWEEP_INTERVAL_MINUTES,
    )
    return scheduler


def stop_scheduler() -> None:
    global _scheduler

    if _scheduler is not None:
        _scheduler.shutdown(wait=False)
        _scheduler = None
        logger.info("scheduler_stopped")
