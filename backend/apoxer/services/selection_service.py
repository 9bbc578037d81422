"""
Selection phase: after a round locks, each selected game collects day/time
preferences until the round's selection deadline, then becomes an event.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from fastapi import HTTPException, status

from apoxer.models.event import Event
from apoxer.models.round import WeeklyRound, WeeklyGameSelection, WeeklyGameSelectionVote
from apoxer.services.event_service import create_event_record
from apoxer.services.profile_service import require_founder
from apoxer.services.round_service import ensure_next_round, get_round
from apoxer.services.scheduling import event_window, most_popular_slot
from apoxer.core.config import get_settings
from apoxer.core.logging import get_logger
from apoxer.core.metrics import record_round_transition

logger = get_logger(__name__)
settings = get_settings()


async def _get_selection(db: AsyncSession, selection_id: int) -> WeeklyGameSelection:
    result = await db.execute(select(WeeklyGameSelection).where(WeeklyGameSelection.id == selection_id))
    selection = result.scalar_one_or_none()
    if not selection:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Selection not found",
        )
    return selection


async def list_selections(db: AsyncSession, round_id: int) -> list[WeeklyGameSelection]:
    result = await db.execute(
        select(WeeklyGameSelection)
        .where(WeeklyGameSelection.round_id == round_id)
        .order_by(WeeklyGameSelection.rank.asc())
    )
    return list(result.scalars().all())


async def vote_selection(
    db: AsyncSession,
    user_id: int,
    selection_id: int,
    day_pref: str,
    time_pref: str,
    now: Optional[datetime] = None,
) -> WeeklyGameSelectionVote:
    """Upsert the caller's preferred day and time for a selected game."""
    now = now or datetime.now(timezone.utc)
    selection = await _get_selection(db, selection_id)
    weekly_round = await get_round(db, selection.round_id)

    if selection.events_created:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Events have already been created for this selection",
        )
    if weekly_round.selection_phase_deadline is None or weekly_round.selection_phase_deadline <= now:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Selection phase has ended",
        )

    result = await db.execute(
        select(WeeklyGameSelectionVote).where(
            WeeklyGameSelectionVote.selection_id == selection_id,
            WeeklyGameSelectionVote.user_id == user_id,
        )
    )
    vote = result.scalar_one_or_none()
    if vote:
        vote.day_pref = day_pref
        vote.time_pref = time_pref
    else:
        vote = WeeklyGameSelectionVote(
            selection_id=selection_id,
            user_id=user_id,
            day_pref=day_pref,
            time_pref=time_pref,
        )
        db.add(vote)
    await db.flush()

    logger.info("selection_vote_set", selection_id=selection_id, user_id=user_id, day=day_pref, time=time_pref)
    return vote


async def _materialize_selection(
    db: AsyncSession,
    selection: WeeklyGameSelection,
    now: datetime,
    created_by: Optional[int] = None,
) -> Event:
    prefs = await db.execute(
        select(WeeklyGameSelectionVote.day_pref, WeeklyGameSelectionVote.time_pref).where(
            WeeklyGameSelectionVote.selection_id == selection.id
        )
    )
    day_slot, time_slot = most_popular_slot((row.day_pref, row.time_pref) for row in prefs.all())
    starts_at, ends_at = event_window(day_slot, time_slot, now, settings.EVENT_DURATION_HOURS)

    event = await create_event_record(
        db,
        game_id=selection.game_id,
        game_name=selection.game_name,
        title=f"{selection.game_name} Weekly Session",
        starts_at=starts_at,
        ends_at=ends_at,
        day_slot=day_slot,
        time_slot=time_slot,
        round_id=selection.round_id,
        created_by=created_by,
        source="selection",
    )
    selection.events_created = True
    await db.flush()
    return event


async def process_selections(
    db: AsyncSession,
    user_id: int,
    now: Optional[datetime] = None,
) -> tuple[list[int], list[Event]]:
    """
    Founder-only: turn every finished selection phase into events, mark the
    rounds processed and open next week's round.
    """
    await require_founder(db, user_id)
    now = now or datetime.now(timezone.utc)

    result = await db.execute(
        select(WeeklyRound)
        .where(
            WeeklyRound.status == "locked",
            WeeklyRound.selection_phase_deadline.is_not(None),
            WeeklyRound.selection_phase_deadline <= now,
        )
        .order_by(WeeklyRound.created_at.asc())
    )
    rounds = list(result.scalars().all())

    processed, events = [], []
    for weekly_round in rounds:
        for selection in await list_selections(db, weekly_round.id):
            if selection.events_created:
                continue
            selection_id = selection.id
            try:
                async with db.begin_nested():
                    event = await _materialize_selection(db, selection, now, created_by=user_id)
            except SQLAlchemyError as e:
                logger.error("selection_event_failed", selection_id=selection_id, error=str(e))
                continue
            events.append(event)

        await db.execute(
            update(WeeklyRound)
            .where(WeeklyRound.id == weekly_round.id)
            .values(status="processed", events_generated_at=now, updated_at=now)
            .execution_options(synchronize_session="fetch")
        )
        record_round_transition("processed")
        processed.append(weekly_round.id)
        logger.info("selection_round_processed", round_id=weekly_round.id, week_key=weekly_round.week_key)

    if processed:
        await ensure_next_round(db, now)
    return processed, events


async def create_event_from_selection(
    db: AsyncSession,
    user_id: int,
    selection_id: int,
    now: Optional[datetime] = None,
) -> Event:
    """Founder-only: materialize one selection ahead of the batch run."""
    await require_founder(db, user_id)
    selection = await _get_selection(db, selection_id)
    if selection.events_created:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Events have already been created for this selection",
        )
    return await _materialize_selection(db, selection, now or datetime.now(timezone.utc), created_by=user_id)
