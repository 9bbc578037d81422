"""
Weekly voting round lifecycle.

STATE MACHINE
=============

    open --(founder ends / voting_ends_at passes)--> locked --(events generated)--> processed

Invariants:
  - At most one open round. Checked up front for a friendly 400 and
    guaranteed by the partial unique index uq_weekly_rounds_single_open,
    so two concurrent starts cannot both commit.
  - Candidates and votes are only accepted while the round is open and
    before voting_ends_at (see vote_service.ensure_round_accepts_votes).
  - Locking snapshots the top candidates into weekly_game_selections,
    which then collect day/time preferences until selection_phase_deadline.

Expiry:
  lock_expired_rounds() is the server-side sweep for rounds whose deadline
  passed without a founder ending them. The maintenance scheduler runs it
  periodically; it needs no caller identity.
"""

import random
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from fastapi import HTTPException, status

from apoxer.models.round import (
    WeeklyRound,
    WeeklyGameCandidate,
    WeeklyGameVote,
    WeeklyGameSelection,
)
from apoxer.services.event_service import create_event_record
from apoxer.services.profile_service import require_founder
from apoxer.services.scheduling import (
    dominant_day,
    dominant_time_slot,
    event_window,
    iso_week_key,
    voting_deadline,
)
from apoxer.core.config import get_settings
from apoxer.core.logging import get_logger
from apoxer.core.metrics import record_round_transition

logger = get_logger(__name__)
settings = get_settings()

SELECTION_TOP_N = 3
HERO_LIMIT = 5
HERO_FRESH_WINDOW = timedelta(minutes=5)
MAX_WEEK_KEY_PROBES = 52


async def get_open_round(db: AsyncSession) -> Optional[WeeklyRound]:
    result = await db.execute(select(WeeklyRound).where(WeeklyRound.status == "open"))
    return result.scalar_one_or_none()


async def get_round(db: AsyncSession, round_id: int) -> WeeklyRound:
    result = await db.execute(select(WeeklyRound).where(WeeklyRound.id == round_id))
    weekly_round = result.scalar_one_or_none()
    if not weekly_round:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Round not found",
        )
    return weekly_round


async def _free_week_key(db: AsyncSession, start: datetime) -> str:
    """First ISO week key at or after `start` that no round uses yet."""
    moment = start
    for _ in range(MAX_WEEK_KEY_PROBES):
        key = iso_week_key(moment)
        taken = await db.execute(select(WeeklyRound.id).where(WeeklyRound.week_key == key))
        if taken.scalar_one_or_none() is None:
            return key
        moment += timedelta(days=7)
    raise HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail="No free week available for a new round",
    )


async def _insert_open_round(db: AsyncSession, week_key: str, now: datetime) -> WeeklyRound:
    weekly_round = WeeklyRound(
        week_key=week_key,
        status="open",
        voting_ends_at=voting_deadline(now, settings.ROUND_VOTING_DAYS),
    )
    try:
        async with db.begin_nested():
            db.add(weekly_round)
            await db.flush()
    except IntegrityError:
        # lost a race with another start: the partial unique index fired
        logger.warning("round_start_conflict", week_key=week_key)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="There is already an open round",
        )
    await db.refresh(weekly_round)
    record_round_transition("open")
    return weekly_round


async def start_round(db: AsyncSession, user_id: int, now: Optional[datetime] = None) -> WeeklyRound:
    """Founder-only: open a new voting round for the current ISO week."""
    await require_founder(db, user_id)
    now = now or datetime.now(timezone.utc)

    existing = await get_open_round(db)
    if existing:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"There is already an open round: {existing.week_key}",
        )

    week_key = await _free_week_key(db, now)
    weekly_round = await _insert_open_round(db, week_key, now)
    logger.info(
        "round_started",
        round_id=weekly_round.id,
        week_key=weekly_round.week_key,
        voting_ends_at=weekly_round.voting_ends_at.isoformat(),
        started_by=user_id,
    )
    return weekly_round


async def top_candidates(db: AsyncSession, round_id: int, limit: int) -> list[WeeklyGameCandidate]:
    result = await db.execute(
        select(WeeklyGameCandidate)
        .where(WeeklyGameCandidate.round_id == round_id)
        .order_by(WeeklyGameCandidate.total_votes.desc(), WeeklyGameCandidate.created_at.asc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def _lock_round(
    db: AsyncSession,
    weekly_round: WeeklyRound,
    now: datetime,
    top: list[WeeklyGameCandidate],
) -> list[WeeklyGameSelection]:
    """open -> locked, snapshotting `top` as selections."""
    locked = await db.execute(
        update(WeeklyRound)
        .where(WeeklyRound.id == weekly_round.id, WeeklyRound.status == "open")
        .values(
            status="locked",
            selection_phase_deadline=now + timedelta(days=settings.SELECTION_PHASE_DAYS),
            updated_at=now,
        )
        .execution_options(synchronize_session="fetch")
    )
    if locked.rowcount == 0:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Round was already closed",
        )

    selections = []
    for rank, candidate in enumerate(top, start=1):
        selection = WeeklyGameSelection(
            round_id=weekly_round.id,
            candidate_id=candidate.id,
            game_id=candidate.game_id,
            game_name=candidate.game_name,
            rank=rank,
            events_created=False,
        )
        db.add(selection)
        selections.append(selection)
    await db.flush()
    await db.refresh(weekly_round)

    record_round_transition("locked")
    return selections


async def end_round(
    db: AsyncSession,
    user_id: int,
    now: Optional[datetime] = None,
) -> tuple[WeeklyRound, list[WeeklyGameSelection]]:
    """Founder-only: close voting and open the selection phase for the top 3."""
    await require_founder(db, user_id)
    now = now or datetime.now(timezone.utc)

    weekly_round = await get_open_round(db)
    if not weekly_round:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No open round found",
        )

    top = await top_candidates(db, weekly_round.id, SELECTION_TOP_N)
    if not top:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No candidates to select from",
        )

    selections = await _lock_round(db, weekly_round, now, top)
    logger.info(
        "round_ended",
        round_id=weekly_round.id,
        week_key=weekly_round.week_key,
        selections=[s.game_id for s in selections],
        ended_by=user_id,
    )
    return weekly_round, selections


async def lock_expired_rounds(db: AsyncSession, now: Optional[datetime] = None) -> list[int]:
    """Lock every open round whose voting deadline has passed."""
    now = now or datetime.now(timezone.utc)
    result = await db.execute(
        select(WeeklyRound).where(WeeklyRound.status == "open", WeeklyRound.voting_ends_at <= now)
    )
    locked_ids = []
    for weekly_round in result.scalars().all():
        top = await top_candidates(db, weekly_round.id, SELECTION_TOP_N)
        await _lock_round(db, weekly_round, now, top)
        locked_ids.append(weekly_round.id)
        logger.info("round_expired_locked", round_id=weekly_round.id, week_key=weekly_round.week_key)
    return locked_ids


async def user_vote_map(db: AsyncSession, round_id: int, user_id: Optional[int]) -> dict[int, bool]:
    if user_id is None:
        return {}
    result = await db.execute(
        select(WeeklyGameVote.candidate_id).where(
            WeeklyGameVote.round_id == round_id,
            WeeklyGameVote.user_id == user_id,
        )
    )
    return {candidate_id: True for candidate_id in result.scalars().all()}


async def recount_votes(db: AsyncSession, round_id: int) -> None:
    """Rewrite total_votes from the vote rows of a round."""
    counts = await db.execute(
        select(WeeklyGameVote.candidate_id, func.count())
        .where(WeeklyGameVote.round_id == round_id)
        .group_by(WeeklyGameVote.candidate_id)
    )
    by_candidate = dict(counts.all())

    candidates = await db.execute(
        select(WeeklyGameCandidate).where(WeeklyGameCandidate.round_id == round_id)
    )
    for candidate in candidates.scalars().all():
        actual = by_candidate.get(candidate.id, 0)
        if candidate.total_votes != actual:
            logger.warning(
                "candidate_vote_drift",
                candidate_id=candidate.id,
                stored=candidate.total_votes,
                actual=actual,
            )
            candidate.total_votes = actual
    await db.flush()


async def get_current_round(
    db: AsyncSession,
    user_id: Optional[int] = None,
) -> tuple[Optional[WeeklyRound], list[WeeklyGameCandidate], dict[int, bool]]:
    """Latest open or locked round, its candidates by votes and the caller's votes."""
    result = await db.execute(
        select(WeeklyRound)
        .where(WeeklyRound.status.in_(("open", "locked")))
        .order_by(WeeklyRound.created_at.desc(), WeeklyRound.id.desc())
        .limit(1)
    )
    weekly_round = result.scalar_one_or_none()
    if not weekly_round:
        return None, [], {}

    candidates = await db.execute(
        select(WeeklyGameCandidate)
        .where(WeeklyGameCandidate.round_id == weekly_round.id)
        .order_by(WeeklyGameCandidate.total_votes.desc(), WeeklyGameCandidate.created_at.asc())
    )
    return weekly_round, list(candidates.scalars().all()), await user_vote_map(db, weekly_round.id, user_id)


async def hero_votes(
    db: AsyncSession,
    user_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> tuple[Optional[WeeklyRound], list[WeeklyGameCandidate], dict[int, bool]]:
    """Top 5 candidates of the open round that have votes or were just added."""
    now = now or datetime.now(timezone.utc)
    weekly_round = await get_open_round(db)
    if not weekly_round:
        return None, [], {}

    fresh_since = now - HERO_FRESH_WINDOW
    result = await db.execute(
        select(WeeklyGameCandidate)
        .where(
            WeeklyGameCandidate.round_id == weekly_round.id,
            (WeeklyGameCandidate.total_votes > 0) | (WeeklyGameCandidate.created_at >= fresh_since),
        )
        .order_by(WeeklyGameCandidate.total_votes.desc(), WeeklyGameCandidate.created_at.desc())
        .limit(HERO_LIMIT)
    )
    return weekly_round, list(result.scalars().all()), await user_vote_map(db, weekly_round.id, user_id)


async def ensure_next_round(db: AsyncSession, now: datetime) -> Optional[WeeklyRound]:
    """Open next week's round unless it exists or another round is open."""
    next_key = iso_week_key(now + timedelta(days=7))
    result = await db.execute(select(WeeklyRound).where(WeeklyRound.week_key == next_key))
    existing = result.scalar_one_or_none()
    if existing:
        return existing

    if await get_open_round(db):
        logger.info("next_round_skipped", week_key=next_key, reason="open_round_exists")
        return None

    weekly_round = await _insert_open_round(db, next_key, now)
    logger.info("next_round_created", round_id=weekly_round.id, week_key=next_key)
    return weekly_round


async def generate_events_from_round(
    db: AsyncSession,
    weekly_round: WeeklyRound,
    top_n: int = SELECTION_TOP_N,
    now: Optional[datetime] = None,
    rng: Optional[random.Random] = None,
) -> tuple[list, Optional[WeeklyRound]]:
    """
    Materialize events straight from vote preferences.

    For each of the top N candidates the event slot comes from its votes:
    afternoon vs late_night by count, the most voted day (saturday when
    nobody picked one). A candidate that fails to materialize is logged and
    skipped; the round is still marked processed.
    """
    now = now or datetime.now(timezone.utc)
    if weekly_round.status == "processed":
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Events have already been generated for this round",
        )

    if weekly_round.status == "open":
        await db.execute(
            update(WeeklyRound)
            .where(WeeklyRound.id == weekly_round.id, WeeklyRound.status == "open")
            .values(status="locked", updated_at=now)
            .execution_options(synchronize_session="fetch")
        )
        record_round_transition("locked")

    await recount_votes(db, weekly_round.id)
    top = await top_candidates(db, weekly_round.id, top_n)

    created = []
    for candidate in top:
        prefs = await db.execute(
            select(WeeklyGameVote.time_pref, WeeklyGameVote.day_pref).where(
                WeeklyGameVote.candidate_id == candidate.id
            )
        )
        rows = prefs.all()
        time_slot = dominant_time_slot((row.time_pref for row in rows), rng)
        day_slot = dominant_day((row.day_pref for row in rows), rng)
        starts_at, ends_at = event_window(day_slot, time_slot, now, settings.EVENT_DURATION_HOURS)
        try:
            async with db.begin_nested():
                event = await create_event_record(
                    db,
                    game_id=candidate.game_id,
                    game_name=candidate.game_name,
                    title=f"{candidate.game_name} Weekly Session",
                    cover_url=candidate.cover_url,
                    starts_at=starts_at,
                    ends_at=ends_at,
                    day_slot=day_slot,
                    time_slot=time_slot,
                    round_id=weekly_round.id,
                    source="round",
                )
        except SQLAlchemyError as e:
            logger.error("event_generation_failed", candidate_id=candidate.id, error=str(e))
            continue
        created.append(event)

    await db.execute(
        update(WeeklyRound)
        .where(WeeklyRound.id == weekly_round.id)
        .values(status="processed", events_generated_at=now, updated_at=now)
        .execution_options(synchronize_session="fetch")
    )
    record_round_transition("processed")
    await db.refresh(weekly_round)

    next_round = await ensure_next_round(db, now)
    logger.info(
        "round_events_generated",
        round_id=weekly_round.id,
        events=len(created),
        next_round_id=next_round.id if next_round else None,
    )
    return created, next_round


async def lock_and_generate(
    db: AsyncSession,
    user_id: int,
    top_n: int = SELECTION_TOP_N,
    now: Optional[datetime] = None,
) -> tuple[WeeklyRound, list, Optional[WeeklyRound]]:
    """Founder-only: lock the current round and generate its events in one step."""
    await require_founder(db, user_id)
    weekly_round = await get_open_round(db)
    if weekly_round is None:
        result = await db.execute(
            select(WeeklyRound)
            .where(WeeklyRound.status == "locked")
            .order_by(WeeklyRound.created_at.desc(), WeeklyRound.id.desc())
            .limit(1)
        )
        weekly_round = result.scalar_one_or_none()
    if weekly_round is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No open or locked round found",
        )

    events, next_round = await generate_events_from_round(db, weekly_round, top_n, now)
    return weekly_round, events, next_round
