"""
Candidate nomination and vote aggregation.

CONSISTENCY
===========

total_votes on a candidate is a denormalized counter. It must always equal
the number of weekly_game_votes rows for that candidate, so:

  1. The vote row and the counter change happen in the same transaction.
  2. The counter is changed with an atomic UPDATE
       SET total_votes = total_votes + 1
     never with read-modify-write in Python.
  3. (candidate_id, user_id) is unique at the DB level. A concurrent
     duplicate vote fails on insert, the transaction rolls back and the
     counter increment goes with it.
  4. Decrements are guarded with total_votes > 0 so the counter can never
     go negative even if rows and counter ever drifted (the CHECK
     constraint is the final net).

Duplicate nominations are handled the same way: (round_id, game_id) is
unique and a losing concurrent insert falls back to the existing row.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, update, delete, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from fastapi import HTTPException, status

from apoxer.models.round import WeeklyRound, WeeklyGameCandidate, WeeklyGameVote, TIME_SLOTS
from apoxer.services.profile_service import touch_last_active
from apoxer.services.round_service import get_open_round, get_round
from apoxer.core.logging import get_logger
from apoxer.core.metrics import record_vote

logger = get_logger(__name__)


def ensure_round_accepts_votes(weekly_round: WeeklyRound, now: Optional[datetime] = None) -> None:
    now = now or datetime.now(timezone.utc)
    if weekly_round.status != "open" or weekly_round.voting_ends_at <= now:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Voting is closed for this round",
        )


async def time_distributions(db: AsyncSession, candidate_ids: list[int]) -> dict[int, dict[str, int]]:
    """Per-candidate vote counts by time preference, zero filled."""
    distributions = {cid: {slot: 0 for slot in TIME_SLOTS} for cid in candidate_ids}
    if not candidate_ids:
        return distributions

    result = await db.execute(
        select(WeeklyGameVote.candidate_id, WeeklyGameVote.time_pref, func.count())
        .where(WeeklyGameVote.candidate_id.in_(candidate_ids))
        .group_by(WeeklyGameVote.candidate_id, WeeklyGameVote.time_pref)
    )
    for candidate_id, time_pref, n in result.all():
        if time_pref in distributions[candidate_id]:
            distributions[candidate_id][time_pref] = n
    return distributions


async def list_candidates(
    db: AsyncSession,
    round_id: Optional[int] = None,
) -> tuple[Optional[WeeklyRound], list[WeeklyGameCandidate], dict[int, dict[str, int]]]:
    """Candidates of a round (default: the open one) ordered by votes."""
    weekly_round = await get_round(db, round_id) if round_id else await get_open_round(db)
    if not weekly_round:
        return None, [], {}

    result = await db.execute(
        select(WeeklyGameCandidate)
        .where(WeeklyGameCandidate.round_id == weekly_round.id)
        .order_by(WeeklyGameCandidate.total_votes.desc(), WeeklyGameCandidate.created_at.asc())
    )
    candidates = list(result.scalars().all())
    return weekly_round, candidates, await time_distributions(db, [c.id for c in candidates])


async def _find_candidate(db: AsyncSession, round_id: int, game_id: str) -> Optional[WeeklyGameCandidate]:
    result = await db.execute(
        select(WeeklyGameCandidate).where(
            WeeklyGameCandidate.round_id == round_id,
            WeeklyGameCandidate.game_id == game_id,
        )
    )
    return result.scalar_one_or_none()


async def add_candidate(
    db: AsyncSession,
    user_id: int,
    game_id: Optional[str],
    game_name: Optional[str],
    cover_url: Optional[str] = None,
) -> tuple[WeeklyGameCandidate, bool]:
    """
    Nominate a game for the open round.
    Returns (candidate, created); an existing nomination is returned as is.
    """
    if not game_id or not game_name:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="game_id and game_name are required",
        )

    weekly_round = await get_open_round(db)
    if not weekly_round:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No active voting round",
        )
    ensure_round_accepts_votes(weekly_round)
    round_id = weekly_round.id

    existing = await _find_candidate(db, round_id, game_id)
    if existing:
        logger.info("candidate_exists", candidate_id=existing.id, game_id=game_id)
        return existing, False

    candidate = WeeklyGameCandidate(
        round_id=round_id,
        game_id=game_id,
        game_name=game_name,
        cover_url=cover_url,
        created_by=user_id,
        total_votes=0,
    )
    try:
        async with db.begin_nested():
            db.add(candidate)
            await db.flush()
    except IntegrityError:
        existing = await _find_candidate(db, round_id, game_id)
        if existing is None:
            raise
        logger.info("candidate_exists", candidate_id=existing.id, game_id=game_id, raced=True)
        return existing, False

    await db.refresh(candidate)
    logger.info("candidate_added", candidate_id=candidate.id, round_id=round_id, game_id=game_id, user_id=user_id)
    return candidate, True


async def _get_candidate(db: AsyncSession, candidate_id: int) -> WeeklyGameCandidate:
    result = await db.execute(select(WeeklyGameCandidate).where(WeeklyGameCandidate.id == candidate_id))
    candidate = result.scalar_one_or_none()
    if not candidate:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Candidate not found",
        )
    return candidate


async def _has_voted(db: AsyncSession, candidate_id: int, user_id: int) -> bool:
    result = await db.execute(
        select(WeeklyGameVote.id).where(
            WeeklyGameVote.candidate_id == candidate_id,
            WeeklyGameVote.user_id == user_id,
        )
    )
    return result.scalar_one_or_none() is not None


async def cast_vote(
    db: AsyncSession,
    user_id: int,
    candidate_id: int,
    time_pref: str = "afternoon",
    day_pref: Optional[str] = None,
) -> WeeklyGameCandidate:
    """Record one vote per (candidate, user) and bump the counter atomically."""
    candidate = await _get_candidate(db, candidate_id)
    weekly_round = await get_round(db, candidate.round_id)
    ensure_round_accepts_votes(weekly_round)

    if await _has_voted(db, candidate_id, user_id):
        record_vote("rejected")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="You have already voted for this candidate",
        )

    vote = WeeklyGameVote(
        round_id=candidate.round_id,
        candidate_id=candidate_id,
        user_id=user_id,
        time_pref=time_pref or "afternoon",
        day_pref=day_pref,
    )
    try:
        async with db.begin_nested():
            db.add(vote)
            await db.flush()
    except IntegrityError:
        record_vote("rejected")
        logger.info("vote_duplicate_race", candidate_id=candidate_id, user_id=user_id)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="You have already voted for this candidate",
        )

    await db.execute(
        update(WeeklyGameCandidate)
        .where(WeeklyGameCandidate.id == candidate_id)
        .values(total_votes=WeeklyGameCandidate.total_votes + 1)
    )
    await touch_last_active(db, user_id)
    await db.refresh(candidate)

    record_vote("cast")
    logger.info(
        "vote_cast",
        candidate_id=candidate_id,
        user_id=user_id,
        time_pref=time_pref,
        day_pref=day_pref,
        total_votes=candidate.total_votes,
    )
    return candidate


async def remove_vote(db: AsyncSession, user_id: int, candidate_id: int) -> WeeklyGameCandidate:
    """Delete the caller's vote and decrement the counter atomically."""
    candidate = await _get_candidate(db, candidate_id)
    weekly_round = await get_round(db, candidate.round_id)
    ensure_round_accepts_votes(weekly_round)

    deleted = await db.execute(
        delete(WeeklyGameVote).where(
            WeeklyGameVote.candidate_id == candidate_id,
            WeeklyGameVote.user_id == user_id,
        )
    )
    if deleted.rowcount == 0:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="You have not voted for this candidate",
        )

    await db.execute(
        update(WeeklyGameCandidate)
        .where(WeeklyGameCandidate.id == candidate_id, WeeklyGameCandidate.total_votes > 0)
        .values(total_votes=WeeklyGameCandidate.total_votes - 1)
    )
    await db.refresh(candidate)

    record_vote("removed")
    logger.info("vote_removed", candidate_id=candidate_id, user_id=user_id, total_votes=candidate.total_votes)
    return candidate
