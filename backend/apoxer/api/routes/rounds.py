"""
Weekly voting endpoints: rounds, candidates and votes.

Mounted under /events ahead of the event routes so that /events/rounds/...
and /events/candidates are not captured by /events/{event_id}.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from apoxer.db.session import get_db
from apoxer.schemas.round import (
    RoundResponse,
    CandidateResponse,
    CandidateCreate,
    CandidateListResponse,
    VoteCreate,
    VoteResponse,
    CurrentRoundResponse,
    HeroVotesResponse,
    SelectionResponse,
    RoundEndResponse,
    GeneratedEvent,
    GenerateEventsResponse,
)
from apoxer.services import round_service, vote_service
from apoxer.services.cache_service import EntityCache, get_event_list_cache
from apoxer.core.security import get_current_user_id, get_optional_user_id

router = APIRouter(prefix="/events", tags=["Weekly Rounds"])


def generated_events(events) -> list[GeneratedEvent]:
    return [
        GeneratedEvent(
            event_id=e.id,
            game_id=e.game_id,
            game_name=e.game_name,
            starts_at=e.starts_at,
            day_slot=e.day_slot,
            time_slot=e.time_slot,
        )
        for e in events
    ]


@router.post("/rounds/start", response_model=RoundResponse, status_code=status.HTTP_201_CREATED)
async def start_round_endpoint(
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Founder only. Opens a voting round; 400 when one is already open."""
    return await round_service.start_round(db, user_id)


@router.post("/rounds/end", response_model=RoundEndResponse)
async def end_round_endpoint(
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Founder only. Locks the open round and selects its top 3 games."""
    weekly_round, selections = await round_service.end_round(db, user_id)
    return RoundEndResponse(
        round=RoundResponse.model_validate(weekly_round),
        selections=[SelectionResponse.model_validate(s) for s in selections],
    )


@router.post("/rounds/lock", response_model=GenerateEventsResponse)
async def lock_round_endpoint(
    top_n: int = Query(round_service.SELECTION_TOP_N, ge=1, le=10),
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    event_cache: EntityCache = Depends(get_event_list_cache),
):
    """Founder only. Locks the round and creates events from vote preferences."""
    weekly_round, events, next_round = await round_service.lock_and_generate(db, user_id, top_n)
    await event_cache.clear()
    return GenerateEventsResponse(
        round_id=weekly_round.id,
        events=generated_events(events),
        next_round_id=next_round.id if next_round else None,
    )


@router.get("/rounds/current", response_model=CurrentRoundResponse)
async def current_round_endpoint(
    user_id: Optional[int] = Depends(get_optional_user_id),
    db: AsyncSession = Depends(get_db),
):
    weekly_round, candidates, user_votes = await round_service.get_current_round(db, user_id)
    return CurrentRoundResponse(
        round=RoundResponse.model_validate(weekly_round) if weekly_round else None,
        candidates=[CandidateResponse.model_validate(c) for c in candidates],
        user_votes=user_votes,
    )


@router.get("/candidates", response_model=CandidateListResponse)
async def list_candidates_endpoint(
    round_id: Optional[int] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    """Candidates of a round (default: the open one) with time-of-day breakdowns."""
    weekly_round, candidates, distributions = await vote_service.list_candidates(db, round_id)
    return CandidateListResponse(
        round=RoundResponse.model_validate(weekly_round) if weekly_round else None,
        candidates=[
            CandidateResponse.model_validate(c).model_copy(update={"time_distribution": distributions.get(c.id)})
            for c in candidates
        ],
    )


@router.post("/candidates", response_model=CandidateResponse)
async def add_candidate_endpoint(
    data: CandidateCreate,
    response: Response,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Nominate a game. 201 when new, 200 with the existing row otherwise."""
    candidate, created = await vote_service.add_candidate(db, user_id, data.game_id, data.game_name, data.cover_url)
    response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
    return candidate


@router.post("/votes", response_model=VoteResponse)
async def cast_vote_endpoint(
    data: VoteCreate,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    candidate = await vote_service.cast_vote(db, user_id, data.candidate_id, data.time_pref, data.day_pref)
    return VoteResponse(candidate_id=candidate.id, total_votes=candidate.total_votes, voted=True)


@router.delete("/votes", response_model=VoteResponse)
async def remove_vote_endpoint(
    candidate_id: int = Query(...),
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    candidate = await vote_service.remove_vote(db, user_id, candidate_id)
    return VoteResponse(candidate_id=candidate.id, total_votes=candidate.total_votes, voted=False)


@router.get("/votes/hero", response_model=HeroVotesResponse)
async def hero_votes_endpoint(
    user_id: Optional[int] = Depends(get_optional_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Top candidates for the landing hero: voted, or nominated in the last few minutes."""
    weekly_round, candidates, user_votes = await round_service.hero_votes(db, user_id)
    return HeroVotesResponse(
        round=RoundResponse.model_validate(weekly_round) if weekly_round else None,
        candidates=[CandidateResponse.model_validate(c) for c in candidates],
        user_votes=user_votes,
    )
