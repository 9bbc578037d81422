"""
Tournament endpoints.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from apoxer.db.session import get_db
from apoxer.schemas.tournament import (
    TournamentCreate,
    TournamentResponse,
    TournamentListResponse,
    TournamentDetailResponse,
    ParticipantResponse,
    MatchResponse,
    RegistrationResponse,
    FinalizeMatchRequest,
    FinalizeMatchResponse,
    AchievementImagesResponse,
)
from apoxer.integrations.exophase import find_achievement_images
from apoxer.services import tournament_service
from apoxer.services.bracket import tournament_state
from apoxer.services.cache_service import EntityCache, get_profile_cache
from apoxer.core.security import get_current_user_id

router = APIRouter(prefix="/tournaments", tags=["Tournaments"])


def _with_state(tournament) -> TournamentResponse:
    return TournamentResponse.model_validate(tournament).model_copy(
        update={"state": tournament_state(tournament.status, tournament.start_at)}
    )


@router.post("", response_model=TournamentResponse, status_code=status.HTTP_201_CREATED)
async def create_tournament_endpoint(
    data: TournamentCreate,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Pro or founder only."""
    tournament = await tournament_service.create_tournament(db, user_id, data)
    return _with_state(tournament)


@router.get("", response_model=TournamentListResponse)
async def list_tournaments_endpoint(
    status_filter: Optional[str] = Query(None, alias="status"),
    game_id: Optional[str] = Query(None),
    platform: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    tournaments, total = await tournament_service.list_tournaments(db, status_filter, game_id, platform, page, limit)
    return TournamentListResponse(
        tournaments=[_with_state(t) for t in tournaments],
        total=total,
        page=page,
        limit=limit,
    )


@router.get("/achievement-images", response_model=AchievementImagesResponse)
async def achievement_images_endpoint(game: Optional[str] = Query(None)):
    """Achievement artwork for a game, to pick a tournament cover from."""
    if not game or not game.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Game query parameter is required",
        )
    found = await find_achievement_images(game)
    if found is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No achievements page found for this game",
        )
    url, images = found
    return AchievementImagesResponse(url=url, images=images)


@router.get("/{tournament_id}", response_model=TournamentDetailResponse)
async def get_tournament_endpoint(
    tournament_id: int,
    db: AsyncSession = Depends(get_db),
):
    tournament = await tournament_service.get_tournament(db, tournament_id)
    participants = await tournament_service.list_participants(db, tournament_id)
    matches = await tournament_service.list_matches(db, tournament_id)
    return TournamentDetailResponse(
        tournament=_with_state(tournament),
        participants=[ParticipantResponse.model_validate(p) for p in participants],
        matches=[MatchResponse.model_validate(m) for m in matches],
    )


@router.post("/{tournament_id}/register", response_model=RegistrationResponse, status_code=status.HTTP_201_CREATED)
async def register_endpoint(
    tournament_id: int,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    participant = await tournament_service.register(db, user_id, tournament_id)
    return RegistrationResponse(
        participant=ParticipantResponse.model_validate(participant),
        message="Successfully registered for tournament",
    )


@router.post("/{tournament_id}/check-in", response_model=RegistrationResponse)
async def check_in_endpoint(
    tournament_id: int,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    participant = await tournament_service.check_in(db, user_id, tournament_id)
    return RegistrationResponse(
        participant=ParticipantResponse.model_validate(participant),
        message="Checked in successfully",
    )


@router.post("/{tournament_id}/withdraw", response_model=RegistrationResponse)
async def withdraw_endpoint(
    tournament_id: int,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    participant = await tournament_service.withdraw(db, user_id, tournament_id)
    return RegistrationResponse(
        participant=ParticipantResponse.model_validate(participant),
        message="Withdrawn from tournament",
    )


@router.post("/{tournament_id}/start", response_model=list[MatchResponse])
async def start_endpoint(
    tournament_id: int,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Host only. Seeds the bracket and moves the tournament in progress."""
    await tournament_service.start(db, user_id, tournament_id)
    return await tournament_service.list_matches(db, tournament_id)


@router.post("/{tournament_id}/matches/{match_id}/finalize", response_model=FinalizeMatchResponse)
async def finalize_match_endpoint(
    tournament_id: int,
    match_id: int,
    data: FinalizeMatchRequest,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    cache: EntityCache = Depends(get_profile_cache),
):
    """Host only. Records the result and advances the winner."""
    complete = await tournament_service.finalize_match(db, user_id, tournament_id, match_id, data)
    if complete:
        # rewards may have moved plan_expires_at
        for participant in await tournament_service.list_participants(db, tournament_id):
            await cache.invalidate(participant.user_id)
    return FinalizeMatchResponse(
        message="Tournament completed" if complete else "Match finalized",
        tournament_complete=complete,
    )
