"""
Selection phase endpoints.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from apoxer.db.session import get_db
from apoxer.schemas.event import EventResponse
from apoxer.schemas.round import (
    SelectionVoteCreate,
    SelectionVoteResponse,
    ProcessSelectionsResponse,
)
from apoxer.services import selection_service
from apoxer.services.cache_service import EntityCache, get_event_list_cache
from apoxer.api.routes.rounds import generated_events
from apoxer.core.security import get_current_user_id

router = APIRouter(prefix="/events/selections", tags=["Selections"])


@router.post("/process", response_model=ProcessSelectionsResponse)
async def process_selections_endpoint(
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    event_cache: EntityCache = Depends(get_event_list_cache),
):
    """Founder only. Materializes every selection whose phase has ended."""
    processed, events = await selection_service.process_selections(db, user_id)
    if events:
        await event_cache.clear()
    return ProcessSelectionsResponse(processed_rounds=processed, events=generated_events(events))


@router.post("/{selection_id}/vote", response_model=SelectionVoteResponse)
async def vote_selection_endpoint(
    selection_id: int,
    data: SelectionVoteCreate,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    vote = await selection_service.vote_selection(db, user_id, selection_id, data.day_pref, data.time_pref)
    return SelectionVoteResponse(selection_id=vote.selection_id, day_pref=vote.day_pref, time_pref=vote.time_pref)


@router.post("/{selection_id}/create-event", response_model=EventResponse, status_code=status.HTTP_201_CREATED)
async def create_event_from_selection_endpoint(
    selection_id: int,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    event_cache: EntityCache = Depends(get_event_list_cache),
):
    """Founder only. Creates the event for one selection right away."""
    event = await selection_service.create_event_from_selection(db, user_id, selection_id)
    await event_cache.clear()
    return event
