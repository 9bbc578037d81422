"""
Event endpoints with Redis caching on the listing.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from apoxer.db.session import get_db
from apoxer.schemas.event import (
    EventCreate,
    EventResponse,
    EventListResponse,
    EventDetailResponse,
    ParticipantCounts,
    ParticipationUpdate,
    ParticipationResponse,
)
from apoxer.services import event_service
from apoxer.services.cache_service import EntityCache, get_event_list_cache
from apoxer.core.security import get_current_user_id, get_optional_user_id
from apoxer.core.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/events", tags=["Events"])


@router.post("", response_model=EventResponse, status_code=status.HTTP_201_CREATED)
async def create_event_endpoint(
    event_data: EventCreate,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    event_cache: EntityCache = Depends(get_event_list_cache),
):
    """Create an event by hand. Pro or founder only."""
    event = await event_service.create_event_manual(db, user_id, event_data)
    # Invalidate cache since event list has changed
    await event_cache.clear()
    return event


@router.get("", response_model=EventListResponse)
async def list_events_endpoint(
    status_filter: str = Query("upcoming", alias="status"),
    db: AsyncSession = Depends(get_db),
    event_cache: EntityCache = Depends(get_event_list_cache),
):
    """
    List events, upcoming by default.
    Results are cached for REDIS_CACHE_TTL seconds and cleared whenever
    events are created or generated.
    """
    cached = await event_cache.get(status_filter)
    if cached:
        logger.info("events_list_cache_hit", status=status_filter)
        cached["cached"] = True
        return EventListResponse(**cached)

    events = await event_service.list_events(db, status_filter)
    response_data = {
        "events": [EventResponse.model_validate(e).model_dump(mode="json") for e in events],
        "total": len(events),
        "cached": False,
    }
    await event_cache.set(status_filter, response_data)
    return EventListResponse(**response_data)


@router.get("/{event_id}", response_model=EventDetailResponse)
async def get_event_endpoint(
    event_id: int,
    user_id: Optional[int] = Depends(get_optional_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Single event with RSVP counts. Not cached."""
    event = await event_service.get_event(db, event_id)
    counts = await event_service.get_participation_counts(db, event_id)
    my_status = await event_service.get_my_participation(db, event_id, user_id) if user_id else None
    return EventDetailResponse(
        **EventResponse.model_validate(event).model_dump(),
        participants=ParticipantCounts(**counts),
        my_status=my_status,
    )


@router.post("/{event_id}/participation", response_model=ParticipationResponse)
async def set_participation_endpoint(
    event_id: int,
    data: ParticipationUpdate,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    row = await event_service.set_participation(db, user_id, event_id, data.status)
    return ParticipationResponse(event_id=row.event_id, user_id=row.user_id, status=row.status)
