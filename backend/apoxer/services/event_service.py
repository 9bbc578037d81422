"""
Event service: per-game communities, event creation, listings and RSVPs.

Event status is advanced lazily whenever events are read:
  scheduled -> ongoing   once starts_at has passed
  scheduled/ongoing -> ended once ends_at has passed
so listings are correct without a background job.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from fastapi import HTTPException, status

from apoxer.models.event import Event, EventParticipant, GameEventCommunity
from apoxer.schemas.event import EventCreate
from apoxer.services.profile_service import get_profile, is_pro
from apoxer.services.scheduling import event_window
from apoxer.core.config import get_settings
from apoxer.core.logging import get_logger
from apoxer.core.metrics import record_event_created

logger = get_logger(__name__)
settings = get_settings()


async def _find_community(db: AsyncSession, game_id: str) -> Optional[GameEventCommunity]:
    result = await db.execute(select(GameEventCommunity).where(GameEventCommunity.game_id == game_id))
    return result.scalar_one_or_none()


async def get_or_create_community(
    db: AsyncSession,
    game_id: str,
    game_name: str,
    cover_url: Optional[str] = None,
) -> GameEventCommunity:
    community = await _find_community(db, game_id)
    if community:
        return community

    community = GameEventCommunity(game_id=game_id, game_name=game_name, cover_url=cover_url)
    try:
        async with db.begin_nested():
            db.add(community)
            await db.flush()
    except IntegrityError:
        # created by a concurrent request between the lookup and the insert
        existing = await _find_community(db, game_id)
        if existing is None:
            raise
        return existing
    logger.info("community_created", community_id=community.id, game_id=game_id)
    return community


async def create_event_record(
    db: AsyncSession,
    *,
    game_id: str,
    game_name: str,
    title: str,
    starts_at: datetime,
    ends_at: datetime,
    source: str,
    description: Optional[str] = None,
    cover_url: Optional[str] = None,
    day_slot: Optional[str] = None,
    time_slot: Optional[str] = None,
    round_id: Optional[int] = None,
    created_by: Optional[int] = None,
) -> Event:
    """Insert a scheduled event under the game's community."""
    community = await get_or_create_community(db, game_id, game_name, cover_url)
    event = Event(
        community_id=community.id,
        round_id=round_id,
        game_id=game_id,
        game_name=game_name,
        title=title,
        description=description,
        starts_at=starts_at,
        ends_at=ends_at,
        status="scheduled",
        day_slot=day_slot,
        time_slot=time_slot,
        created_by=created_by,
    )
    db.add(event)
    await db.flush()
    await db.refresh(event)

    record_event_created(source)
    logger.info(
        "event_created",
        event_id=event.id,
        game_id=game_id,
        starts_at=starts_at.isoformat(),
        source=source,
    )
    return event


async def create_event_manual(db: AsyncSession, user_id: int, data: EventCreate) -> Event:
    """
    Pro/founder-authored event.

    Either explicit starts_at (ends_at defaults to a 6 hour window) or a
    day_slot + time_slot pair resolved to the next matching weekday.
    """
    profile = await get_profile(db, user_id)
    if not is_pro(profile):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Pro or Founder plan required to create events",
        )

    duration = timedelta(hours=settings.EVENT_DURATION_HOURS)
    now = datetime.now(timezone.utc)

    if data.starts_at is not None:
        starts_at = data.starts_at
        if starts_at.tzinfo is None:
            starts_at = starts_at.replace(tzinfo=timezone.utc)
        ends_at = data.ends_at or starts_at + duration
        if ends_at.tzinfo is None:
            ends_at = ends_at.replace(tzinfo=timezone.utc)
        if ends_at <= starts_at:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Event end must be after its start",
            )
    elif data.day_slot and data.time_slot:
        starts_at, ends_at = event_window(data.day_slot, data.time_slot, now, settings.EVENT_DURATION_HOURS)
    else:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Provide starts_at or both day_slot and time_slot",
        )

    return await create_event_record(
        db,
        game_id=data.game_id,
        game_name=data.game_name,
        title=data.title,
        description=data.description,
        cover_url=data.cover_url,
        starts_at=starts_at,
        ends_at=ends_at,
        day_slot=data.day_slot,
        time_slot=data.time_slot,
        created_by=user_id,
        source="manual",
    )


async def advance_event_statuses(db: AsyncSession, now: Optional[datetime] = None) -> int:
    """Move events along scheduled -> ongoing -> ended. Returns rows changed."""
    now = now or datetime.now(timezone.utc)

    ended = await db.execute(
        update(Event)
        .where(Event.status.in_(("scheduled", "ongoing")), Event.ends_at < now)
        .values(status="ended")
        .execution_options(synchronize_session="fetch")
    )
    started = await db.execute(
        update(Event)
        .where(Event.status == "scheduled", Event.starts_at <= now, Event.ends_at >= now)
        .values(status="ongoing")
        .execution_options(synchronize_session="fetch")
    )
    changed = (ended.rowcount or 0) + (started.rowcount or 0)
    if changed:
        logger.info("event_statuses_advanced", ended=ended.rowcount, started=started.rowcount)
    return changed


async def list_events(
    db: AsyncSession,
    status_filter: Optional[str] = "upcoming",
    now: Optional[datetime] = None,
) -> list[Event]:
    """
    upcoming: scheduled/ongoing events that have not ended, soonest first.
    Any other value filters on the literal status; None lists everything.
    """
    now = now or datetime.now(timezone.utc)
    await advance_event_statuses(db, now)

    query = select(Event)
    if status_filter == "upcoming":
        query = query.where(Event.status.in_(("scheduled", "ongoing")), Event.ends_at >= now)
    elif status_filter:
        query = query.where(Event.status == status_filter)

    result = await db.execute(query.order_by(Event.starts_at.asc()))
    return list(result.scalars().all())


async def get_event(db: AsyncSession, event_id: int) -> Event:
    await advance_event_statuses(db)
    result = await db.execute(select(Event).where(Event.id == event_id))
    event = result.scalar_one_or_none()
    if not event:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Event {event_id} not found",
        )
    return event


async def get_participation_counts(db: AsyncSession, event_id: int) -> dict[str, int]:
    result = await db.execute(
        select(EventParticipant.status, func.count())
        .where(EventParticipant.event_id == event_id)
        .group_by(EventParticipant.status)
    )
    counts = {"going": 0, "maybe": 0, "declined": 0}
    for participation, n in result.all():
        counts["going" if participation == "in" else participation] = n
    return counts


async def get_my_participation(db: AsyncSession, event_id: int, user_id: int) -> Optional[str]:
    result = await db.execute(
        select(EventParticipant.status).where(
            EventParticipant.event_id == event_id,
            EventParticipant.user_id == user_id,
        )
    )
    return result.scalar_one_or_none()


async def set_participation(
    db: AsyncSession,
    user_id: int,
    event_id: int,
    participation: str,
) -> EventParticipant:
    """Upsert the caller's RSVP (in / maybe / declined)."""
    event = await get_event(db, event_id)
    if event.status in ("ended", "cancelled"):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Event is {event.status}",
        )

    result = await db.execute(
        select(EventParticipant).where(
            EventParticipant.event_id == event_id,
            EventParticipant.user_id == user_id,
        )
    )
    row = result.scalar_one_or_none()
    if row:
        row.status = participation
    else:
        row = EventParticipant(event_id=event_id, user_id=user_id, status=participation)
        db.add(row)
    await db.flush()

    logger.info("event_participation_set", event_id=event_id, user_id=user_id, status=participation)
    return row
