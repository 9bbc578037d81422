"""
Lobby service.

SINGLE ACTIVE LOBBY
===================

A user hosts at most one non-closed lobby and sits in at most one lobby.
Creating or joining therefore first leaves whatever the user is in:

  1. Close every non-closed lobby the user hosts and delete its members.
  2. Delete the user's remaining membership rows.
  3. Insert the new lobby / membership.

All three steps run in the request transaction. The storage layer backs the
invariant: uq_lobbies_active_host (partial unique on host_id for non-closed
lobbies) and a unique lobby_members.user_id, so a concurrent second create
or join fails instead of leaving the user in two lobbies.

CAPACITY
========

lobbies.member_count tracks the membership rows. A join takes a seat with

  UPDATE lobbies SET member_count = member_count + 1
  WHERE id = :id AND status <> 'closed'
    AND (max_players IS NULL OR member_count < max_players)

and is refused when no row is affected, so two concurrent joins cannot both
take the last seat. Every membership delete hands its seat back.

Expiry: a lobby whose host has not been seen for LOBBY_INACTIVITY_MINUTES is
closed by close_inactive_lobbies(), run by the maintenance scheduler.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import select, update, delete, func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from fastapi import HTTPException, status

from apoxer.models.lobby import Lobby, LobbyMember, LobbyInvite, ACTIVE_LOBBY_STATUSES
from apoxer.models.profile import Profile, UserGame, Follow
from apoxer.schemas.lobby import QuickCreateRequest
from apoxer.services.profile_service import get_profile, is_pro, require_pro
from apoxer.core.config import get_settings
from apoxer.core.logging import get_logger
from apoxer.core.metrics import record_lobbies_closed

logger = get_logger(__name__)
settings = get_settings()

QUICK_LOBBY_TITLE = "Quick Matchmaking"
QUICK_LOBBY_MAX_PLAYERS = 2


async def _close_lobbies(db: AsyncSession, lobby_ids: list[int], reason: str) -> int:
    if not lobby_ids:
        return 0
    await db.execute(
        delete(LobbyMember)
        .where(LobbyMember.lobby_id.in_(lobby_ids))
        .execution_options(synchronize_session="fetch")
    )
    result = await db.execute(
        update(Lobby)
        .where(Lobby.id.in_(lobby_ids), Lobby.status != "closed")
        .values(status="closed", member_count=0)
        .execution_options(synchronize_session="fetch")
    )
    closed = result.rowcount or 0
    record_lobbies_closed(reason, closed)
    return closed


async def _release_seats(db: AsyncSession, lobby_ids: list[int]) -> None:
    if not lobby_ids:
        return
    await db.execute(
        update(Lobby)
        .where(Lobby.id.in_(lobby_ids), Lobby.member_count > 0)
        .values(member_count=Lobby.member_count - 1)
        .execution_options(synchronize_session="fetch")
    )


async def leave_current_lobbies(db: AsyncSession, user_id: int) -> int:
    """Close lobbies the user hosts and drop any other membership."""
    hosted = await db.execute(
        select(Lobby.id).where(Lobby.host_id == user_id, Lobby.status.in_(ACTIVE_LOBBY_STATUSES))
    )
    closed = await _close_lobbies(db, list(hosted.scalars().all()), reason="replaced")

    memberships = await db.execute(select(LobbyMember.lobby_id).where(LobbyMember.user_id == user_id))
    joined = list(memberships.scalars().all())
    await db.execute(
        delete(LobbyMember)
        .where(LobbyMember.user_id == user_id)
        .execution_options(synchronize_session="fetch")
    )
    await _release_seats(db, joined)
    if closed:
        logger.info("hosted_lobbies_closed", user_id=user_id, closed=closed)
    return closed


async def add_game_to_library(
    db: AsyncSession,
    user_id: int,
    game_id: str,
    game_name: str,
    cover_url: Optional[str] = None,
) -> bool:
    """Returns False when the game was already in the user's library."""
    result = await db.execute(
        select(UserGame.id).where(UserGame.user_id == user_id, UserGame.game_id == game_id)
    )
    if result.scalar_one_or_none() is not None:
        return False
    db.add(UserGame(user_id=user_id, game_id=game_id, game_name=game_name, cover_url=cover_url))
    await db.flush()
    return True


async def quick_create(db: AsyncSession, user_id: int, data: QuickCreateRequest) -> Lobby:
    """Replace whatever lobby the user is in with a fresh two-player lobby."""
    profile = await get_profile(db, user_id)
    if data.auto_invite and not is_pro(profile):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"error": "Pro subscription required for auto-invite", "code": "PREMIUM_REQUIRED"},
        )

    await leave_current_lobbies(db, user_id)

    now = datetime.now(timezone.utc)
    lobby = Lobby(
        host_id=user_id,
        game_id=data.game_id,
        game_name=data.game_name,
        title=QUICK_LOBBY_TITLE,
        max_players=QUICK_LOBBY_MAX_PLAYERS,
        member_count=1,
        platform=data.platform or profile.preferred_platform or "pc",
        status="open",
        auto_invite_enabled=data.auto_invite,
        host_last_active_at=now,
    )
    db.add(lobby)
    try:
        await db.flush()
        db.add(LobbyMember(lobby_id=lobby.id, user_id=user_id, role="host", ready=False))
        await db.flush()
    except IntegrityError:
        await db.rollback()
        logger.warning("lobby_create_conflict", user_id=user_id)
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Another lobby was created for this user at the same time",
        )

    # the lobby stands even when the library update fails
    try:
        async with db.begin_nested():
            added = await add_game_to_library(db, user_id, data.game_id, data.game_name, data.cover_url)
    except SQLAlchemyError as e:
        logger.warning("user_game_add_failed", user_id=user_id, game_id=data.game_id, error=str(e))
    else:
        if added:
            logger.info("user_game_added", user_id=user_id, game_id=data.game_id)

    await db.refresh(lobby)
    logger.info(
        "lobby_quick_created",
        lobby_id=lobby.id,
        user_id=user_id,
        game_id=data.game_id,
        platform=lobby.platform,
    )
    return lobby


async def get_active_lobby(db: AsyncSession, lobby_id: int) -> Lobby:
    result = await db.execute(select(Lobby).where(Lobby.id == lobby_id))
    lobby = result.scalar_one_or_none()
    if not lobby or lobby.status == "closed":
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Lobby not found or closed",
        )
    return lobby


def _lobby_full() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail="Lobby is full",
    )


async def join_lobby(db: AsyncSession, user_id: int, lobby_id: int) -> Lobby:
    lobby = await get_active_lobby(db, lobby_id)

    member = await db.execute(
        select(LobbyMember).where(LobbyMember.user_id == user_id, LobbyMember.lobby_id == lobby_id)
    )
    if member.scalar_one_or_none():
        return lobby

    if lobby.max_players is not None and lobby.member_count >= lobby.max_players:
        raise _lobby_full()

    await leave_current_lobbies(db, user_id)

    seat = await db.execute(
        update(Lobby)
        .where(
            Lobby.id == lobby_id,
            Lobby.status != "closed",
            or_(Lobby.max_players.is_(None), Lobby.member_count < Lobby.max_players),
        )
        .values(member_count=Lobby.member_count + 1)
        .execution_options(synchronize_session="fetch")
    )
    if seat.rowcount == 0:
        logger.info("lobby_join_refused", lobby_id=lobby_id, user_id=user_id, reason="full")
        raise _lobby_full()

    db.add(LobbyMember(lobby_id=lobby_id, user_id=user_id, role="member"))
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="You joined another lobby at the same time",
        )

    await db.execute(
        update(LobbyInvite)
        .where(LobbyInvite.lobby_id == lobby_id, LobbyInvite.to_user_id == user_id, LobbyInvite.status == "pending")
        .values(status="accepted")
    )
    logger.info("lobby_joined", lobby_id=lobby_id, user_id=user_id)
    return lobby


async def leave_lobby(db: AsyncSession, user_id: int, lobby_id: int) -> None:
    lobby = await get_active_lobby(db, lobby_id)
    if lobby.host_id == user_id:
        await _close_lobbies(db, [lobby_id], reason="host_left")
        logger.info("lobby_closed_by_host", lobby_id=lobby_id, user_id=user_id)
        return

    result = await db.execute(
        delete(LobbyMember)
        .where(LobbyMember.lobby_id == lobby_id, LobbyMember.user_id == user_id)
        .execution_options(synchronize_session="fetch")
    )
    if result.rowcount == 0:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="You are not a member of this lobby",
        )
    await _release_seats(db, [lobby_id])
    logger.info("lobby_left", lobby_id=lobby_id, user_id=user_id)


async def heartbeat(db: AsyncSession, user_id: int, lobby_id: int) -> Lobby:
    """Host keep-alive; pushes back inactivity expiry."""
    lobby = await get_active_lobby(db, lobby_id)
    if lobby.host_id != user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only the host can refresh the lobby",
        )
    lobby.host_last_active_at = datetime.now(timezone.utc)
    await db.flush()
    return lobby


async def count_lobbies(db: AsyncSession, game_ids: list[str]) -> dict[str, int]:
    """Active lobby count per game, zero filled."""
    if not game_ids:
        return {}

    result = await db.execute(
        select(Lobby.game_id, func.count())
        .where(Lobby.game_id.in_(game_ids), Lobby.status.in_(ACTIVE_LOBBY_STATUSES))
        .group_by(Lobby.game_id)
    )
    counts = {game_id: 0 for game_id in game_ids}
    counts.update({game_id: n for game_id, n in result.all()})
    return counts


async def close_inactive_lobbies(db: AsyncSession, now: Optional[datetime] = None) -> int:
    """Close lobbies whose host has been idle past the inactivity window."""
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(minutes=settings.LOBBY_INACTIVITY_MINUTES)
    result = await db.execute(
        select(Lobby.id).where(
            Lobby.status.in_(ACTIVE_LOBBY_STATUSES),
            Lobby.host_last_active_at < cutoff,
        )
    )
    closed = await _close_lobbies(db, list(result.scalars().all()), reason="inactive")
    if closed:
        logger.info("inactive_lobbies_closed", closed=closed, cutoff=cutoff.isoformat())
    return closed


async def auto_invite(
    db: AsyncSession,
    user_id: int,
    lobby_id: int,
    game_id: str,
    minutes_threshold: int = 15,
) -> int:
    """
    Pro-only: invite recently active players who own the game.

    Players who only accept invites from people they follow are invited when
    they follow the host. Players with a pending or accepted invite to this
    lobby are skipped.
    """
    await require_pro(db, user_id, feature="auto-invite")
    lobby = await get_active_lobby(db, lobby_id)
    if lobby.host_id != user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only the host can auto-invite",
        )

    if not lobby.auto_invite_enabled:
        lobby.auto_invite_enabled = True

    threshold = datetime.now(timezone.utc) - timedelta(minutes=minutes_threshold)
    owners = select(UserGame.user_id).where(UserGame.game_id == game_id, UserGame.user_id != user_id)
    eligible = await db.execute(
        select(Profile.id, Profile.invites_from_followers_only).where(
            Profile.id.in_(owners),
            Profile.last_active_at >= threshold,
            Profile.allow_invites.is_(True),
        )
    )
    rows = eligible.all()
    if not rows:
        await db.flush()
        return 0

    followers = await db.execute(select(Follow.follower_id).where(Follow.following_id == user_id))
    follower_ids = set(followers.scalars().all())

    already = await db.execute(
        select(LobbyInvite.to_user_id).where(
            LobbyInvite.lobby_id == lobby_id,
            LobbyInvite.status.in_(("pending", "accepted")),
        )
    )
    already_invited = set(already.scalars().all())

    invited = 0
    for profile_id, followers_only in rows:
        if followers_only and profile_id not in follower_ids:
            continue
        if profile_id in already_invited:
            continue
        db.add(LobbyInvite(lobby_id=lobby_id, from_user_id=user_id, to_user_id=profile_id, status="pending"))
        invited += 1
    await db.flush()

    logger.info("lobby_auto_invite", lobby_id=lobby_id, user_id=user_id, invited=invited)
    return invited
