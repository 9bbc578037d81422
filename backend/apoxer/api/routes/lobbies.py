"""
Lobby endpoints: quick matchmaking, joins, keep-alive and auto-invite.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from apoxer.db.session import get_db
from apoxer.schemas.lobby import (
    QuickCreateRequest,
    QuickCreateResponse,
    LobbyResponse,
    LobbyCountRequest,
    LobbyCountResponse,
    AutoInviteRequest,
    AutoInviteResponse,
    CloseInactiveResponse,
)
from apoxer.services import lobby_service
from apoxer.services.profile_service import require_founder
from apoxer.core.security import get_current_user_id

router = APIRouter(prefix="/lobbies", tags=["Lobbies"])


@router.post("/quick-create", response_model=QuickCreateResponse, status_code=status.HTTP_201_CREATED)
async def quick_create_endpoint(
    data: QuickCreateRequest,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Close whatever lobby the caller is in and open a fresh two-player one."""
    lobby = await lobby_service.quick_create(db, user_id, data)
    return QuickCreateResponse(lobby_id=lobby.id)


@router.post("/count", response_model=LobbyCountResponse)
async def count_lobbies_endpoint(
    data: LobbyCountRequest,
    db: AsyncSession = Depends(get_db),
):
    return LobbyCountResponse(counts=await lobby_service.count_lobbies(db, data.game_ids))


@router.post("/auto-invite", response_model=AutoInviteResponse)
async def auto_invite_endpoint(
    data: AutoInviteRequest,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    invited = await lobby_service.auto_invite(db, user_id, data.lobby_id, data.game_id, data.minutes_threshold)
    message = None if invited else "No eligible players found"
    return AutoInviteResponse(invited=invited, message=message)


@router.post("/close-inactive", response_model=CloseInactiveResponse)
async def close_inactive_endpoint(
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Founder only. Runs the inactivity sweep now."""
    await require_founder(db, user_id)
    return CloseInactiveResponse(closed=await lobby_service.close_inactive_lobbies(db))


@router.post("/{lobby_id}/join", response_model=LobbyResponse)
async def join_lobby_endpoint(
    lobby_id: int,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return await lobby_service.join_lobby(db, user_id, lobby_id)


@router.post("/{lobby_id}/leave", status_code=status.HTTP_204_NO_CONTENT)
async def leave_lobby_endpoint(
    lobby_id: int,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    await lobby_service.leave_lobby(db, user_id, lobby_id)


@router.post("/{lobby_id}/heartbeat", response_model=LobbyResponse)
async def heartbeat_endpoint(
    lobby_id: int,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return await lobby_service.heartbeat(db, user_id, lobby_id)
