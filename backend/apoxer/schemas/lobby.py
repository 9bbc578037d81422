"""
Pydantic schemas for lobbies.
"""

from datetime import datetime
from typing import Literal, Optional
from pydantic import BaseModel, Field

Platform = Literal["pc", "ps", "xbox", "switch", "mobile", "other"]


class QuickCreateRequest(BaseModel):
    game_id: str = Field(..., min_length=1, max_length=50)
    game_name: str = Field(..., min_length=1, max_length=255)
    platform: Optional[Platform] = None
    cover_url: Optional[str] = None
    auto_invite: bool = False


class QuickCreateResponse(BaseModel):
    lobby_id: int


class LobbyResponse(BaseModel):
    id: int
    host_id: int
    game_id: str
    game_name: str
    title: str
    max_players: Optional[int]
    member_count: int
    platform: str
    status: str
    auto_invite_enabled: bool
    host_last_active_at: datetime
    created_at: datetime

    model_config = {"from_attributes": True}


class LobbyCountRequest(BaseModel):
    game_ids: list[str] = Field(default_factory=list)


class LobbyCountResponse(BaseModel):
    counts: dict[str, int]


class AutoInviteRequest(BaseModel):
    lobby_id: int
    game_id: str
    minutes_threshold: int = Field(15, ge=1, le=24 * 60)


class AutoInviteResponse(BaseModel):
    invited: int
    message: Optional[str] = None


class CloseInactiveResponse(BaseModel):
    closed: int
