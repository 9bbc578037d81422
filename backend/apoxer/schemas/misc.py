"""
Pydantic schemas for game lookup, seeding and billing.
"""

from typing import Optional
from pydantic import BaseModel, Field


class GameSummary(BaseModel):
    id: int
    name: str
    release_date: Optional[int] = None
    verified: bool = False
    cover_url: Optional[str] = None


class GameSearchResponse(BaseModel):
    games: list[GameSummary]


class GameDetailResponse(BaseModel):
    game: GameSummary
    hero_url: Optional[str] = None


class SeedUsersRequest(BaseModel):
    count: int = Field(1, ge=1, le=50)
    usernames: list[str] = Field(default_factory=list)


class SeededUser(BaseModel):
    id: int
    username: str
    display_name: Optional[str]
    email: str
    avatar_url: Optional[str]
    banner_url: Optional[str]
    games: list[str] = Field(default_factory=list)

    model_config = {"from_attributes": True}


class SeedUsersResponse(BaseModel):
    created: list[SeededUser]
    errors: list[str] = Field(default_factory=list)


class SeedFollowsResponse(BaseModel):
    user_id: int
    follows_created: int


class CheckoutSessionResponse(BaseModel):
    session_id: str
    url: Optional[str]


class VerifySessionResponse(BaseModel):
    plan_tier: str
    plan_expires_at: Optional[str] = None
    updated: bool
