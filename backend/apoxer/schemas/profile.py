"""
Pydantic schemas for accounts, profiles and player search.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, EmailStr, Field


class UserCreate(BaseModel):
    email: EmailStr
    username: str = Field(..., min_length=3, max_length=100, pattern=r"^[a-zA-Z0-9_]+$")
    password: str = Field(..., min_length=8, max_length=128)
    display_name: Optional[str] = Field(None, max_length=100)


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class ProfileResponse(BaseModel):
    id: int
    email: str
    username: str
    display_name: Optional[str]
    bio: Optional[str]
    avatar_url: Optional[str]
    banner_url: Optional[str]
    preferred_platform: Optional[str]
    plan_tier: str
    plan_expires_at: Optional[datetime]
    is_pro: bool = False
    is_private: bool
    last_active_at: datetime
    created_at: datetime

    model_config = {"from_attributes": True}


class PlayerCard(BaseModel):
    id: int
    username: str
    display_name: Optional[str]
    avatar_url: Optional[str]
    bio: Optional[str] = None
    last_active_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class PlayerSearchResponse(BaseModel):
    players: list[PlayerCard]
