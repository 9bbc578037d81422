"""
Pydantic schemas for tournaments, participants and bracket matches.
"""

from datetime import datetime
from typing import Literal, Optional
from pydantic import BaseModel, Field


class TournamentCreate(BaseModel):
    game_id: str = Field(..., min_length=1)
    game_name: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    cover_url: Optional[str] = None
    max_participants: Literal[8, 16]
    platform: str = Field(..., min_length=1)
    start_at: datetime
    registration_deadline: datetime
    check_in_required: bool = False
    check_in_deadline: Optional[datetime] = None
    rules: Optional[str] = Field(None, max_length=2000)
    discord_link: Optional[str] = None


class TournamentResponse(BaseModel):
    id: int
    host_id: int
    game_id: str
    game_name: str
    title: str
    description: Optional[str]
    cover_url: Optional[str]
    status: str
    max_participants: int
    current_participants: int
    platform: str
    start_at: datetime
    registration_deadline: datetime
    check_in_required: bool
    check_in_deadline: Optional[datetime]
    rules: Optional[str]
    discord_link: Optional[str]
    created_at: datetime
    state: Optional[str] = None

    model_config = {"from_attributes": True}


class TournamentListResponse(BaseModel):
    tournaments: list[TournamentResponse]
    total: int
    page: int
    limit: int


class ParticipantResponse(BaseModel):
    id: int
    tournament_id: int
    user_id: int
    seed: Optional[int]
    status: str
    checked_in_at: Optional[datetime]
    final_placement: Optional[int]
    created_at: datetime

    model_config = {"from_attributes": True}


class MatchResponse(BaseModel):
    id: int
    tournament_id: int
    round_number: int
    match_number: int
    participant1_id: Optional[int]
    participant2_id: Optional[int]
    winner_id: Optional[int]
    status: str
    score1: int
    score2: int
    outcome_method: str
    outcome_notes: Optional[str]
    finalized_at: Optional[datetime]

    model_config = {"from_attributes": True}


class TournamentDetailResponse(BaseModel):
    tournament: TournamentResponse
    participants: list[ParticipantResponse]
    matches: list[MatchResponse]


class RegistrationResponse(BaseModel):
    participant: ParticipantResponse
    message: str


class FinalizeMatchRequest(BaseModel):
    winner_id: int
    score1: int = Field(..., ge=0)
    score2: int = Field(..., ge=0)
    outcome_method: Literal["manual", "forfeit", "timeout", "disconnect"] = "manual"
    outcome_notes: Optional[str] = Field(None, max_length=500)


class FinalizeMatchResponse(BaseModel):
    message: str
    tournament_complete: bool


class AchievementImagesResponse(BaseModel):
    url: str
    images: list[str]
