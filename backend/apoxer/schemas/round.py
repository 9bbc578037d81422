"""
Pydantic schemas for weekly rounds, candidates, votes and selections.
"""

from datetime import datetime
from typing import Literal, Optional
from pydantic import BaseModel, Field

TimeSlot = Literal["morning", "noon", "afternoon", "evening", "late_night"]
DaySlot = Literal["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]


class RoundResponse(BaseModel):
    id: int
    week_key: str
    status: str
    voting_ends_at: datetime
    selection_phase_deadline: Optional[datetime]
    events_generated_at: Optional[datetime]
    created_at: datetime

    model_config = {"from_attributes": True}


class TimeDistribution(BaseModel):
    morning: int = 0
    noon: int = 0
    afternoon: int = 0
    evening: int = 0
    late_night: int = 0


class CandidateResponse(BaseModel):
    id: int
    round_id: int
    game_id: str
    game_name: str
    cover_url: Optional[str]
    created_by: Optional[int]
    total_votes: int
    created_at: datetime
    time_distribution: Optional[TimeDistribution] = None

    model_config = {"from_attributes": True}


class CandidateCreate(BaseModel):
    game_id: Optional[str] = None
    game_name: Optional[str] = None
    cover_url: Optional[str] = Field(None, max_length=500)


class CandidateListResponse(BaseModel):
    round: Optional[RoundResponse]
    candidates: list[CandidateResponse]


class VoteCreate(BaseModel):
    candidate_id: int
    time_pref: TimeSlot = "afternoon"
    day_pref: Optional[DaySlot] = None


class VoteResponse(BaseModel):
    candidate_id: int
    total_votes: int
    voted: bool


class CurrentRoundResponse(BaseModel):
    round: Optional[RoundResponse]
    candidates: list[CandidateResponse]
    user_votes: dict[int, bool]


class HeroVotesResponse(BaseModel):
    round: Optional[RoundResponse]
    candidates: list[CandidateResponse]
    user_votes: dict[int, bool]


class SelectionResponse(BaseModel):
    id: int
    round_id: int
    candidate_id: int
    game_id: str
    game_name: str
    rank: int
    events_created: bool

    model_config = {"from_attributes": True}


class RoundEndResponse(BaseModel):
    round: RoundResponse
    selections: list[SelectionResponse]


class SelectionVoteCreate(BaseModel):
    day_pref: DaySlot
    time_pref: TimeSlot


class SelectionVoteResponse(BaseModel):
    selection_id: int
    day_pref: str
    time_pref: str


class GeneratedEvent(BaseModel):
    event_id: int
    game_id: str
    game_name: str
    starts_at: datetime
    day_slot: str
    time_slot: str


class GenerateEventsResponse(BaseModel):
    round_id: int
    events: list[GeneratedEvent]
    next_round_id: Optional[int]


class ProcessSelectionsResponse(BaseModel):
    processed_rounds: list[int]
    events: list[GeneratedEvent]
