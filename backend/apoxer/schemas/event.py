"""
Pydantic schemas for events and event participation.
"""

from datetime import datetime
from typing import Literal, Optional
from pydantic import BaseModel, Field

from apoxer.schemas.round import DaySlot, TimeSlot


class EventCreate(BaseModel):
    game_id: str = Field(..., min_length=1, max_length=50)
    game_name: str = Field(..., min_length=1, max_length=255)
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=1000)
    cover_url: Optional[str] = Field(None, max_length=500)
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    day_slot: Optional[DaySlot] = None
    time_slot: Optional[TimeSlot] = None


class EventResponse(BaseModel):
    id: int
    community_id: int
    round_id: Optional[int]
    game_id: str
    game_name: str
    title: str
    description: Optional[str]
    starts_at: datetime
    ends_at: datetime
    status: str
    time_slot: Optional[str]
    day_slot: Optional[str]
    created_by: Optional[int]
    created_at: datetime

    model_config = {"from_attributes": True}


class EventListResponse(BaseModel):
    events: list[EventResponse]
    total: int
    cached: bool = False


class ParticipantCounts(BaseModel):
    going: int = 0
    maybe: int = 0
    declined: int = 0


class EventDetailResponse(EventResponse):
    participants: ParticipantCounts
    my_status: Optional[str] = None


class ParticipationUpdate(BaseModel):
    status: Literal["in", "maybe", "declined"]


class ParticipationResponse(BaseModel):
    event_id: int
    user_id: int
    status: str
