from apoxer.schemas.profile import UserCreate, UserLogin, Token, ProfileResponse, PlayerCard
from apoxer.schemas.round import RoundResponse, CandidateResponse, VoteCreate, CurrentRoundResponse
from apoxer.schemas.event import EventCreate, EventResponse, EventListResponse
from apoxer.schemas.lobby import QuickCreateRequest, QuickCreateResponse, LobbyResponse
from apoxer.schemas.tournament import TournamentCreate, TournamentResponse, MatchResponse

__all__ = [
    "UserCreate", "UserLogin", "Token", "ProfileResponse", "PlayerCard",
    "RoundResponse", "CandidateResponse", "VoteCreate", "CurrentRoundResponse",
    "EventCreate", "EventResponse", "EventListResponse",
    "QuickCreateRequest", "QuickCreateResponse", "LobbyResponse",
    "TournamentCreate", "TournamentResponse", "MatchResponse",
]
