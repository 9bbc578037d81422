from apoxer.models.profile import Profile, UserGame, Follow
from apoxer.models.round import (
    WeeklyRound,
    WeeklyGameCandidate,
    WeeklyGameVote,
    WeeklyGameSelection,
    WeeklyGameSelectionVote,
)
from apoxer.models.event import GameEventCommunity, Event, EventParticipant
from apoxer.models.lobby import Lobby, LobbyMember, LobbyInvite
from apoxer.models.tournament import (
    Tournament,
    TournamentParticipant,
    TournamentMatch,
    ProfileBadge,
    TournamentReward,
)
from apoxer.models.billing import Subscription

__all__ = [
    "Profile", "UserGame", "Follow",
    "WeeklyRound", "WeeklyGameCandidate", "WeeklyGameVote",
    "WeeklyGameSelection", "WeeklyGameSelectionVote",
    "GameEventCommunity", "Event", "EventParticipant",
    "Lobby", "LobbyMember", "LobbyInvite",
    "Tournament", "TournamentParticipant", "TournamentMatch", "ProfileBadge", "TournamentReward",
    "Subscription",
]
