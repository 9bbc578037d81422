"""
Tournament models: tournaments, participants, bracket matches and rewards.
"""

from sqlalchemy import (
    Column,
    Integer,
    String,
    Boolean,
    ForeignKey,
    UniqueConstraint,
    CheckConstraint,
    Index,
    JSON,
)

from apoxer.db.base import Base, TimestampMixin, UTCDateTime

TOURNAMENT_STATUSES = ("draft", "open", "registration_closed", "in_progress", "completed", "cancelled")
PARTICIPANT_STATUSES = ("registered", "checked_in", "withdrawn", "disqualified")
MATCH_STATUSES = ("pending", "in_progress", "completed", "forfeited")
OUTCOME_METHODS = ("manual", "forfeit", "timeout", "disconnect")


class Tournament(Base, TimestampMixin):
    __tablename__ = "tournaments"

    id = Column(Integer, primary_key=True, index=True)
    host_id = Column(Integer, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True)
    game_id = Column(String(50), nullable=False, index=True)
    game_name = Column(String(255), nullable=False)
    title = Column(String(100), nullable=False)
    description = Column(String(1000), nullable=True)
    cover_url = Column(String(500), nullable=True)
    status = Column(String(30), nullable=False, default="open")
    max_participants = Column(Integer, nullable=False)
    current_participants = Column(Integer, nullable=False, default=0, server_default="0")
    platform = Column(String(20), nullable=False)
    start_at = Column(UTCDateTime(), nullable=False)
    registration_deadline = Column(UTCDateTime(), nullable=False)
    check_in_required = Column(Boolean, nullable=False, default=False)
    check_in_deadline = Column(UTCDateTime(), nullable=True)
    rules = Column(String(2000), nullable=True)
    discord_link = Column(String(500), nullable=True)

    __table_args__ = (
        CheckConstraint("max_participants IN (8, 16)", name="check_tournament_size"),
        CheckConstraint(
            "current_participants >= 0 AND current_participants <= max_participants",
            name="check_tournament_participant_count",
        ),
        CheckConstraint(
            "status IN ('draft', 'open', 'registration_closed', 'in_progress', 'completed', 'cancelled')",
            name="check_tournament_status",
        ),
        Index("ix_tournaments_status_created", "status", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Tournament(id={self.id}, title={self.title}, status={self.status})>"


class TournamentParticipant(Base, TimestampMixin):
    __tablename__ = "tournament_participants"

    id = Column(Integer, primary_key=True, index=True)
    tournament_id = Column(Integer, ForeignKey("tournaments.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True)
    seed = Column(Integer, nullable=True)
    status = Column(String(20), nullable=False, default="registered")
    checked_in_at = Column(UTCDateTime(), nullable=True)
    final_placement = Column(Integer, nullable=True)

    __table_args__ = (
        UniqueConstraint("tournament_id", "user_id", name="uq_tournament_participant"),
        CheckConstraint(
            "status IN ('registered', 'checked_in', 'withdrawn', 'disqualified')",
            name="check_participant_status",
        ),
    )


class TournamentMatch(Base, TimestampMixin):
    __tablename__ = "tournament_matches"

    id = Column(Integer, primary_key=True, index=True)
    tournament_id = Column(Integer, ForeignKey("tournaments.id", ondelete="CASCADE"), nullable=False, index=True)
    round_number = Column(Integer, nullable=False)
    match_number = Column(Integer, nullable=False)
    participant1_id = Column(Integer, ForeignKey("tournament_participants.id"), nullable=True)
    participant2_id = Column(Integer, ForeignKey("tournament_participants.id"), nullable=True)
    winner_id = Column(Integer, ForeignKey("tournament_participants.id"), nullable=True)
    status = Column(String(20), nullable=False, default="pending")
    score1 = Column(Integer, nullable=False, default=0)
    score2 = Column(Integer, nullable=False, default=0)
    outcome_method = Column(String(20), nullable=False, default="manual")
    outcome_notes = Column(String(500), nullable=True)
    finalized_by = Column(Integer, ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    finalized_at = Column(UTCDateTime(), nullable=True)

    __table_args__ = (
        UniqueConstraint("tournament_id", "round_number", "match_number", name="uq_tournament_match_slot"),
        CheckConstraint(
            "status IN ('pending', 'in_progress', 'completed', 'forfeited')", name="check_match_status"
        ),
    )


class ProfileBadge(Base, TimestampMixin):
    __tablename__ = "profile_badges"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True)
    badge_key = Column(String(50), nullable=False)
    label = Column(String(100), nullable=False)
    game_id = Column(String(50), nullable=True)
    tournament_id = Column(Integer, ForeignKey("tournaments.id", ondelete="CASCADE"), nullable=True)

    __table_args__ = (
        UniqueConstraint("user_id", "badge_key", "tournament_id", name="uq_profile_badge"),
    )


class TournamentReward(Base, TimestampMixin):
    __tablename__ = "tournament_rewards"

    id = Column(Integer, primary_key=True, index=True)
    tournament_id = Column(Integer, ForeignKey("tournaments.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    reward_type = Column(String(20), nullable=False)
    payload = Column(JSON, nullable=False, default=dict)
