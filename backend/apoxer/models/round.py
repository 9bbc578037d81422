"""
Weekly voting round models.

Key design decisions:
- A partial unique index allows a single row with status='open'
- (round_id, game_id) is unique so a game is nominated once per round
- (candidate_id, user_id) is unique so a user votes once per candidate
- total_votes is denormalized and only ever changed with atomic
  increments inside the same transaction as the vote row
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
    text,
)

from apoxer.db.base import Base, TimestampMixin, UTCDateTime

ROUND_STATUSES = ("open", "locked", "processed")
TIME_SLOTS = ("morning", "noon", "afternoon", "evening", "late_night")
DAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


class WeeklyRound(Base, TimestampMixin):
    __tablename__ = "weekly_rounds"

    id = Column(Integer, primary_key=True, index=True)
    week_key = Column(String(10), nullable=False, unique=True)
    status = Column(String(20), nullable=False, default="open")
    voting_ends_at = Column(UTCDateTime(), nullable=False)
    selection_phase_deadline = Column(UTCDateTime(), nullable=True)
    events_generated_at = Column(UTCDateTime(), nullable=True)

    __table_args__ = (
        CheckConstraint("status IN ('open', 'locked', 'processed')", name="check_round_status"),
        Index(
            "uq_weekly_rounds_single_open",
            "status",
            unique=True,
            postgresql_where=text("status = 'open'"),
            sqlite_where=text("status = 'open'"),
        ),
    )

    def __repr__(self) -> str:
        return f"<WeeklyRound(id={self.id}, week={self.week_key}, status={self.status})>"


class WeeklyGameCandidate(Base, TimestampMixin):
    __tablename__ = "weekly_game_candidates"

    id = Column(Integer, primary_key=True, index=True)
    round_id = Column(Integer, ForeignKey("weekly_rounds.id", ondelete="CASCADE"), nullable=False, index=True)
    game_id = Column(String(50), nullable=False)
    game_name = Column(String(255), nullable=False)
    cover_url = Column(String(500), nullable=True)
    created_by = Column(Integer, ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    total_votes = Column(Integer, nullable=False, default=0, server_default="0")

    __table_args__ = (
        UniqueConstraint("round_id", "game_id", name="uq_candidate_round_game"),
        CheckConstraint("total_votes >= 0", name="check_candidate_votes_non_negative"),
        Index("ix_candidates_round_votes", "round_id", "total_votes"),
    )

    def __repr__(self) -> str:
        return f"<WeeklyGameCandidate(id={self.id}, game={self.game_name}, votes={self.total_votes})>"


class WeeklyGameVote(Base, TimestampMixin):
    __tablename__ = "weekly_game_votes"

    id = Column(Integer, primary_key=True, index=True)
    round_id = Column(Integer, ForeignKey("weekly_rounds.id", ondelete="CASCADE"), nullable=False, index=True)
    candidate_id = Column(
        Integer, ForeignKey("weekly_game_candidates.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id = Column(Integer, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True)
    time_pref = Column(String(20), nullable=False, default="afternoon")
    day_pref = Column(String(10), nullable=True)

    __table_args__ = (
        UniqueConstraint("candidate_id", "user_id", name="uq_vote_candidate_user"),
        CheckConstraint(
            "time_pref IN ('morning', 'noon', 'afternoon', 'evening', 'late_night')",
            name="check_vote_time_pref",
        ),
    )

    def __repr__(self) -> str:
        return f"<WeeklyGameVote(candidate={self.candidate_id}, user={self.user_id})>"


class WeeklyGameSelection(Base, TimestampMixin):
    """A top candidate of a locked round, collecting day/time preferences."""

    __tablename__ = "weekly_game_selections"

    id = Column(Integer, primary_key=True, index=True)
    round_id = Column(Integer, ForeignKey("weekly_rounds.id", ondelete="CASCADE"), nullable=False, index=True)
    candidate_id = Column(Integer, ForeignKey("weekly_game_candidates.id", ondelete="CASCADE"), nullable=False)
    game_id = Column(String(50), nullable=False)
    game_name = Column(String(255), nullable=False)
    rank = Column(Integer, nullable=False)
    events_created = Column(Boolean, nullable=False, default=False, server_default="0")

    __table_args__ = (
        UniqueConstraint("round_id", "candidate_id", name="uq_selection_round_candidate"),
    )

    def __repr__(self) -> str:
        return f"<WeeklyGameSelection(id={self.id}, game={self.game_name}, rank={self.rank})>"


class WeeklyGameSelectionVote(Base, TimestampMixin):
    __tablename__ = "weekly_game_selection_votes"

    id = Column(Integer, primary_key=True, index=True)
    selection_id = Column(
        Integer, ForeignKey("weekly_game_selections.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id = Column(Integer, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    day_pref = Column(String(10), nullable=False)
    time_pref = Column(String(20), nullable=False)

    __table_args__ = (
        UniqueConstraint("selection_id", "user_id", name="uq_selection_vote_user"),
    )
