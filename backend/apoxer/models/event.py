"""
Event models: per-game communities, scheduled events and RSVPs.

Key design decisions:
- One community row per game_id (unique), created lazily
- Events keep the slot they were scheduled from (day_slot / time_slot)
- Index on starts_at for the "upcoming" listing
"""

from sqlalchemy import (
    Column,
    Integer,
    String,
    ForeignKey,
    UniqueConstraint,
    CheckConstraint,
    Index,
)

from apoxer.db.base import Base, TimestampMixin, UTCDateTime

EVENT_STATUSES = ("scheduled", "ongoing", "ended", "cancelled")
PARTICIPATION_STATUSES = ("in", "maybe", "declined")


class GameEventCommunity(Base, TimestampMixin):
    __tablename__ = "game_event_communities"

    id = Column(Integer, primary_key=True, index=True)
    game_id = Column(String(50), nullable=False, unique=True)
    game_name = Column(String(255), nullable=False)
    cover_url = Column(String(500), nullable=True)

    def __repr__(self) -> str:
        return f"<GameEventCommunity(id={self.id}, game={self.game_name})>"


class Event(Base, TimestampMixin):
    __tablename__ = "events"

    id = Column(Integer, primary_key=True, index=True)
    community_id = Column(Integer, ForeignKey("game_event_communities.id"), nullable=False, index=True)
    round_id = Column(Integer, ForeignKey("weekly_rounds.id", ondelete="SET NULL"), nullable=True)
    game_id = Column(String(50), nullable=False)
    game_name = Column(String(255), nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(String(1000), nullable=True)
    starts_at = Column(UTCDateTime(), nullable=False)
    ends_at = Column(UTCDateTime(), nullable=False)
    status = Column(String(20), nullable=False, default="scheduled")
    time_slot = Column(String(20), nullable=True)
    day_slot = Column(String(10), nullable=True)
    created_by = Column(Integer, ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)

    __table_args__ = (
        CheckConstraint("ends_at > starts_at", name="check_event_window"),
        CheckConstraint(
            "status IN ('scheduled', 'ongoing', 'ended', 'cancelled')", name="check_event_status"
        ),
        Index("ix_events_starts_at", "starts_at"),
        Index("ix_events_status_ends_at", "status", "ends_at"),
    )

    def __repr__(self) -> str:
        return f"<Event(id={self.id}, game={self.game_name}, starts={self.starts_at}, status={self.status})>"


class EventParticipant(Base, TimestampMixin):
    __tablename__ = "event_participants"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default="in")

    __table_args__ = (
        UniqueConstraint("event_id", "user_id", name="uq_event_participant"),
        CheckConstraint("status IN ('in', 'maybe', 'declined')", name="check_participation_status"),
    )
