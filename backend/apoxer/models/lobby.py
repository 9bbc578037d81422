"""
Lobby models.

Key design decisions:
- A partial unique index allows one non-closed lobby per host
- lobby_members.user_id is unique: a user sits in at most one lobby,
  member rows are deleted when a lobby closes or the user leaves
- member_count is the capacity counter, bumped with a conditional UPDATE
  so concurrent joins cannot overfill a lobby
- host_last_active_at drives inactivity expiry
"""

from sqlalchemy import (
    Column,
    Integer,
    String,
    Boolean,
    ForeignKey,
    CheckConstraint,
    Index,
    text,
)

from apoxer.db.base import Base, TimestampMixin, UTCDateTime, utcnow

LOBBY_STATUSES = ("open", "in_progress", "closed")
ACTIVE_LOBBY_STATUSES = ("open", "in_progress")


class Lobby(Base, TimestampMixin):
    __tablename__ = "lobbies"

    id = Column(Integer, primary_key=True, index=True)
    host_id = Column(Integer, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True)
    game_id = Column(String(50), nullable=False, index=True)
    game_name = Column(String(255), nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(String(1000), nullable=True)
    max_players = Column(Integer, nullable=True)
    member_count = Column(Integer, nullable=False, default=0, server_default="0")
    platform = Column(String(20), nullable=False, default="pc")
    discord_link = Column(String(500), nullable=True)
    status = Column(String(20), nullable=False, default="open")
    auto_invite_enabled = Column(Boolean, nullable=False, default=False, server_default="0")
    host_last_active_at = Column(UTCDateTime(), nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("status IN ('open', 'in_progress', 'closed')", name="check_lobby_status"),
        CheckConstraint(
            "member_count >= 0 AND (max_players IS NULL OR member_count <= max_players)",
            name="check_lobby_member_count",
        ),
        CheckConstraint(
            "platform IN ('pc', 'ps', 'xbox', 'switch', 'mobile', 'other')", name="check_lobby_platform"
        ),
        Index(
            "uq_lobbies_active_host",
            "host_id",
            unique=True,
            postgresql_where=text("status <> 'closed'"),
            sqlite_where=text("status <> 'closed'"),
        ),
        Index("ix_lobbies_status_game", "status", "game_id"),
    )

    def __repr__(self) -> str:
        return f"<Lobby(id={self.id}, host={self.host_id}, game={self.game_id}, status={self.status})>"


class LobbyMember(Base, TimestampMixin):
    __tablename__ = "lobby_members"

    id = Column(Integer, primary_key=True, index=True)
    lobby_id = Column(Integer, ForeignKey("lobbies.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, unique=True)
    role = Column(String(10), nullable=False, default="member")
    ready = Column(Boolean, nullable=False, default=False, server_default="0")

    __table_args__ = (
        CheckConstraint("role IN ('host', 'member')", name="check_lobby_member_role"),
    )


class LobbyInvite(Base, TimestampMixin):
    __tablename__ = "lobby_invites"

    id = Column(Integer, primary_key=True, index=True)
    lobby_id = Column(Integer, ForeignKey("lobbies.id", ondelete="CASCADE"), nullable=False, index=True)
    from_user_id = Column(Integer, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    to_user_id = Column(Integer, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default="pending")

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'accepted', 'declined', 'cancelled')", name="check_lobby_invite_status"
        ),
    )
