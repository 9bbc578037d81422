"""
Profile model: the account, its public card and its plan tier.

Key design decisions:
- plan_tier + plan_expires_at gate every privileged action (founder / pro)
- is_seeded marks synthetic accounts created by the seeding tools
- user_games and follows carry their own uniqueness at the DB level
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
)

from apoxer.db.base import Base, TimestampMixin, UTCDateTime, utcnow

PLAN_TIERS = ("free", "pro", "founder")
PLATFORMS = ("pc", "ps", "xbox", "switch", "mobile", "other")


class Profile(Base, TimestampMixin):
    __tablename__ = "profiles"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    username = Column(String(100), unique=True, index=True, nullable=False)
    hashed_password = Column(String(255), nullable=False)
    display_name = Column(String(100), nullable=True)
    bio = Column(String(500), nullable=True)
    avatar_url = Column(String(500), nullable=True)
    banner_url = Column(String(500), nullable=True)
    discord_tag = Column(String(100), nullable=True)
    preferred_platform = Column(String(20), nullable=True)

    plan_tier = Column(String(20), nullable=False, default="free", server_default="free")
    plan_expires_at = Column(UTCDateTime(), nullable=True)
    stripe_customer_id = Column(String(100), nullable=True, index=True)

    is_private = Column(Boolean, nullable=False, default=False, server_default="0")
    allow_invites = Column(Boolean, nullable=False, default=True, server_default="1")
    invites_from_followers_only = Column(Boolean, nullable=False, default=False, server_default="0")
    is_seeded = Column(Boolean, nullable=False, default=False, server_default="0")
    is_active = Column(Boolean, nullable=False, default=True, server_default="1")

    last_active_at = Column(UTCDateTime(), nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("plan_tier IN ('free', 'pro', 'founder')", name="check_profile_plan_tier"),
        Index("ix_profiles_last_active_at", "last_active_at"),
    )

    def __repr__(self) -> str:
        return f"<Profile(id={self.id}, username={self.username}, tier={self.plan_tier})>"


class UserGame(Base, TimestampMixin):
    __tablename__ = "user_games"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True)
    game_id = Column(String(50), nullable=False, index=True)
    game_name = Column(String(255), nullable=False)
    cover_url = Column(String(500), nullable=True)

    __table_args__ = (
        UniqueConstraint("user_id", "game_id", name="uq_user_game"),
    )

    def __repr__(self) -> str:
        return f"<UserGame(user={self.user_id}, game={self.game_id})>"


class Follow(Base, TimestampMixin):
    __tablename__ = "follows"

    id = Column(Integer, primary_key=True, index=True)
    follower_id = Column(Integer, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True)
    following_id = Column(Integer, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True)

    __table_args__ = (
        UniqueConstraint("follower_id", "following_id", name="uq_follow_pair"),
        CheckConstraint("follower_id <> following_id", name="check_follow_not_self"),
    )

    def __repr__(self) -> str:
        return f"<Follow({self.follower_id} -> {self.following_id})>"
