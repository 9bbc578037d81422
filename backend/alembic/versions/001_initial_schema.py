"""Initial schema: profiles, weekly rounds, events, lobbies, tournaments, billing.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def _profile_fk(name: str, nullable: bool = False, ondelete: str = "CASCADE") -> sa.Column:
    return sa.Column(name, sa.Integer(), sa.ForeignKey("profiles.id", ondelete=ondelete), nullable=nullable)


def upgrade() -> None:
    # Profiles
    op.create_table(
        "profiles",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("username", sa.String(100), nullable=False),
        sa.Column("hashed_password", sa.String(255), nullable=False),
        sa.Column("display_name", sa.String(100), nullable=True),
        sa.Column("bio", sa.String(500), nullable=True),
        sa.Column("avatar_url", sa.String(500), nullable=True),
        sa.Column("banner_url", sa.String(500), nullable=True),
        sa.Column("discord_tag", sa.String(100), nullable=True),
        sa.Column("preferred_platform", sa.String(20), nullable=True),
        sa.Column("plan_tier", sa.String(20), nullable=False, server_default="free"),
        sa.Column("plan_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("stripe_customer_id", sa.String(100), nullable=True),
        sa.Column("is_private", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("allow_invites", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("invites_from_followers_only", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_seeded", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("last_active_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        *_timestamps(),
        sa.CheckConstraint("plan_tier IN ('free', 'pro', 'founder')", name="check_profile_plan_tier"),
    )
    op.create_index("ix_profiles_id", "profiles", ["id"])
    op.create_index("ix_profiles_email", "profiles", ["email"], unique=True)
    op.create_index("ix_profiles_username", "profiles", ["username"], unique=True)
    op.create_index("ix_profiles_stripe_customer_id", "profiles", ["stripe_customer_id"])
    # player search and auto-invite both order/filter on recent activity
    op.create_index("ix_profiles_last_active_at", "profiles", ["last_active_at"])

    op.create_table(
        "user_games",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        _profile_fk("user_id"),
        sa.Column("game_id", sa.String(50), nullable=False),
        sa.Column("game_name", sa.String(255), nullable=False),
        sa.Column("cover_url", sa.String(500), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "game_id", name="uq_user_game"),
    )
    op.create_index("ix_user_games_id", "user_games", ["id"])
    op.create_index("ix_user_games_user_id", "user_games", ["user_id"])
    op.create_index("ix_user_games_game_id", "user_games", ["game_id"])

    op.create_table(
        "follows",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        _profile_fk("follower_id"),
        _profile_fk("following_id"),
        *_timestamps(),
        sa.UniqueConstraint("follower_id", "following_id", name="uq_follow_pair"),
        sa.CheckConstraint("follower_id <> following_id", name="check_follow_not_self"),
    )
    op.create_index("ix_follows_id", "follows", ["id"])
    op.create_index("ix_follows_follower_id", "follows", ["follower_id"])
    op.create_index("ix_follows_following_id", "follows", ["following_id"])

    # Weekly rounds
    op.create_table(
        "weekly_rounds",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("week_key", sa.String(10), nullable=False, unique=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="open"),
        sa.Column("voting_ends_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("selection_phase_deadline", sa.DateTime(timezone=True), nullable=True),
        sa.Column("events_generated_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("status IN ('open', 'locked', 'processed')", name="check_round_status"),
    )
    op.create_index("ix_weekly_rounds_id", "weekly_rounds", ["id"])
    # SINGLE OPEN ROUND: partial unique index, a second 'open' row fails on insert.
    op.create_index(
        "uq_weekly_rounds_single_open",
        "weekly_rounds",
        ["status"],
        unique=True,
        postgresql_where=sa.text("status = 'open'"),
    )

    op.create_table(
        "weekly_game_candidates",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("round_id", sa.Integer(), sa.ForeignKey("weekly_rounds.id", ondelete="CASCADE"), nullable=False),
        sa.Column("game_id", sa.String(50), nullable=False),
        sa.Column("game_name", sa.String(255), nullable=False),
        sa.Column("cover_url", sa.String(500), nullable=True),
        _profile_fk("created_by", nullable=True, ondelete="SET NULL"),
        sa.Column("total_votes", sa.Integer(), nullable=False, server_default=sa.text("0")),
        *_timestamps(),
        sa.UniqueConstraint("round_id", "game_id", name="uq_candidate_round_game"),
        sa.CheckConstraint("total_votes >= 0", name="check_candidate_votes_non_negative"),
    )
    op.create_index("ix_weekly_game_candidates_id", "weekly_game_candidates", ["id"])
    op.create_index("ix_weekly_game_candidates_round_id", "weekly_game_candidates", ["round_id"])
    op.create_index("ix_candidates_round_votes", "weekly_game_candidates", ["round_id", "total_votes"])

    op.create_table(
        "weekly_game_votes",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("round_id", sa.Integer(), sa.ForeignKey("weekly_rounds.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "candidate_id",
            sa.Integer(),
            sa.ForeignKey("weekly_game_candidates.id", ondelete="CASCADE"),
            nullable=False,
        ),
        _profile_fk("user_id"),
        sa.Column("time_pref", sa.String(20), nullable=False, server_default="afternoon"),
        sa.Column("day_pref", sa.String(10), nullable=True),
        *_timestamps(),
        # ONE VOTE PER USER PER CANDIDATE: the counter increment rolls back with a duplicate insert
        sa.UniqueConstraint("candidate_id", "user_id", name="uq_vote_candidate_user"),
        sa.CheckConstraint(
            "time_pref IN ('morning', 'noon', 'afternoon', 'evening', 'late_night')",
            name="check_vote_time_pref",
        ),
    )
    op.create_index("ix_weekly_game_votes_id", "weekly_game_votes", ["id"])
    op.create_index("ix_weekly_game_votes_round_id", "weekly_game_votes", ["round_id"])
    op.create_index("ix_weekly_game_votes_candidate_id", "weekly_game_votes", ["candidate_id"])
    op.create_index("ix_weekly_game_votes_user_id", "weekly_game_votes", ["user_id"])

    op.create_table(
        "weekly_game_selections",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("round_id", sa.Integer(), sa.ForeignKey("weekly_rounds.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "candidate_id",
            sa.Integer(),
            sa.ForeignKey("weekly_game_candidates.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("game_id", sa.String(50), nullable=False),
        sa.Column("game_name", sa.String(255), nullable=False),
        sa.Column("rank", sa.Integer(), nullable=False),
        sa.Column("events_created", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        *_timestamps(),
        sa.UniqueConstraint("round_id", "candidate_id", name="uq_selection_round_candidate"),
    )
    op.create_index("ix_weekly_game_selections_id", "weekly_game_selections", ["id"])
    op.create_index("ix_weekly_game_selections_round_id", "weekly_game_selections", ["round_id"])

    op.create_table(
        "weekly_game_selection_votes",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "selection_id",
            sa.Integer(),
            sa.ForeignKey("weekly_game_selections.id", ondelete="CASCADE"),
            nullable=False,
        ),
        _profile_fk("user_id"),
        sa.Column("day_pref", sa.String(10), nullable=False),
        sa.Column("time_pref", sa.String(20), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("selection_id", "user_id", name="uq_selection_vote_user"),
    )
    op.create_index("ix_weekly_game_selection_votes_id", "weekly_game_selection_votes", ["id"])
    op.create_index(
        "ix_weekly_game_selection_votes_selection_id", "weekly_game_selection_votes", ["selection_id"]
    )

    # Events
    op.create_table(
        "game_event_communities",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("game_id", sa.String(50), nullable=False, unique=True),
        sa.Column("game_name", sa.String(255), nullable=False),
        sa.Column("cover_url", sa.String(500), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_game_event_communities_id", "game_event_communities", ["id"])

    op.create_table(
        "events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("community_id", sa.Integer(), sa.ForeignKey("game_event_communities.id"), nullable=False),
        sa.Column("round_id", sa.Integer(), sa.ForeignKey("weekly_rounds.id", ondelete="SET NULL"), nullable=True),
        sa.Column("game_id", sa.String(50), nullable=False),
        sa.Column("game_name", sa.String(255), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.String(1000), nullable=True),
        sa.Column("starts_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ends_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="scheduled"),
        sa.Column("time_slot", sa.String(20), nullable=True),
        sa.Column("day_slot", sa.String(10), nullable=True),
        _profile_fk("created_by", nullable=True, ondelete="SET NULL"),
        *_timestamps(),
        sa.CheckConstraint("ends_at > starts_at", name="check_event_window"),
        sa.CheckConstraint("status IN ('scheduled', 'ongoing', 'ended', 'cancelled')", name="check_event_status"),
    )
    op.create_index("ix_events_id", "events", ["id"])
    op.create_index("ix_events_community_id", "events", ["community_id"])
    op.create_index("ix_events_starts_at", "events", ["starts_at"])
    # covers the "upcoming" listing: WHERE status IN (...) AND ends_at >= now
    op.create_index("ix_events_status_ends_at", "events", ["status", "ends_at"])

    op.create_table(
        "event_participants",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("event_id", sa.Integer(), sa.ForeignKey("events.id", ondelete="CASCADE"), nullable=False),
        _profile_fk("user_id"),
        sa.Column("status", sa.String(20), nullable=False, server_default="in"),
        *_timestamps(),
        sa.UniqueConstraint("event_id", "user_id", name="uq_event_participant"),
        sa.CheckConstraint("status IN ('in', 'maybe', 'declined')", name="check_participation_status"),
    )
    op.create_index("ix_event_participants_id", "event_participants", ["id"])
    op.create_index("ix_event_participants_event_id", "event_participants", ["event_id"])
    op.create_index("ix_event_participants_user_id", "event_participants", ["user_id"])

    # Lobbies
    op.create_table(
        "lobbies",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        _profile_fk("host_id"),
        sa.Column("game_id", sa.String(50), nullable=False),
        sa.Column("game_name", sa.String(255), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.String(1000), nullable=True),
        sa.Column("max_players", sa.Integer(), nullable=True),
        sa.Column("member_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("platform", sa.String(20), nullable=False, server_default="pc"),
        sa.Column("discord_link", sa.String(500), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="open"),
        sa.Column("auto_invite_enabled", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("host_last_active_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        *_timestamps(),
        sa.CheckConstraint("status IN ('open', 'in_progress', 'closed')", name="check_lobby_status"),
        sa.CheckConstraint(
            "member_count >= 0 AND (max_players IS NULL OR member_count <= max_players)",
            name="check_lobby_member_count",
        ),
        sa.CheckConstraint(
            "platform IN ('pc', 'ps', 'xbox', 'switch', 'mobile', 'other')", name="check_lobby_platform"
        ),
    )
    op.create_index("ix_lobbies_id", "lobbies", ["id"])
    op.create_index("ix_lobbies_host_id", "lobbies", ["host_id"])
    op.create_index("ix_lobbies_game_id", "lobbies", ["game_id"])
    op.create_index("ix_lobbies_status_game", "lobbies", ["status", "game_id"])
    # ONE ACTIVE LOBBY PER HOST
    op.create_index(
        "uq_lobbies_active_host",
        "lobbies",
        ["host_id"],
        unique=True,
        postgresql_where=sa.text("status <> 'closed'"),
    )

    op.create_table(
        "lobby_members",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("lobby_id", sa.Integer(), sa.ForeignKey("lobbies.id", ondelete="CASCADE"), nullable=False),
        _profile_fk("user_id"),
        sa.Column("role", sa.String(10), nullable=False, server_default="member"),
        sa.Column("ready", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        *_timestamps(),
        # ONE LOBBY PER USER
        sa.UniqueConstraint("user_id", name="uq_lobby_members_user_id"),
        sa.CheckConstraint("role IN ('host', 'member')", name="check_lobby_member_role"),
    )
    op.create_index("ix_lobby_members_id", "lobby_members", ["id"])
    op.create_index("ix_lobby_members_lobby_id", "lobby_members", ["lobby_id"])

    op.create_table(
        "lobby_invites",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("lobby_id", sa.Integer(), sa.ForeignKey("lobbies.id", ondelete="CASCADE"), nullable=False),
        _profile_fk("from_user_id"),
        _profile_fk("to_user_id"),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        *_timestamps(),
        sa.CheckConstraint(
            "status IN ('pending', 'accepted', 'declined', 'cancelled')", name="check_lobby_invite_status"
        ),
    )
    op.create_index("ix_lobby_invites_id", "lobby_invites", ["id"])
    op.create_index("ix_lobby_invites_lobby_id", "lobby_invites", ["lobby_id"])
    op.create_index("ix_lobby_invites_to_user_id", "lobby_invites", ["to_user_id"])

    # Tournaments
    op.create_table(
        "tournaments",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        _profile_fk("host_id"),
        sa.Column("game_id", sa.String(50), nullable=False),
        sa.Column("game_name", sa.String(255), nullable=False),
        sa.Column("title", sa.String(100), nullable=False),
        sa.Column("description", sa.String(1000), nullable=True),
        sa.Column("cover_url", sa.String(500), nullable=True),
        sa.Column("status", sa.String(30), nullable=False, server_default="open"),
        sa.Column("max_participants", sa.Integer(), nullable=False),
        sa.Column("current_participants", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("platform", sa.String(20), nullable=False),
        sa.Column("start_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("registration_deadline", sa.DateTime(timezone=True), nullable=False),
        sa.Column("check_in_required", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("check_in_deadline", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rules", sa.String(2000), nullable=True),
        sa.Column("discord_link", sa.String(500), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("max_participants IN (8, 16)", name="check_tournament_size"),
        sa.CheckConstraint(
            "current_participants >= 0 AND current_participants <= max_participants",
            name="check_tournament_participant_count",
        ),
        sa.CheckConstraint(
            "status IN ('draft', 'open', 'registration_closed', 'in_progress', 'completed', 'cancelled')",
            name="check_tournament_status",
        ),
    )
    op.create_index("ix_tournaments_id", "tournaments", ["id"])
    op.create_index("ix_tournaments_host_id", "tournaments", ["host_id"])
    op.create_index("ix_tournaments_game_id", "tournaments", ["game_id"])
    op.create_index("ix_tournaments_status_created", "tournaments", ["status", "created_at"])

    op.create_table(
        "tournament_participants",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "tournament_id", sa.Integer(), sa.ForeignKey("tournaments.id", ondelete="CASCADE"), nullable=False
        ),
        _profile_fk("user_id"),
        sa.Column("seed", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="registered"),
        sa.Column("checked_in_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("final_placement", sa.Integer(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("tournament_id", "user_id", name="uq_tournament_participant"),
        sa.CheckConstraint(
            "status IN ('registered', 'checked_in', 'withdrawn', 'disqualified')",
            name="check_participant_status",
        ),
    )
    op.create_index("ix_tournament_participants_id", "tournament_participants", ["id"])
    op.create_index("ix_tournament_participants_tournament_id", "tournament_participants", ["tournament_id"])
    op.create_index("ix_tournament_participants_user_id", "tournament_participants", ["user_id"])

    op.create_table(
        "tournament_matches",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "tournament_id", sa.Integer(), sa.ForeignKey("tournaments.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("round_number", sa.Integer(), nullable=False),
        sa.Column("match_number", sa.Integer(), nullable=False),
        sa.Column("participant1_id", sa.Integer(), sa.ForeignKey("tournament_participants.id"), nullable=True),
        sa.Column("participant2_id", sa.Integer(), sa.ForeignKey("tournament_participants.id"), nullable=True),
        sa.Column("winner_id", sa.Integer(), sa.ForeignKey("tournament_participants.id"), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("score1", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("score2", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("outcome_method", sa.String(20), nullable=False, server_default="manual"),
        sa.Column("outcome_notes", sa.String(500), nullable=True),
        _profile_fk("finalized_by", nullable=True, ondelete="SET NULL"),
        sa.Column("finalized_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("tournament_id", "round_number", "match_number", name="uq_tournament_match_slot"),
        sa.CheckConstraint("status IN ('pending', 'in_progress', 'completed', 'forfeited')", name="check_match_status"),
    )
    op.create_index("ix_tournament_matches_id", "tournament_matches", ["id"])
    op.create_index("ix_tournament_matches_tournament_id", "tournament_matches", ["tournament_id"])

    op.create_table(
        "profile_badges",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        _profile_fk("user_id"),
        sa.Column("badge_key", sa.String(50), nullable=False),
        sa.Column("label", sa.String(100), nullable=False),
        sa.Column("game_id", sa.String(50), nullable=True),
        sa.Column(
            "tournament_id", sa.Integer(), sa.ForeignKey("tournaments.id", ondelete="CASCADE"), nullable=True
        ),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "badge_key", "tournament_id", name="uq_profile_badge"),
    )
    op.create_index("ix_profile_badges_id", "profile_badges", ["id"])
    op.create_index("ix_profile_badges_user_id", "profile_badges", ["user_id"])

    op.create_table(
        "tournament_rewards",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "tournament_id", sa.Integer(), sa.ForeignKey("tournaments.id", ondelete="CASCADE"), nullable=False
        ),
        _profile_fk("user_id"),
        sa.Column("reward_type", sa.String(20), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_tournament_rewards_id", "tournament_rewards", ["id"])
    op.create_index("ix_tournament_rewards_tournament_id", "tournament_rewards", ["tournament_id"])

    # Billing
    op.create_table(
        "subscriptions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        _profile_fk("user_id"),
        sa.Column("stripe_subscription_id", sa.String(100), nullable=False, unique=True),
        sa.Column("stripe_price_id", sa.String(100), nullable=True),
        sa.Column("status", sa.String(30), nullable=False),
        sa.Column("current_period_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("current_period_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancel_at_period_end", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        *_timestamps(),
    )
    op.create_index("ix_subscriptions_id", "subscriptions", ["id"])
    op.create_index("ix_subscriptions_user_id", "subscriptions", ["user_id"])


def downgrade() -> None:
    for table in (
        "subscriptions",
        "tournament_rewards",
        "profile_badges",
        "tournament_matches",
        "tournament_participants",
        "tournaments",
        "lobby_invites",
        "lobby_members",
        "lobbies",
        "event_participants",
        "events",
        "game_event_communities",
        "weekly_game_selection_votes",
        "weekly_game_selections",
        "weekly_game_votes",
        "weekly_game_candidates",
        "weekly_rounds",
        "follows",
        "user_games",
        "profiles",
    ):
        op.drop_table(table)
