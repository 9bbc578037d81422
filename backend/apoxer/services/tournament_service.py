"""
Tournament service: creation, registration, check-in, bracket and results.

Participant counting uses the same conditional-update pattern as every
other counter in the app:

  UPDATE tournaments SET current_participants = current_participants + 1
  WHERE id = :id AND current_participants < max_participants

If no row is affected the tournament filled up in the meantime and the
registration is refused. The CHECK constraint on current_participants is the
final safety net.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession
from fastapi import HTTPException, status

from apoxer.models.profile import Profile
from apoxer.models.tournament import (
    Tournament,
    TournamentParticipant,
    TournamentMatch,
    ProfileBadge,
    TournamentReward,
)
from apoxer.schemas.tournament import TournamentCreate, FinalizeMatchRequest
from apoxer.services.bracket import final_placements, generate_bracket, next_slot, round_count
from apoxer.services.profile_service import require_pro
from apoxer.core.logging import get_logger

logger = get_logger(__name__)

# badge key -> (label, pro days granted)
REWARDS = {
    "tournament_winner": ("Tournament Winner", 7),
    "tournament_finalist": ("Tournament Finalist", 3),
    "tournament_top4": ("Top 4", 0),
}


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _bad_request(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


async def create_tournament(db: AsyncSession, user_id: int, data: TournamentCreate) -> Tournament:
    await require_pro(db, user_id, feature="creating tournaments")

    start_at = _aware(data.start_at)
    registration_deadline = _aware(data.registration_deadline)
    check_in_deadline = _aware(data.check_in_deadline)

    if registration_deadline >= start_at:
        raise _bad_request("Registration deadline must be before start time")
    if data.check_in_required:
        if check_in_deadline is None:
            raise _bad_request("Check-in deadline is required when check-in is enabled")
        if not (registration_deadline < check_in_deadline < start_at):
            raise _bad_request("Check-in deadline must be between registration deadline and start time")

    tournament = Tournament(
        host_id=user_id,
        game_id=data.game_id,
        game_name=data.game_name,
        title=data.title,
        description=data.description,
        cover_url=data.cover_url,
        status="open",
        max_participants=data.max_participants,
        current_participants=0,
        platform=data.platform,
        start_at=start_at,
        registration_deadline=registration_deadline,
        check_in_required=data.check_in_required,
        check_in_deadline=check_in_deadline,
        rules=data.rules,
        discord_link=data.discord_link,
    )
    db.add(tournament)
    await db.flush()
    await db.refresh(tournament)

    logger.info("tournament_created", tournament_id=tournament.id, host_id=user_id, size=data.max_participants)
    return tournament


async def list_tournaments(
    db: AsyncSession,
    status_filter: Optional[str] = None,
    game_id: Optional[str] = None,
    platform: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[Tournament], int]:
    query = select(Tournament)
    if status_filter:
        query = query.where(Tournament.status == status_filter)
    if game_id:
        query = query.where(Tournament.game_id == game_id)
    if platform:
        query = query.where(Tournament.platform == platform)

    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar()
    result = await db.execute(
        query.order_by(Tournament.created_at.desc(), Tournament.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return list(result.scalars().all()), total


async def get_tournament(db: AsyncSession, tournament_id: int) -> Tournament:
    result = await db.execute(select(Tournament).where(Tournament.id == tournament_id))
    tournament = result.scalar_one_or_none()
    if not tournament:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Tournament not found",
        )
    return tournament


async def list_participants(db: AsyncSession, tournament_id: int) -> list[TournamentParticipant]:
    result = await db.execute(
        select(TournamentParticipant)
        .where(TournamentParticipant.tournament_id == tournament_id)
        .order_by(TournamentParticipant.created_at.asc(), TournamentParticipant.id.asc())
    )
    return list(result.scalars().all())


async def list_matches(db: AsyncSession, tournament_id: int) -> list[TournamentMatch]:
    result = await db.execute(
        select(TournamentMatch)
        .where(TournamentMatch.tournament_id == tournament_id)
        .order_by(TournamentMatch.round_number.asc(), TournamentMatch.match_number.asc())
    )
    return list(result.scalars().all())


async def _get_participant(db: AsyncSession, tournament_id: int, user_id: int) -> Optional[TournamentParticipant]:
    result = await db.execute(
        select(TournamentParticipant).where(
            TournamentParticipant.tournament_id == tournament_id,
            TournamentParticipant.user_id == user_id,
        )
    )
    return result.scalar_one_or_none()


async def register(
    db: AsyncSession,
    user_id: int,
    tournament_id: int,
    now: Optional[datetime] = None,
) -> TournamentParticipant:
    now = now or datetime.now(timezone.utc)
    tournament = await get_tournament(db, tournament_id)

    if tournament.status != "open":
        raise _bad_request("Tournament is not open for registration")
    if now >= tournament.registration_deadline:
        raise _bad_request("Registration deadline has passed")

    participant = await _get_participant(db, tournament_id, user_id)
    if participant and participant.status != "withdrawn":
        raise _bad_request("You are already registered for this tournament")

    seat = await db.execute(
        update(Tournament)
        .where(Tournament.id == tournament_id, Tournament.current_participants < Tournament.max_participants)
        .values(current_participants=Tournament.current_participants + 1)
        .execution_options(synchronize_session="fetch")
    )
    if seat.rowcount == 0:
        raise _bad_request("Tournament is full")

    if participant:
        participant.status = "registered"
        participant.checked_in_at = None
    else:
        participant = TournamentParticipant(tournament_id=tournament_id, user_id=user_id, status="registered")
        db.add(participant)
    await db.flush()
    await db.refresh(participant)

    logger.info("tournament_registered", tournament_id=tournament_id, user_id=user_id)
    return participant


async def check_in(
    db: AsyncSession,
    user_id: int,
    tournament_id: int,
    now: Optional[datetime] = None,
) -> TournamentParticipant:
    now = now or datetime.now(timezone.utc)
    tournament = await get_tournament(db, tournament_id)

    if not tournament.check_in_required:
        raise _bad_request("Check-in is not required for this tournament")
    if tournament.check_in_deadline is not None and now >= tournament.check_in_deadline:
        raise _bad_request("Check-in deadline has passed")

    participant = await _get_participant(db, tournament_id, user_id)
    if not participant:
        raise _bad_request("You are not registered for this tournament")
    if participant.status == "withdrawn":
        raise _bad_request("You have withdrawn from this tournament")
    if participant.status == "checked_in":
        raise _bad_request("You are already checked in")

    participant.status = "checked_in"
    participant.checked_in_at = now
    await db.flush()

    logger.info("tournament_checked_in", tournament_id=tournament_id, user_id=user_id)
    return participant


async def withdraw(db: AsyncSession, user_id: int, tournament_id: int) -> TournamentParticipant:
    tournament = await get_tournament(db, tournament_id)
    if tournament.status in ("in_progress", "completed"):
        raise _bad_request("Cannot withdraw from a tournament that has started")

    participant = await _get_participant(db, tournament_id, user_id)
    if not participant or participant.status == "withdrawn":
        raise _bad_request("You are not registered for this tournament")

    participant.status = "withdrawn"
    participant.checked_in_at = None
    await db.execute(
        update(Tournament)
        .where(Tournament.id == tournament_id, Tournament.current_participants > 0)
        .values(current_participants=Tournament.current_participants - 1)
        .execution_options(synchronize_session="fetch")
    )
    await db.flush()

    logger.info("tournament_withdrawn", tournament_id=tournament_id, user_id=user_id)
    return participant


async def start(db: AsyncSession, user_id: int, tournament_id: int) -> list[TournamentMatch]:
    """Host-only: seed eligible players and lay out the whole bracket."""
    tournament = await get_tournament(db, tournament_id)
    if tournament.host_id != user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only the tournament host can start the tournament",
        )
    if tournament.status not in ("open", "registration_closed"):
        raise _bad_request(f"Tournament cannot be started from status {tournament.status}")

    eligible_statuses = ("checked_in",) if tournament.check_in_required else ("registered", "checked_in")
    participants = [p for p in await list_participants(db, tournament_id) if p.status in eligible_statuses]
    if len(participants) not in (8, 16):
        raise _bad_request(
            f"Need exactly 8 or 16 {'checked-in' if tournament.check_in_required else 'registered'} "
            f"participants, have {len(participants)}"
        )

    for seed, participant in enumerate(participants, start=1):
        participant.seed = seed

    matches = []
    for slot in generate_bracket([p.id for p in participants]):
        match = TournamentMatch(
            tournament_id=tournament_id,
            round_number=slot.round_number,
            match_number=slot.match_number,
            participant1_id=slot.participant1_id,
            participant2_id=slot.participant2_id,
            status="pending",
            score1=0,
            score2=0,
            outcome_method="manual",
        )
        db.add(match)
        matches.append(match)

    tournament.status = "in_progress"
    await db.flush()

    logger.info("tournament_started", tournament_id=tournament_id, participants=len(participants))
    return matches


def _extend_pro(profile: Profile, days: int, now: datetime) -> Optional[datetime]:
    """Push pro expiry out by `days`; founders and open-ended pro plans are left alone."""
    if profile.plan_tier == "founder":
        return None
    if profile.plan_tier == "pro" and profile.plan_expires_at is None:
        return None
    base = profile.plan_expires_at if profile.plan_expires_at and profile.plan_expires_at > now else now
    new_expiry = base + timedelta(days=days)
    profile.plan_tier = "pro"
    profile.plan_expires_at = new_expiry
    return new_expiry


async def _grant_reward(
    db: AsyncSession,
    tournament: Tournament,
    participant_id: int,
    badge_key: str,
    now: datetime,
) -> None:
    label, pro_days = REWARDS[badge_key]
    result = await db.execute(
        select(Profile)
        .join(TournamentParticipant, TournamentParticipant.user_id == Profile.id)
        .where(TournamentParticipant.id == participant_id)
    )
    profile = result.scalar_one_or_none()
    if profile is None:
        return

    existing = await db.execute(
        select(ProfileBadge.id).where(
            ProfileBadge.user_id == profile.id,
            ProfileBadge.badge_key == badge_key,
            ProfileBadge.tournament_id == tournament.id,
        )
    )
    if existing.scalar_one_or_none() is None:
        db.add(
            ProfileBadge(
                user_id=profile.id,
                badge_key=badge_key,
                label=label,
                game_id=tournament.game_id,
                tournament_id=tournament.id,
            )
        )

    if pro_days:
        new_expiry = _extend_pro(profile, pro_days, now)
        if new_expiry is not None:
            db.add(
                TournamentReward(
                    tournament_id=tournament.id,
                    user_id=profile.id,
                    reward_type="pro_days",
                    payload={"days": pro_days, "expires_at": new_expiry.isoformat()},
                )
            )
    logger.info("tournament_reward_granted", tournament_id=tournament.id, user_id=profile.id, badge=badge_key)


async def finalize_match(
    db: AsyncSession,
    user_id: int,
    tournament_id: int,
    match_id: int,
    data: FinalizeMatchRequest,
    now: Optional[datetime] = None,
) -> bool:
    """Host-only: record a result, advance the winner, close out the final."""
    now = now or datetime.now(timezone.utc)
    tournament = await get_tournament(db, tournament_id)
    if tournament.host_id != user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only tournament host can finalize matches",
        )
    if tournament.status != "in_progress":
        raise _bad_request("Tournament is not in progress")

    result = await db.execute(
        select(TournamentMatch).where(
            TournamentMatch.id == match_id,
            TournamentMatch.tournament_id == tournament_id,
        )
    )
    match = result.scalar_one_or_none()
    if not match:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Match not found",
        )
    if match.status == "completed":
        raise _bad_request("Match already finalized")
    if match.participant1_id is None or match.participant2_id is None:
        raise _bad_request("Match is still waiting for its participants")
    if data.winner_id not in (match.participant1_id, match.participant2_id):
        raise _bad_request("Winner must be one of the match participants")

    match.winner_id = data.winner_id
    match.score1 = data.score1
    match.score2 = data.score2
    match.outcome_method = data.outcome_method
    match.outcome_notes = data.outcome_notes
    match.status = "completed"
    match.finalized_by = user_id
    match.finalized_at = now

    rounds = round_count(tournament.max_participants)
    if match.round_number < rounds:
        next_match_number, field = next_slot(match.match_number)
        await db.execute(
            update(TournamentMatch)
            .where(
                TournamentMatch.tournament_id == tournament_id,
                TournamentMatch.round_number == match.round_number + 1,
                TournamentMatch.match_number == next_match_number,
            )
            .values({field: data.winner_id})
            .execution_options(synchronize_session="fetch")
        )
    await db.flush()
    logger.info(
        "match_finalized",
        tournament_id=tournament_id,
        match_id=match_id,
        round=match.round_number,
        winner_id=data.winner_id,
    )

    if match.round_number != rounds:
        return False

    semifinals = [m for m in await list_matches(db, tournament_id) if m.round_number == rounds - 1]
    placements = final_placements(match, semifinals)
    awards = [
        (placements.first, 1, "tournament_winner"),
        (placements.second, 2, "tournament_finalist"),
        (placements.third, 3, "tournament_top4"),
        (placements.fourth, 4, "tournament_top4"),
    ]
    for participant_id, placement, badge_key in awards:
        if participant_id is None:
            continue
        await db.execute(
            update(TournamentParticipant)
            .where(TournamentParticipant.id == participant_id)
            .values(final_placement=placement)
            .execution_options(synchronize_session="fetch")
        )
        await _grant_reward(db, tournament, participant_id, badge_key, now)

    tournament.status = "completed"
    await db.flush()
    logger.info("tournament_completed", tournament_id=tournament_id, winner_participant_id=placements.first)
    return True
