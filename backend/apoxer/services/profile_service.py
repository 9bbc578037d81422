"""
Profile lookups, plan-tier gates and player search.

Plan tiers:
  free     - default
  pro      - paid or rewarded; active while plan_expires_at is null or in the future
  founder  - staff; passes every pro gate and the founder-only actions
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, update, or_
from sqlalchemy.ext.asyncio import AsyncSession
from fastapi import HTTPException, status

from apoxer.models.profile import Profile
from apoxer.schemas.profile import ProfileResponse
from apoxer.services.cache_service import EntityCache
from apoxer.core.logging import get_logger

logger = get_logger(__name__)

PLAYER_SEARCH_LIMIT = 20


def is_pro(profile: Profile, now: Optional[datetime] = None) -> bool:
    if profile.plan_tier == "founder":
        return True
    if profile.plan_tier != "pro":
        return False
    if profile.plan_expires_at is None:
        return True
    now = now or datetime.now(timezone.utc)
    return profile.plan_expires_at > now


def is_founder(profile: Profile) -> bool:
    return profile.plan_tier == "founder"


async def get_profile(db: AsyncSession, user_id: int) -> Profile:
    result = await db.execute(select(Profile).where(Profile.id == user_id))
    profile = result.scalar_one_or_none()
    if not profile:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Profile not found",
        )
    return profile


async def require_founder(db: AsyncSession, user_id: int) -> Profile:
    profile = await get_profile(db, user_id)
    if not is_founder(profile):
        logger.warning("founder_gate_denied", user_id=user_id, plan_tier=profile.plan_tier)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only founders can perform this action",
        )
    return profile


async def require_pro(db: AsyncSession, user_id: int, feature: str = "this feature") -> Profile:
    profile = await get_profile(db, user_id)
    if not is_pro(profile):
        logger.info("pro_gate_denied", user_id=user_id, feature=feature)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "error": f"Pro subscription required for {feature}",
                "code": "PREMIUM_REQUIRED",
            },
        )
    return profile


async def get_profile_projection(db: AsyncSession, user_id: int, cache: EntityCache) -> dict:
    """Profile projection for /auth/me, served from the TTL cache when warm."""
    cached = await cache.get(user_id)
    if cached:
        return cached

    profile = await get_profile(db, user_id)
    projection = ProfileResponse.model_validate(profile).model_copy(
        update={"is_pro": is_pro(profile)}
    ).model_dump(mode="json")
    await cache.set(user_id, projection)
    return projection


async def touch_last_active(db: AsyncSession, user_id: int, now: Optional[datetime] = None) -> None:
    await db.execute(
        update(Profile)
        .where(Profile.id == user_id)
        .values(last_active_at=now or datetime.now(timezone.utc))
    )


async def search_players(db: AsyncSession, query: str) -> list[Profile]:
    """Public profiles whose username or display name contains the query."""
    query = (query or "").strip()
    if len(query) < 2:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Query must be at least 2 characters",
        )

    pattern = f"%{query}%"
    result = await db.execute(
        select(Profile)
        .where(
            or_(Profile.username.ilike(pattern), Profile.display_name.ilike(pattern)),
            Profile.is_private.is_(False),
            Profile.is_active.is_(True),
        )
        .order_by(Profile.last_active_at.desc())
        .limit(PLAYER_SEARCH_LIMIT)
    )
    return list(result.scalars().all())
