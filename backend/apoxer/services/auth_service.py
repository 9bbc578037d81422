"""
Account registration and login.

Emails are stored lower-cased and usernames are unique regardless of case, so
"Neon" and "neon" cannot both exist. Every new account starts on the free tier.
"""

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from fastapi import HTTPException, status

from apoxer.models.profile import Profile
from apoxer.schemas.profile import UserCreate, UserLogin
from apoxer.services.profile_service import touch_last_active
from apoxer.core.security import hash_password, verify_password, create_access_token
from apoxer.core.logging import get_logger

logger = get_logger(__name__)


def _conflict(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=detail)


async def register_user(db: AsyncSession, user_data: UserCreate) -> Profile:
    """
    Create a free-tier profile.
    Raises 409 if the email or username (any case) is taken.
    """
    email = user_data.email.lower()

    result = await db.execute(select(Profile.id).where(Profile.email == email))
    if result.scalar_one_or_none() is not None:
        logger.warning("registration_failed", reason="email_exists")
        raise _conflict("Email already registered")

    result = await db.execute(
        select(Profile.id).where(func.lower(Profile.username) == user_data.username.lower())
    )
    if result.scalar_one_or_none() is not None:
        logger.warning("registration_failed", reason="username_exists", username=user_data.username)
        raise _conflict("Username already taken")

    profile = Profile(
        email=email,
        username=user_data.username,
        display_name=user_data.display_name or user_data.username,
        hashed_password=hash_password(user_data.password),
        plan_tier="free",
    )
    db.add(profile)
    try:
        await db.flush()
    except IntegrityError:
        # a concurrent signup took the email or username between check and insert
        await db.rollback()
        logger.warning("registration_failed", reason="unique_race", username=user_data.username)
        raise _conflict("Email or username already registered")
    await db.refresh(profile)

    logger.info("user_registered", user_id=profile.id, username=profile.username)
    return profile


async def authenticate_user(db: AsyncSession, login_data: UserLogin) -> str:
    """Check credentials, mark the profile active and issue a JWT."""
    result = await db.execute(select(Profile).where(Profile.email == login_data.email.lower()))
    profile = result.scalar_one_or_none()

    if not profile or not verify_password(login_data.password, profile.hashed_password):
        logger.warning("login_failed")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not profile.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is deactivated",
        )

    await touch_last_active(db, profile.id)
    token = create_access_token(data={"sub": str(profile.id)})
    logger.info("user_logged_in", user_id=profile.id)
    return token
