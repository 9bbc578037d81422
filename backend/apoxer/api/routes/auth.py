"""
Authentication endpoints: register, login and the caller's profile.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from apoxer.db.session import get_db
from apoxer.schemas.profile import UserCreate, UserLogin, Token, ProfileResponse
from apoxer.services.auth_service import register_user, authenticate_user
from apoxer.services.cache_service import EntityCache, get_profile_cache
from apoxer.services.profile_service import get_profile_projection, is_pro
from apoxer.core.security import get_current_user_id

router = APIRouter(prefix="/auth", tags=["Authentication"])


@router.post("/register", response_model=ProfileResponse, status_code=status.HTTP_201_CREATED)
async def register(user_data: UserCreate, db: AsyncSession = Depends(get_db)):
    """Register a new free-tier account."""
    profile = await register_user(db, user_data)
    return ProfileResponse.model_validate(profile).model_copy(update={"is_pro": is_pro(profile)})


@router.post("/login", response_model=Token)
async def login(login_data: UserLogin, db: AsyncSession = Depends(get_db)):
    """Authenticate and receive a JWT access token."""
    token = await authenticate_user(db, login_data)
    return Token(access_token=token)


@router.get("/me", response_model=ProfileResponse)
async def me(
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    cache: EntityCache = Depends(get_profile_cache),
):
    """The caller's profile. Served from cache for PROFILE_CACHE_TTL seconds."""
    return await get_profile_projection(db, user_id, cache)
