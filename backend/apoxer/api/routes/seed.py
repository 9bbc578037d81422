"""
Founder-only seeding endpoints.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from apoxer.db.session import get_db
from apoxer.integrations.steamgriddb import SteamGridDBClient, get_steamgriddb_client
from apoxer.schemas.misc import SeedUsersRequest, SeededUser, SeedUsersResponse, SeedFollowsResponse
from apoxer.services import seed_service
from apoxer.services.profile_service import require_founder
from apoxer.core.security import get_current_user_id

router = APIRouter(prefix="/seed", tags=["Seeding"])


@router.post("/users", response_model=SeedUsersResponse, status_code=status.HTTP_201_CREATED)
async def seed_users_endpoint(
    data: SeedUsersRequest,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    client: SteamGridDBClient = Depends(get_steamgriddb_client),
):
    await require_founder(db, user_id)
    created, errors = await seed_service.seed_users(db, client, data.count, data.usernames)
    return SeedUsersResponse(
        created=[
            SeededUser.model_validate(profile).model_copy(update={"games": [g["name"] for g in games]})
            for profile, games in created
        ],
        errors=errors,
    )


@router.get("/users/list", response_model=list[SeededUser])
async def list_seeded_endpoint(
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    await require_founder(db, user_id)
    profiles = await seed_service.list_seeded(db)
    games = await seed_service.seeded_games(db, [p.id for p in profiles])
    return [SeededUser.model_validate(p).model_copy(update={"games": games.get(p.id, [])}) for p in profiles]


@router.delete("/users/{seeded_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_seeded_endpoint(
    seeded_id: int,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    await require_founder(db, user_id)
    await seed_service.delete_seeded(db, seeded_id)


@router.post("/users/{seeded_id}/follows", response_model=SeedFollowsResponse)
async def seed_follows_endpoint(
    seeded_id: int,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    await require_founder(db, user_id)
    created = await seed_service.seed_follows(db, seeded_id)
    return SeedFollowsResponse(user_id=seeded_id, follows_created=created)
