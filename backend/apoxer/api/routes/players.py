"""
Player search.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from apoxer.db.session import get_db
from apoxer.schemas.profile import PlayerCard, PlayerSearchResponse
from apoxer.services.profile_service import search_players

router = APIRouter(prefix="/players", tags=["Players"])


@router.get("/search", response_model=PlayerSearchResponse)
async def search_players_endpoint(
    query: str = Query(""),
    db: AsyncSession = Depends(get_db),
):
    players = await search_players(db, query)
    return PlayerSearchResponse(players=[PlayerCard.model_validate(p) for p in players])
