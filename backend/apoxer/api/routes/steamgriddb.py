"""
SteamGridDB proxy endpoints used by the game pickers.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, status

from apoxer.integrations.steamgriddb import SteamGridDBClient, get_steamgriddb_client
from apoxer.schemas.misc import GameSummary, GameSearchResponse, GameDetailResponse

router = APIRouter(prefix="/steamgriddb", tags=["Games"])


@router.get("/search", response_model=GameSearchResponse)
async def search_games_endpoint(
    query: str = Query(""),
    client: SteamGridDBClient = Depends(get_steamgriddb_client),
):
    if len(query.strip()) < 2:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Query must be at least 2 characters",
        )
    results = await client.search_with_covers(query.strip())
    return GameSearchResponse(games=[GameSummary(**r) for r in results])


@router.get("/game", response_model=GameDetailResponse)
async def get_game_endpoint(
    game_id: int = Query(..., alias="id"),
    client: SteamGridDBClient = Depends(get_steamgriddb_client),
):
    game = await client.get_game(game_id)
    if game is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Game not found",
        )
    cover = await client.get_cover(game_id)
    hero = await client.get_hero(game_id)
    return GameDetailResponse(
        game=GameSummary(
            id=game["id"],
            name=game.get("name", ""),
            release_date=game.get("release_date"),
            verified=bool(game.get("verified", False)),
            cover_url=cover["url"] if cover else None,
        ),
        hero_url=hero["url"] if hero else None,
    )
