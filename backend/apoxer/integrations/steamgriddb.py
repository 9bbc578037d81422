"""
SteamGridDB API client.

Every call degrades to None (or an empty list for search) on a missing API
key, transport error, non-2xx response or a `success: false` payload, so game
lookups never break the request that needs them.
"""

import time
from typing import Any, Optional
from urllib.parse import quote

import httpx

from apoxer.core.config import get_settings
from apoxer.core.logging import get_logger
from apoxer.core.metrics import external_latency, record_external_call

logger = get_logger(__name__)

SERVICE = "steamgriddb"
SEARCH_LIMIT = 10
PORTRAIT_DIMENSIONS = "600x900,342x482,660x930"


class SteamGridDBClient:
    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.api_key = settings.STEAMGRIDDB_API_KEY if api_key is None else api_key
        self.base_url = (base_url or settings.STEAMGRIDDB_API_BASE).rstrip("/")
        self.timeout = timeout or settings.STEAMGRIDDB_TIMEOUT
        self._transport = transport

    async def _fetch(self, endpoint: str, params: Optional[dict] = None) -> Optional[Any]:
        if not self.api_key:
            logger.warning("steamgriddb_key_missing", endpoint=endpoint)
            record_external_call(SERVICE, "skipped")
            return None

        started = time.perf_counter()
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers={"Authorization": f"Bearer {self.api_key}"},
                transport=self._transport,
            ) as client:
                response = await client.get(endpoint, params=params)
                response.raise_for_status()
                payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("steamgriddb_request_failed", endpoint=endpoint, error=str(e))
            record_external_call(SERVICE, "error")
            return None
        finally:
            external_latency.labels(service=SERVICE).observe(time.perf_counter() - started)

        if not isinstance(payload, dict) or not payload.get("success", False):
            logger.warning("steamgriddb_unsuccessful", endpoint=endpoint)
            record_external_call(SERVICE, "error")
            return None

        record_external_call(SERVICE, "ok")
        return payload.get("data")

    async def search(self, query: str) -> list[dict]:
        """Autocomplete search, first SEARCH_LIMIT games."""
        if not query or len(query) < 2:
            return []
        games = await self._fetch(f"/search/autocomplete/{quote(query, safe='')}")
        if not games:
            return []
        return list(games)[:SEARCH_LIMIT]

    async def get_game(self, game_id: int) -> Optional[dict]:
        data = await self._fetch(f"/games/id/{game_id}")
        # the endpoint answers with either an object or a one-element list
        if isinstance(data, list):
            data = data[0] if data else None
        if not data or not data.get("id"):
            return None
        return data

    async def get_cover(self, game_id: int) -> Optional[dict]:
        """Portrait grid for a game: {"url", "thumb"}."""
        grids = await self._fetch(f"/grids/game/{game_id}", params={"dimensions": PORTRAIT_DIMENSIONS})
        if grids:
            grid = next((g for g in grids if g.get("height", 0) > g.get("width", 0)), grids[0])
            return {"url": grid.get("url"), "thumb": grid.get("thumb")}

        grids = await self._fetch(f"/grids/game/{game_id}")
        if not grids:
            return None
        grid = max(grids, key=lambda g: g.get("height", 0) / (g.get("width") or 1))
        return {"url": grid.get("url"), "thumb": grid.get("thumb")}

    async def get_hero(self, game_id: int) -> Optional[dict]:
        heroes = await self._fetch(f"/heroes/game/{game_id}")
        if not heroes:
            return None
        for hero in heroes:
            if hero.get("nsfw") or hero.get("epilepsy"):
                continue
            return {"url": hero.get("url"), "thumb": hero.get("thumb")}
        return None

    async def search_with_covers(self, query: str) -> list[dict]:
        results = []
        for game in await self.search(query):
            cover = await self.get_cover(game["id"])
            results.append(
                {
                    "id": game["id"],
                    "name": game.get("name", ""),
                    "release_date": game.get("release_date"),
                    "verified": bool(game.get("verified", False)),
                    "cover_url": (cover or {}).get("thumb") or (cover or {}).get("url"),
                }
            )
        return results


def get_steamgriddb_client() -> SteamGridDBClient:
    """FastAPI dependency; overridden in tests with a mock transport."""
    return SteamGridDBClient()
