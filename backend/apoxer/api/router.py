"""
Central API router that aggregates all route modules.
"""

from fastapi import APIRouter
from apoxer.api.routes import (
    auth,
    rounds,
    selections,
    events,
    lobbies,
    tournaments,
    players,
    seed,
    steamgriddb,
    billing,
)

api_router = APIRouter(prefix="/api")
api_router.include_router(auth.router)
# rounds and selections before events: /events/{event_id} would shadow them
api_router.include_router(rounds.router)
api_router.include_router(selections.router)
api_router.include_router(events.router)
api_router.include_router(lobbies.router)
api_router.include_router(tournaments.router)
api_router.include_router(players.router)
api_router.include_router(seed.router)
api_router.include_router(steamgriddb.router)
api_router.include_router(billing.router)
api_router.include_router(billing.webhook_router)
