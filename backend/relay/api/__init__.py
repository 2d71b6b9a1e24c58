"""API routers for the relay."""

from fastapi import APIRouter

from relay.api.team_memory import router as team_memory_router

router = APIRouter()
router.include_router(team_memory_router)  # Has its own prefix /team-memory and tags

__all__ = ["router"]
