"""Team memory diagnostics API endpoints.

Inspect and refresh the cached team memory, preview injection into a request
body, and check how an upstream error would be classified for failover.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Request
from pydantic import BaseModel

from relay.services.memory_injector import TeamMemoryInjector
from relay.services.rate_limit_detection import (
    extract_error_message,
    is_rate_limit_error_with_status,
)
from relay.services.team_memory import TeamMemoryStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/team-memory", tags=["team-memory"])


class RefreshResponse(BaseModel):
    """Response schema for a manual refresh."""

    refreshed: bool
    status: dict[str, Any]


class PreviewResponse(BaseModel):
    """Injection dry run result."""

    outcome: str
    body: dict[str, Any]


class ClassifyRequest(BaseModel):
    """Upstream failure to classify."""

    status_code: int | None = None
    body: Any = None


class ClassifyResponse(BaseModel):
    """Classification result."""

    rate_limited: bool
    message: str | None = None


def get_team_memory_store(request: Request) -> TeamMemoryStore:
    """Store created by the app lifespan."""
    store = getattr(request.app.state, "team_memory_store", None)
    if store is None:
        raise HTTPException(status_code=503, detail="Team memory store not initialized")
    return store


def get_team_memory_injector(request: Request) -> TeamMemoryInjector:
    """Injector created by the app lifespan."""
    injector = getattr(request.app.state, "team_memory_injector", None)
    if injector is None:
        raise HTTPException(status_code=503, detail="Team memory injector not initialized")
    return injector


@router.get("/status")
async def get_status(store: TeamMemoryStore = Depends(get_team_memory_store)) -> dict[str, Any]:
    """Current team memory cache and config."""
    return store.status().to_dict()


@router.post("/refresh", response_model=RefreshResponse)
async def refresh(store: TeamMemoryStore = Depends(get_team_memory_store)) -> RefreshResponse:
    """Re-resolve team memory now. A failed refresh keeps the cached copy."""
    refreshed = await store.refresh()
    logger.info(f"Manual team memory refresh: refreshed={refreshed}")
    return RefreshResponse(refreshed=refreshed, status=store.status().to_dict())


@router.delete("/cache")
async def clear_cache(store: TeamMemoryStore = Depends(get_team_memory_store)) -> dict[str, bool]:
    """Drop the cached team memory."""
    store.clear()
    logger.info("Team memory cache cleared")
    return {"cleared": True}


@router.post("/preview", response_model=PreviewResponse)
async def preview(
    body: dict[str, Any] = Body(...),
    injector: TeamMemoryInjector = Depends(get_team_memory_injector),
) -> PreviewResponse:
    """Show what injection would do to a request body without forwarding it."""
    outcome = injector.inject(body)
    return PreviewResponse(outcome=outcome.value, body=body)


@router.post("/classify", response_model=ClassifyResponse)
async def classify(request: ClassifyRequest) -> ClassifyResponse:
    """Check whether an upstream error would count as a rate limit."""
    message = extract_error_message(request.body)
    return ClassifyResponse(
        rate_limited=is_rate_limit_error_with_status(request.status_code, request.body),
        message=message,
    )
