"""
LLM relay API Server
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from relay.config import get_settings
from relay.services.memory_injector import TeamMemoryInjector
from relay.services.team_memory import TeamMemoryStore
from relay.storage.redis import close_redis_client

settings = get_settings()

# Configure logging for application modules (must be after imports)
logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan manager."""
    # Startup
    logger.info(f"Starting relay on port {settings.port}")

    store = TeamMemoryStore()
    try:
        await store.start()
    except Exception as e:
        logger.warning(f"Failed to start team memory store: {e}")
        # Non-fatal - memory can be refreshed later through the API

    app.state.team_memory_store = store
    app.state.team_memory_injector = TeamMemoryInjector(store)

    yield
    # Shutdown
    logger.info("Shutting down relay")
    await store.dispose()
    await close_redis_client()


app = FastAPI(
    title="relay",
    description="Team memory injection and rate limit classification for the LLM relay",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in settings.cors_origins.split(",") if origin.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Basic liveness check at root level for k8s probes."""
    return {"status": "healthy", "service": "relay"}


# Import and include routers (must be after app is created to avoid circular imports)
from relay.api import router  # noqa: E402

app.include_router(router, prefix="/api")
