"""Auto-Assignment Engine: FastAPI application factory."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from autoassign.adapters.persistence.database import engine
from autoassign.config import settings
from autoassign.domain.exceptions import TransientError
from autoassign.infrastructure.api.dependencies import get_coordinator
from autoassign.infrastructure.api.routes_agents import router as agents_router
from autoassign.infrastructure.api.routes_decisions import router as decisions_router
from autoassign.infrastructure.api.routes_health import router as health_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s | %(message)s",
    )
    coordinator = app.dependency_overrides.get(get_coordinator, get_coordinator)()
    try:
        await coordinator.directory.refresh()
        await coordinator.rules.refresh()
    except TransientError as e:
        logger.warning("Agent directory not available on startup: %s", e)
    yield
    await coordinator.drain()
    await engine.dispose()


def create_app() -> FastAPI:
    app = FastAPI(
        title="Auto-Assignment Engine",
        description="Rule-driven and score-based routing of support tickets to agents",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health_router, prefix="/api")
    app.include_router(decisions_router, prefix="/api")
    app.include_router(agents_router, prefix="/api")

    return app


app = create_app()
