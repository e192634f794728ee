"""FastAPI application."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from backend.app.api.deps import ServiceContainer, build_container
from backend.app.api.routes.chat import router as chat_router
from backend.app.api.routes.health import router as health_router
from backend.app.api.routes.itineraries import router as itineraries_router
from backend.app.api.routes.metrics import router as metrics_router
from backend.app.api.routes.realtime import router as realtime_router
from backend.app.db.engine import create_schema

logger = logging.getLogger(__name__)

VERSION = "0.1.0"


def create_app(container: ServiceContainer | None = None) -> FastAPI:
    """Build the application around a service container.

    Tests pass their own container; otherwise one is built from settings.
    """
    container = container or build_container()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if container.db_engine is not None:
            await create_schema(container.db_engine)
            logger.info("Database schema ready")
        yield
        if container.db_engine is not None:
            await container.db_engine.dispose()

    app = FastAPI(title="Itinerary Chat API", version=VERSION, lifespan=lifespan)
    app.state.container = container

    # Register routes
    app.include_router(health_router, tags=["health"])
    app.include_router(metrics_router, tags=["metrics"])
    app.include_router(itineraries_router)
    app.include_router(chat_router)
    app.include_router(realtime_router)

    @app.get("/")
    async def root() -> dict[str, str]:
        """Root endpoint."""
        return {"message": "Itinerary Chat API", "version": VERSION}

    return app


app = create_app()
