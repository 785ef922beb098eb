"""
FastAPI application factory.

Creates and configures the content pipeline orchestrator API.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from content_pipeline import __version__
from content_pipeline.api.routes import router
from content_pipeline.config import Settings, get_settings
from content_pipeline.config.settings import LeaseBackend
from content_pipeline.handlers.base import HandlerRegistry
from content_pipeline.orchestrator.components import build_components
from content_pipeline.storage.base import WorkflowStore
from content_pipeline.storage.postgres.database import Database
from content_pipeline.storage.postgres.repository import PostgresWorkflowStore
from content_pipeline.storage.redis.connection import RedisConnection

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Connects PostgreSQL (and Redis, when leases live there) unless the app
    was created around an existing store.
    """
    settings: Settings = app.state.settings

    if getattr(app.state, "components", None) is not None:
        yield
        return

    logger.info("Starting Content Pipeline Orchestrator...")

    database = Database(settings.postgres)
    await database.init()
    app.state.database = database
    logger.info("Database connection established")

    redis_connection: Optional[RedisConnection] = None
    if settings.scheduler.lease_backend == LeaseBackend.REDIS:
        redis_connection = RedisConnection(settings.redis)
        await redis_connection.init()
        app.state.redis = redis_connection
        logger.info("Redis connection established")

    app.state.components = build_components(
        PostgresWorkflowStore(database),
        app.state.registry,
        settings,
        redis_client=redis_connection.client if redis_connection else None,
    )

    logger.info(f"Orchestrator started - Environment: {settings.environment.value}")

    yield

    logger.info("Shutting down Content Pipeline Orchestrator...")

    if redis_connection is not None:
        await redis_connection.close()
    await database.close()

    logger.info("Shutdown complete")


def create_app(
    store: Optional[WorkflowStore] = None,
    registry: Optional[HandlerRegistry] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        store: Use this store instead of connecting to PostgreSQL
        registry: Stage handlers; an empty registry is used if omitted
        settings: Settings override, defaults to ``get_settings()``
    """
    settings = settings or get_settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    app = FastAPI(
        title=settings.app_name,
        description="Workflow orchestration core for the content generation pipeline",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    app.state.settings = settings
    app.state.registry = registry if registry is not None else HandlerRegistry()
    if store is not None:
        app.state.components = build_components(store, app.state.registry, settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.is_development else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router)

    @app.get("/", tags=["root"])
    async def root():
        return {
            "name": settings.app_name,
            "version": __version__,
            "status": "running",
        }

    return app


# Application instance for uvicorn
app = create_app()
