"""FastAPI application entry point for the Harbinger engine.

This module initializes the FastAPI application with middleware, routes and
the engine service wired into the application lifespan.

Usage:
    uv run uvicorn main:app --reload
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.routes import router, set_engine_service
from config import settings
from engine.dispatch import build_worker_registry
from engine.planner import PlanningClient
from engine.utils import LLMClient
from engine_service import EngineService
from events import get_event_bus
from metrics import MetricsCollector

logger = structlog.get_logger(__name__)


def create_engine_service() -> EngineService:
    """Wire the worker registry, planner and observability into a service."""
    event_bus = get_event_bus()
    metrics_collector = MetricsCollector()
    registry = build_worker_registry(
        settings.worker_endpoints, timeout=settings.dispatch_timeout_seconds
    )
    llm_client = LLMClient(
        event_bus=event_bus,
        default_model=settings.planner_model,
        fallback_model=settings.planner_fallback_model,
        metrics_collector=metrics_collector,
    )
    planning_client = PlanningClient(llm_client, agent_names=list(registry))
    return EngineService(
        registry,
        planning_client,
        event_bus,
        metrics_collector=metrics_collector,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager for startup and shutdown events.

    Builds the worker registry once at startup and closes worker
    connections on shutdown.

    Args:
        app: The FastAPI application instance.

    Yields:
        None during application runtime.
    """
    logger.info(
        "application_starting",
        backend_port=settings.backend_port,
        log_level=settings.log_level,
        planner_model=settings.planner_model,
        workers=len(settings.worker_endpoints),
    )

    engine_service = create_engine_service()
    set_engine_service(engine_service)
    app.state.engine_service = engine_service

    logger.info("application_started")

    yield

    logger.info("application_shutting_down")
    await app.state.engine_service.aclose()
    logger.info("application_shutdown_complete")


app = FastAPI(
    title="Harbinger",
    description="Plans natural-language requests into task graphs and executes "
    "them against a fleet of worker agents.",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(router, tags=["engine"])


@app.get("/", include_in_schema=False)
async def root() -> dict[str, str]:
    """Root endpoint pointing at the API documentation."""
    return {
        "message": "Harbinger API",
        "docs": "/docs",
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=settings.backend_port,
        reload=True,
        log_level=settings.log_level.lower(),
    )
