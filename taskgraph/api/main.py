"""
FastAPI application entry point.
"""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from taskgraph import __version__
from taskgraph.api.routes import health_router, tasks_router
from taskgraph.config import get_settings
from taskgraph.coordinator import Coordinator
from taskgraph.observability.logging import setup_logging
from taskgraph.observability.metrics import setup_metrics
from taskgraph.observability.tracing import instrument_fastapi, setup_tracing_from_settings

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Starts a coordinator built from settings unless one was injected into
    create_app(); an injected coordinator is owned by the caller.
    """
    settings = get_settings()
    owned = app.state.coordinator is None

    # Startup
    setup_logging("api")
    setup_metrics()
    setup_tracing_from_settings("api")

    if owned:
        app.state.coordinator = Coordinator(
            worker_count=settings.worker_count if settings.api_run_workers else 0,
        )
        await app.state.coordinator.start()

    logger.info("Application started", extra={"runs_workers": settings.api_run_workers})

    yield

    # Shutdown
    if owned:
        await app.state.coordinator.stop(drain=True)
        app.state.coordinator = None
    logger.info("Application shutdown")


def create_app(coordinator: Coordinator | None = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        coordinator: A started coordinator to serve. Built from settings
            during startup when omitted.

    Returns:
        FastAPI: The configured application instance.
    """
    settings = get_settings()

    app = FastAPI(
        title="Taskgraph Scheduler API",
        description="Dependency-aware task scheduler over a shared lease-based task store",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.coordinator = coordinator

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(health_router)
    app.include_router(tasks_router)

    if settings.otel_enabled:
        instrument_fastapi(app)

    return app


def run() -> None:
    """Run the API server."""
    settings = get_settings()

    uvicorn.run(
        create_app(),
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
