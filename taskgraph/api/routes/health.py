"""
Health check routes.
"""

from fastapi import APIRouter, Request
from fastapi.responses import Response

from taskgraph import __version__
from taskgraph.db.models import utcnow
from taskgraph.observability.metrics import get_metrics
from taskgraph.types.api import HealthResponse

router = APIRouter(tags=["Health"])


async def _store_healthy(request: Request) -> bool:
    coordinator = getattr(request.app.state, "coordinator", None)
    if coordinator is None or coordinator.store.is_closed:
        return False
    return await coordinator.store.ping()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Check the health of the API and task store connection.",
)
async def health_check(request: Request) -> HealthResponse:
    """
    Perform a health check.

    Checks task store connectivity and returns service status.
    """
    db_status = "healthy" if await _store_healthy(request) else "unhealthy"

    return HealthResponse(
        status="healthy" if db_status == "healthy" else "degraded",
        version=__version__,
        database=db_status,
        timestamp=utcnow(),
    )


@router.get(
    "/ready",
    summary="Readiness check",
    description="Check if the service is ready to receive traffic.",
)
async def readiness_check(request: Request) -> dict:
    """Kubernetes readiness probe endpoint."""
    return {"ready": await _store_healthy(request)}


@router.get(
    "/live",
    summary="Liveness check",
    description="Check if the service is alive.",
)
async def liveness_check() -> dict:
    """Kubernetes liveness probe endpoint."""
    return {"alive": True}


@router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Expose Prometheus metrics.",
)
async def metrics() -> Response:
    metrics_collector = get_metrics()
    return Response(
        content=metrics_collector.get_metrics(),
        media_type=metrics_collector.get_content_type(),
    )
