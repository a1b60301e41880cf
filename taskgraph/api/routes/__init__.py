"""
API routes module.
"""

from taskgraph.api.routes.health import router as health_router
from taskgraph.api.routes.tasks import router as tasks_router

__all__ = ["tasks_router", "health_router"]
