"""
FastAPI dependencies.
"""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from taskgraph.coordinator import Coordinator


def get_coordinator(request: Request) -> Coordinator:
    """
    Get the coordinator attached to the application.

    Raises:
        HTTPException: 503 while the coordinator is not running.
    """
    coordinator: Coordinator | None = getattr(request.app.state, "coordinator", None)
    if coordinator is None or not coordinator.is_running:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Scheduler not running",
        )
    return coordinator


CoordinatorDep = Annotated[Coordinator, Depends(get_coordinator)]
