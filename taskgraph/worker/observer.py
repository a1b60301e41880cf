"""
Worker observer interface.

Observers are injected into workers at construction and receive lifecycle
notifications. They are informational only: scheduling correctness never
depends on them, and an observer that raises is logged and ignored.
"""

import logging
from collections.abc import Iterable

from taskgraph.types.events import TaskEvent

logger = logging.getLogger(__name__)


class WorkerObserver:
    """Base observer. Every hook is a no-op; override what you need."""

    def task_started(self, event: TaskEvent) -> None:
        pass

    def task_completed(self, event: TaskEvent) -> None:
        pass

    def task_failed(self, event: TaskEvent) -> None:
        pass

    def task_retry(self, event: TaskEvent) -> None:
        pass

    def worker_error(self, worker_id: str, error: Exception) -> None:
        pass


class LoggingObserver(WorkerObserver):
    """Writes worker notifications to the log."""

    def task_started(self, event: TaskEvent) -> None:
        logger.info(
            "Task started",
            extra={
                "worker_id": event.worker_id,
                "task_id": event.task.id,
                "attempt": event.task.attempts,
            },
        )

    def task_completed(self, event: TaskEvent) -> None:
        logger.info(
            "Task completed",
            extra={"worker_id": event.worker_id, "task_id": event.task.id},
        )

    def task_failed(self, event: TaskEvent) -> None:
        logger.warning(
            "Task failed permanently",
            extra={
                "worker_id": event.worker_id,
                "task_id": event.task.id,
                "attempts": event.task.attempts,
                "error": event.error,
            },
        )

    def task_retry(self, event: TaskEvent) -> None:
        logger.info(
            "Task queued for retry",
            extra={
                "worker_id": event.worker_id,
                "task_id": event.task.id,
                "attempt": event.task.attempts,
                "error": event.error,
            },
        )

    def worker_error(self, worker_id: str, error: Exception) -> None:
        logger.error(
            f"Worker error: {error}",
            extra={"worker_id": worker_id, "error_type": type(error).__name__},
        )


class CompositeObserver(WorkerObserver):
    """Fans notifications out to several observers."""

    def __init__(self, observers: Iterable[WorkerObserver]):
        self._observers = list(observers)

    def task_started(self, event: TaskEvent) -> None:
        for observer in self._observers:
            observer.task_started(event)

    def task_completed(self, event: TaskEvent) -> None:
        for observer in self._observers:
            observer.task_completed(event)

    def task_failed(self, event: TaskEvent) -> None:
        for observer in self._observers:
            observer.task_failed(event)

    def task_retry(self, event: TaskEvent) -> None:
        for observer in self._observers:
            observer.task_retry(event)

    def worker_error(self, worker_id: str, error: Exception) -> None:
        for observer in self._observers:
            observer.worker_error(worker_id, error)
