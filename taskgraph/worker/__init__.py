"""
Worker module.
Contains the worker loop, task executors and the observer interface.
"""

from taskgraph.worker.executors import (
    CallableExecutor,
    SimulatedExecutor,
    TaskExecutor,
    execute_task,
)
from taskgraph.worker.main import Worker, run
from taskgraph.worker.observer import CompositeObserver, LoggingObserver, WorkerObserver

__all__ = [
    "Worker",
    "run",
    "TaskExecutor",
    "SimulatedExecutor",
    "CallableExecutor",
    "execute_task",
    "WorkerObserver",
    "LoggingObserver",
    "CompositeObserver",
]
