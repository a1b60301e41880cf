"""
Database module.
Contains the task store, models, and repository implementation.
"""

from taskgraph.db.connection import TaskStore, create_engine_for_url
from taskgraph.db.models import Base, Task, utcnow
from taskgraph.db.repository import TaskRepository

__all__ = [
    "TaskStore",
    "TaskRepository",
    "create_engine_for_url",
    "Task",
    "Base",
    "utcnow",
]
