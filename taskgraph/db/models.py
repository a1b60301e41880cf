"""
SQLAlchemy database models.
Defines the Task table.
"""

from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    DateTime,
    Enum,
    Float,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from taskgraph.constants import DEFAULT_MAX_ATTEMPTS, TaskStatus


def utcnow() -> datetime:
    """Current time as naive UTC, the representation stored in every column."""
    return datetime.now(UTC).replace(tzinfo=None)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class Task(Base):
    """
    Task model representing one node of the dependency graph.

    This is the authoritative source of truth for task state. Workers never
    share memory; every lifecycle transition is a conditional UPDATE on this
    table.

    Key constraints:
    - id is caller supplied and unique
    - status transitions follow taskgraph.core.state_machine
    - locked_by and locked_until hold the lease that grants exclusive execution
    """

    __tablename__ = "tasks"

    id: Mapped[str] = mapped_column(
        String(255),
        primary_key=True,
    )

    # Execution budget in seconds
    duration: Mapped[float] = mapped_column(
        Float,
        nullable=False,
        default=0.0,
    )

    status: Mapped[TaskStatus] = mapped_column(
        Enum(TaskStatus, name="task_status", create_constraint=True, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=TaskStatus.QUEUED,
        index=True,
    )

    # Ordered list of task ids that must be COMPLETED first
    dependencies: Mapped[list[str]] = mapped_column(
        JSON,
        nullable=False,
        default=list,
    )

    # Retry tracking
    attempts: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    max_attempts: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=DEFAULT_MAX_ATTEMPTS,
    )

    # Lease management
    locked_by: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    locked_until: Mapped[datetime | None] = mapped_column(
        DateTime,
        nullable=True,
    )
    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=utcnow,
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    failed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # Outcome of the latest attempt
    last_error: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    result: Mapped[dict | None] = mapped_column(
        JSON,
        nullable=True,
    )

    __table_args__ = (
        # Candidate polling: status priority then FIFO
        Index("ix_tasks_status_created", "status", "created_at"),
        # Lease ownership and expiry sweeps
        Index("ix_tasks_lease", "locked_by", "locked_until"),
    )

    def __repr__(self) -> str:
        return (
            f"Task(id={self.id}, status={self.status}, "
            f"attempt={self.attempts}/{self.max_attempts}, locked_by={self.locked_by})"
        )
