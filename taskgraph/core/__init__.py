"""
Core coordination logic.
Contains the task state machine, dependency resolver and lease protocol.

Only the pure state machine is re-exported here; the resolver and lease
manager depend on the db package, which itself imports the state machine.
"""

from taskgraph.core.state_machine import (
    TERMINAL_STATUSES,
    VALID_TRANSITIONS,
    ensure_transition,
    initial_status,
    status_after_failure,
)

__all__ = [
    "VALID_TRANSITIONS",
    "TERMINAL_STATUSES",
    "ensure_transition",
    "initial_status",
    "status_after_failure",
]
