"""
Reaper module.
Contains the stale-lease reclaimer for recovering tasks after worker crashes.
"""

from taskgraph.reaper.main import StaleLeaseReclaimer, run

__all__ = ["StaleLeaseReclaimer", "run"]
