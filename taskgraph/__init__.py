"""
Distributed Dependency-Aware Task Scheduler

Workers share one persistent task store and coordinate purely through
conditional updates: leases grant exclusive execution, lease expiry recovers
crashed workers, and tasks only run once their dependencies have completed.
"""

__version__ = "1.0.0"
