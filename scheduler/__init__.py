"""
Scheduling core for newsroom coverage.

Entry point is CoverageScheduler; the rest of the package is its parts:
conflict detection, allocation, escalation and the in-memory store.
"""

from .orchestrator import CoverageScheduler
from .state import CoverageStore, retry_on_conflict
from .config import SchedulerSettings, get_settings
from .ports import LoggingNotifier, StaticDirectory

__all__ = [
    "CoverageScheduler",
    "CoverageStore",
    "retry_on_conflict",
    "SchedulerSettings",
    "get_settings",
    "LoggingNotifier",
    "StaticDirectory",
]
