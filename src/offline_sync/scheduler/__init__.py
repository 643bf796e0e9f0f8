"""
Sync scheduler module

Periodic sync passes driven by APScheduler.
"""

from .jobs import sync_job_wrapper
from .scheduler import SyncScheduler

__all__ = [
    "SyncScheduler",
    "sync_job_wrapper",
]
