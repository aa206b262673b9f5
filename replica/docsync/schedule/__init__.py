"""
Background sync scheduling for docsync.

- clock: TaskScheduler port (asyncio and manual implementations)
- fingerprint: content hash used to suppress redundant writes
- sync_scheduler: debounce + idle-time persistence state machine
"""

from .clock import AsyncioTaskScheduler, Handle, ManualTaskScheduler, TaskScheduler
from .fingerprint import fingerprint, hash_string
from .sync_scheduler import SYNC_STATE_KEY, SchedulerState, SyncScheduler

__all__ = [
    "TaskScheduler",
    "Handle",
    "AsyncioTaskScheduler",
    "ManualTaskScheduler",
    "fingerprint",
    "hash_string",
    "SyncScheduler",
    "SchedulerState",
    "SYNC_STATE_KEY",
]
