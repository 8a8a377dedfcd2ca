"""Client side of Sovelogg: offline queue, cached state and sync agent."""

from .agent import ConnectionIndicator, FlushResult, FlushStatus, SyncAgent
from .storage import LocalStore, QueuedEvent

__all__ = [
    "ConnectionIndicator",
    "FlushResult",
    "FlushStatus",
    "LocalStore",
    "QueuedEvent",
    "SyncAgent",
]
