"""
Sync orchestration between the local store and the remote document.

Provides the single-flight, cooldown-throttled sync state machine and
the result types returned by every orchestrator call.
"""

from .orchestrator import SyncOrchestrator
from .results import (
    ApprovalResult,
    RemoteStatus,
    SaveResult,
    SyncOutcome,
    SyncResult,
    SyncState,
)

__all__ = [
    "SyncOrchestrator",
    "SyncState",
    "SyncOutcome",
    "SyncResult",
    "SaveResult",
    "ApprovalResult",
    "RemoteStatus",
]
