"""
State and result types for the sync orchestrator.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from ..exceptions import TrackStorageError
from ..models import Track


class SyncState(Enum):
    """Current state of the sync orchestrator."""

    IDLE = "idle"
    SYNCING = "syncing"
    COOLDOWN = "cooldown"


class SyncOutcome(Enum):
    """How a sync request ended."""

    SUCCESS = "success"
    FAILED = "failed"
    THROTTLED = "throttled"
    NOT_CONFIGURED = "not_configured"


class RemoteStatus(Enum):
    """Remote side of a save, or the orchestrator's remote health.

    NOT_CONFIGURED: No document (or no token, for writes); nothing attempted
    READY: Configured and no recorded credential failure
    SYNCED: Remote write succeeded
    FAILED: Remote write failed; local copy is authoritative
    MISCONFIGURED: Token or document ID rejected; remote writes suspended
        until credentials change
    """

    NOT_CONFIGURED = "not_configured"
    READY = "ready"
    SYNCED = "synced"
    FAILED = "failed"
    MISCONFIGURED = "misconfigured"


@dataclass
class SaveResult:
    """Result of a write through the orchestrator."""

    key: str
    local_saved: bool
    remote_status: RemoteStatus = RemoteStatus.NOT_CONFIGURED
    error: TrackStorageError | None = None

    @property
    def success(self) -> bool:
        """The value is stored somewhere durable."""
        return self.local_saved or self.remote_status is RemoteStatus.SYNCED

    @property
    def partial(self) -> bool:
        """Stored, but not everywhere it should have been."""
        if not self.success:
            return False
        if not self.local_saved:
            return True
        return self.remote_status in (RemoteStatus.FAILED, RemoteStatus.MISCONFIGURED)


@dataclass
class ApprovalResult:
    """Result of saving approved tracks and promoting them."""

    approved: SaveResult
    tracks: SaveResult | None = None
    pending: SaveResult | None = None
    promoted: int = 0
    pruned: int = 0

    @property
    def success(self) -> bool:
        return self.approved.success and (self.tracks is None or self.tracks.success)

    @property
    def partial(self) -> bool:
        parts = [r for r in (self.approved, self.tracks, self.pending) if r is not None]
        return any(r.partial for r in parts)


@dataclass
class SyncResult:
    """Result of a sync request."""

    outcome: SyncOutcome
    collections: dict[str, list[Track]] = field(default_factory=dict)
    error: TrackStorageError | None = None
    migrated: bool = False
    pushed: bool = False
    duration_ms: int = 0

    @property
    def success(self) -> bool:
        return self.outcome is SyncOutcome.SUCCESS

    @property
    def throttled(self) -> bool:
        return self.outcome is SyncOutcome.THROTTLED
