"""
TildePlayer Storage

Dual-tier persistence and sync engine for track collections.

Provides:
- A local key-value store that always holds the latest copy
- A shared remote document (GitHub Gist) synced across devices
- Order-preserving, duplicate-free collection merging
- A throttled sync state machine with a UI refresh hook
- Token validation before credentials are trusted for writes

Usage:

    >>> from tildeplayer_storage import StorageConfig, SyncOrchestrator
    >>> config = StorageConfig.from_environment()
    >>> async with SyncOrchestrator(config, on_refresh=render_tracks) as engine:
    ...     tracks = await engine.load_data("tracks")
    ...
    ...     # Local write first, then the remote document
    ...     result = await engine.save_data("playlist", playlist)
    ...     if result.partial:
    ...         show_warning(result.error)
    ...
    ...     # Pull and merge; throttled while syncing or cooling down
    ...     await engine.sync()

Backend Selection:

    # Local only, never touches the network
    StorageConfig(backend=BackendKind.LOCAL)

    # Local plus the shared remote document
    StorageConfig(backend=BackendKind.REMOTE, document_id="f308c6...", token="ghp_...")
"""

from .config import BackendKind, StorageConfig
from .exceptions import (
    DocumentNotFoundError,
    ErrorKind,
    ForbiddenError,
    LocalStorageFailure,
    MalformedDocumentError,
    NetworkError,
    RateLimitedError,
    RemoteStoreError,
    StorageIOError,
    ThrottledError,
    TrackStorageError,
    UnauthorizedError,
    ValidationError,
)
from .local import LocalStore
from .logging_utils import (
    StorageLoggerAdapter,
    StructuredJsonFormatter,
    configure_structured_logging,
    get_storage_logger,
)
from .merge import merge_collections, promote_approved, prune_pending, records_match
from .models import (
    APPROVED_TRACKS,
    PENDING_TRACKS,
    PLAYLIST,
    TRACKS,
    Credential,
    Duration,
    RemoteDocument,
    Track,
    tracks_from_json,
    tracks_to_json,
)
from .remote import CredentialValidator, GistClient, GitHubApiClient, ValidationVerdict
from .resilience import NO_RETRY, RetryPolicy, retry_with_policy
from .sync import (
    ApprovalResult,
    RemoteStatus,
    SaveResult,
    SyncOrchestrator,
    SyncOutcome,
    SyncResult,
    SyncState,
)

__version__ = "0.1.0"

__all__ = [
    # Configuration
    "BackendKind",
    "StorageConfig",
    # Orchestrator
    "SyncOrchestrator",
    "SyncState",
    "SyncOutcome",
    "SyncResult",
    "SaveResult",
    "ApprovalResult",
    "RemoteStatus",
    # Models
    "Track",
    "Duration",
    "Credential",
    "RemoteDocument",
    "tracks_from_json",
    "tracks_to_json",
    "TRACKS",
    "PLAYLIST",
    "APPROVED_TRACKS",
    "PENDING_TRACKS",
    # Merge
    "merge_collections",
    "promote_approved",
    "prune_pending",
    "records_match",
    # Backends
    "LocalStore",
    "GitHubApiClient",
    "GistClient",
    "CredentialValidator",
    "ValidationVerdict",
    # Resilience
    "RetryPolicy",
    "NO_RETRY",
    "retry_with_policy",
    # Logging
    "configure_structured_logging",
    "get_storage_logger",
    "StorageLoggerAdapter",
    "StructuredJsonFormatter",
    # Exceptions
    "ErrorKind",
    "TrackStorageError",
    "LocalStorageFailure",
    "StorageIOError",
    "RemoteStoreError",
    "UnauthorizedError",
    "ForbiddenError",
    "RateLimitedError",
    "DocumentNotFoundError",
    "NetworkError",
    "MalformedDocumentError",
    "ThrottledError",
    "ValidationError",
]
