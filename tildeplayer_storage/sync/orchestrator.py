"""
Sync orchestrator for local + remote track storage.

Routes reads and writes between the local store and the shared remote
document, and runs the sync state machine:

    IDLE --sync()--> SYNCING --done--> COOLDOWN --interval--> IDLE

A sync request outside IDLE is rejected with a THROTTLED result rather
than queued. The refresh callback fires at most once per successful
sync, while the sync flag is still held, so a callback that asks for
another sync is throttled instead of recursing.
"""

from __future__ import annotations

import inspect
import time
from collections.abc import Awaitable, Callable, Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any

from ..config import BackendKind, StorageConfig
from ..exceptions import ErrorKind, RemoteStoreError, ThrottledError
from ..local.store import LocalStore
from ..logging_utils import get_storage_logger
from ..merge import merge_collections, promote_approved, prune_pending
from ..models import (
    APPROVED_TRACKS,
    COLLECTION_KEYS,
    GIST_ID_KEY,
    GITHUB_TOKEN_KEY,
    PENDING_TRACKS,
    TRACKS,
    Credential,
    RemoteDocument,
    Track,
    tracks_from_json,
    tracks_to_json,
)
from ..remote.credentials import CredentialValidator, ValidationVerdict
from ..remote.gist_client import GistClient
from ..resilience import retry_with_policy
from .results import (
    ApprovalResult,
    RemoteStatus,
    SaveResult,
    SyncOutcome,
    SyncResult,
    SyncState,
)

logger = get_storage_logger("sync")

RefreshCallback = Callable[..., Awaitable[None] | None]
RemoteErrorCallback = Callable[[RemoteStoreError], None]

# Failures that need the user to fix the token or document ID
CREDENTIAL_ERROR_KINDS = frozenset({ErrorKind.UNAUTHORIZED, ErrorKind.FORBIDDEN, ErrorKind.NOT_FOUND})


def _accepts_argument(callback: Callable[..., Any]) -> bool:
    try:
        params = inspect.signature(callback).parameters.values()
    except (TypeError, ValueError):
        return True
    for p in params:
        if p.kind in (p.VAR_POSITIONAL, p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD):
            return True
    return False


class SyncOrchestrator:
    """Dual-tier persistence engine.

    Reads try the local store first and fall back to one remote round
    trip. Writes go to the local store first, then (when a token is
    configured) to the remote document via read-merge-write. Remote
    failures never fail a call outright; they are reported on the result.

    Example:
        >>> config = StorageConfig(backend=BackendKind.REMOTE, document_id="f308c6...")
        >>> async with SyncOrchestrator(config, on_refresh=render_track_list) as engine:
        ...     tracks = await engine.load_data("tracks")
        ...     await engine.save_data("playlist", playlist)
        ...     result = await engine.sync()
    """

    def __init__(
        self,
        config: StorageConfig | None = None,
        local_store: LocalStore | None = None,
        remote_client: GistClient | None = None,
        validator: CredentialValidator | None = None,
        on_refresh: RefreshCallback | None = None,
        on_remote_error: RemoteErrorCallback | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            config: Storage configuration (defaults to local-only)
            local_store: Local store; built from config if omitted
            remote_client: Remote document client; built from config if omitted
            validator: Token validator; built on top of the remote client if omitted
            on_refresh: Called after each successful sync, with the tracks
                collection if it takes an argument
            on_remote_error: Called whenever a remote call fails
            clock: Monotonic clock used for the cooldown timer
        """
        self.config = config or StorageConfig()
        self.local = local_store or LocalStore(
            self.config.local_path, self.config.local_max_value_bytes
        )
        self.remote = remote_client or GistClient(
            api_base_url=self.config.api_base_url,
            timeout=self.config.request_timeout,
            data_filename=self.config.data_filename,
            legacy_filename=self.config.legacy_filename,
        )
        self.validator = validator or CredentialValidator(self.remote, self.config.required_scope)
        self.on_remote_error = on_remote_error
        self._clock = clock

        self._credential: Credential | None = None
        if self.config.backend is BackendKind.REMOTE:
            self._credential = self.config.credential
        self._credential_error: RemoteStoreError | None = None
        self.last_validation: ValidationVerdict | None = None

        # Reentrancy guards
        self.sync_in_progress = False
        self.refresh_in_progress = False

        self._state = SyncState.IDLE
        self._cooldown_until = 0.0
        self._last_sync: datetime | None = None

        self._refresh_callback: RefreshCallback | None = None
        self._refresh_wants_tracks = False
        if on_refresh is not None:
            self.register_refresh_callback(on_refresh)

    # Lifecycle

    async def start(self) -> SyncOrchestrator:
        """Resolve remote credentials.

        A construction-time credential is persisted to the local store;
        otherwise the persisted ``gist-id`` / ``github-token`` are used.
        """
        if self.config.backend is not BackendKind.REMOTE:
            logger.info("Storage mode: local only")
            return self

        if self._credential is not None:
            await self.local.set(GIST_ID_KEY, self._credential.document_id)
            if self._credential.token:
                await self.local.set(GITHUB_TOKEN_KEY, self._credential.token)
        else:
            document_id = await self.local.get(GIST_ID_KEY)
            token = await self.local.get(GITHUB_TOKEN_KEY)
            if isinstance(document_id, str) and document_id:
                self._credential = Credential(
                    document_id=document_id,
                    token=token if isinstance(token, str) and token else None,
                )

        if self._credential is None:
            logger.warning("Remote backend selected but no document ID is configured")
        elif not self._credential.token:
            logger.info("No token configured; remote document is read-only")
        else:
            logger.info(f"Storage mode: remote document {self._credential.document_id}")
        return self

    async def close(self) -> None:
        """Close remote and local resources."""
        await self.remote.close()
        await self.local.close()

    async def __aenter__(self) -> SyncOrchestrator:
        return await self.start()

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # State

    @property
    def state(self) -> SyncState:
        """Current state; COOLDOWN turns into IDLE once the interval elapses."""
        if self._state is SyncState.COOLDOWN and self._clock() >= self._cooldown_until:
            self._state = SyncState.IDLE
        return self._state

    def cooldown_remaining(self) -> float:
        if self.state is not SyncState.COOLDOWN:
            return 0.0
        return max(0.0, self._cooldown_until - self._clock())

    @property
    def last_sync(self) -> datetime | None:
        return self._last_sync

    @property
    def credential(self) -> Credential | None:
        return self._credential

    @property
    def credential_error(self) -> RemoteStoreError | None:
        """The token/document failure that suspended remote writes, if any."""
        return self._credential_error

    @property
    def remote_configured(self) -> bool:
        return (
            self.config.backend is BackendKind.REMOTE
            and self._credential is not None
            and bool(self._credential.document_id)
        )

    @property
    def remote_status(self) -> RemoteStatus:
        if not self.remote_configured:
            return RemoteStatus.NOT_CONFIGURED
        if self._credential_error is not None:
            return RemoteStatus.MISCONFIGURED
        return RemoteStatus.READY

    @contextmanager
    def _hold(self, flag: str) -> Iterator[None]:
        """Set a reentrancy flag for the duration of the block, clearing it on every exit."""
        setattr(self, flag, True)
        try:
            yield
        finally:
            setattr(self, flag, False)

    def reset(self) -> None:
        """Recover from a stuck flag or suspended remote.

        Clears both reentrancy flags, the cooldown and any recorded
        credential failure.
        """
        if self.sync_in_progress or self.refresh_in_progress:
            logger.warning(
                f"Resetting stuck flags (sync={self.sync_in_progress}, "
                f"refresh={self.refresh_in_progress})"
            )
        self.sync_in_progress = False
        self.refresh_in_progress = False
        self._state = SyncState.IDLE
        self._cooldown_until = 0.0
        self._credential_error = None

    # Refresh hook

    def register_refresh_callback(self, callback: RefreshCallback) -> None:
        """Register the hook invoked after each successful sync.

        The callback may take no arguments or the tracks collection, and
        may be a coroutine function.
        """
        if self._refresh_callback is not None and self._refresh_callback is not callback:
            logger.warning("Replacing previously registered refresh callback")
        self._refresh_callback = callback
        self._refresh_wants_tracks = _accepts_argument(callback)

    async def refresh(self) -> bool:
        """Tell the UI layer to re-read the tracks collection.

        Returns:
            True if the callback ran
        """
        tracks = await self.load_data(TRACKS) or []
        return await self._notify_refresh(tracks)

    async def _notify_refresh(self, tracks: list[Track]) -> bool:
        if self._refresh_callback is None:
            return False
        if self.refresh_in_progress:
            logger.debug("Refresh already in progress; skipping nested refresh")
            return False

        with self._hold("refresh_in_progress"):
            try:
                if self._refresh_wants_tracks:
                    outcome = self._refresh_callback(list(tracks))
                else:
                    outcome = self._refresh_callback()
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as e:
                logger.error(f"Refresh callback raised: {e}", exc_info=True)
        return True

    # Credentials

    async def validate_token(self, token: str | None = None) -> ValidationVerdict:
        """Validate a token (the configured one if omitted) without storing it."""
        if token is None and self._credential is not None:
            token = self._credential.token
        verdict = await self.validator.validate(token)
        self.last_validation = verdict
        return verdict

    async def set_credentials(
        self,
        document_id: str,
        token: str | None = None,
        validate: bool = True,
    ) -> bool:
        """Switch to a new document and token and persist them.

        With ``validate`` a token that fails validation is not stored;
        the verdict is kept in ``last_validation``.

        Returns:
            True if the credentials were applied
        """
        document_id = document_id.strip()
        if not document_id:
            logger.warning("Refusing to store an empty document ID")
            return False

        if token and validate:
            verdict = await self.validate_token(token)
            if not verdict.usable:
                logger.warning(f"Token not stored: {verdict.reason}")
                return False

        self._credential = Credential(document_id=document_id, token=token or None)
        self._credential_error = None
        await self.local.set(GIST_ID_KEY, document_id)
        if token:
            await self.local.set(GITHUB_TOKEN_KEY, token)
        else:
            await self.local.remove(GITHUB_TOKEN_KEY)
        logger.info(f"Remote document set to {document_id}")
        return True

    async def clear_credentials(self) -> None:
        """Forget the document ID and token."""
        self._credential = None
        self._credential_error = None
        await self.local.remove(GIST_ID_KEY)
        await self.local.remove(GITHUB_TOKEN_KEY)

    def _note_remote_error(self, error: RemoteStoreError, operation: str) -> None:
        logger.warning(f"Remote {operation} failed ({error.kind.value if error.kind else 'error'}): {error.message}")

        has_token = self._credential is not None and bool(self._credential.token)
        if has_token and error.kind in CREDENTIAL_ERROR_KINDS and self._credential_error is None:
            self._credential_error = error
            logger.error(
                f"Remote credentials rejected; remote writes suspended until they change: "
                f"{error.message}"
            )

        if self.on_remote_error is not None:
            try:
                self.on_remote_error(error)
            except Exception as e:
                logger.error(f"on_remote_error callback raised: {e}")

    # Read path

    def _decode(self, key: str, value: Any) -> Any:
        if key in COLLECTION_KEYS:
            return tracks_from_json(value)
        return value

    async def load_data(self, key: str) -> Any | None:
        """Load a value, local first.

        Collections are returned as lists of ``Track``. On a local miss one
        remote fetch is attempted (no retry); a hit is cached locally. If
        the tracks collection is empty everywhere, the approved tracks are
        used to seed it.

        Returns:
            The value, or None if absent everywhere
        """
        value = await self._load_value(key)

        if key == TRACKS and not value:
            approved = await self.local.get(APPROVED_TRACKS)
            if isinstance(approved, list) and approved:
                logger.info(
                    f"No tracks in main collection; seeding it with {len(approved)} approved tracks"
                )
                await self.local.set(TRACKS, approved)
                await self._write_remote({TRACKS: approved})
                value = approved

        if value is None:
            return None
        return self._decode(key, value)

    async def _load_value(self, key: str) -> Any | None:
        """Local value, or the remote one (cached locally) on a local miss."""
        value = await self.local.get(key)
        if value is None and self._remote_usable():
            document = await self._fetch_once(f"load {key}")
            if document is not None and document.data.get(key) is not None:
                value = document.data[key]
                logger.info(f"Loaded {key} from remote document; caching locally")
                await self.local.set(key, value)
        return value

    async def _fetch_once(self, operation: str) -> RemoteDocument | None:
        try:
            return await self.remote.fetch_document(self._credential)
        except RemoteStoreError as e:
            self._note_remote_error(e, operation)
            return None

    def _remote_usable(self) -> bool:
        return self.remote_configured and self._credential_error is None

    # Write path

    def _encode(self, key: str, data: Any) -> Any:
        if key not in COLLECTION_KEYS:
            return data
        tracks = tracks_from_json(list(data or []))
        unique = merge_collections([], tracks)
        if len(unique) != len(tracks):
            logger.warning(f"Dropped {len(tracks) - len(unique)} duplicate records from {key}")
        return tracks_to_json(unique)

    async def save_data(self, key: str, data: Any) -> SaveResult:
        """Save a value locally, then remotely when a token is configured.

        The local write completes before any remote call. A remote failure
        leaves the local value authoritative and marks the result partial.
        """
        payload = self._encode(key, data)
        local_saved = await self.local.set(key, payload)
        if not local_saved:
            logger.warning(f"Local save of {key} failed; relying on remote copy")

        remote_status, error = await self._write_remote({key: payload})
        return SaveResult(
            key=key,
            local_saved=local_saved,
            remote_status=remote_status,
            error=error,
        )

    async def remove_data(self, key: str) -> SaveResult:
        """Remove a key locally and from the remote document."""
        await self.local.remove(key)
        remote_status, error = await self._write_remote({}, removed=(key,))
        return SaveResult(key=key, local_saved=True, remote_status=remote_status, error=error)

    async def _write_remote(
        self,
        values: dict[str, Any],
        removed: tuple[str, ...] = (),
    ) -> tuple[RemoteStatus, RemoteStoreError | None]:
        if not self.remote_configured or not self._credential.token:
            logger.debug("No remote credential configured; saved locally only")
            return RemoteStatus.NOT_CONFIGURED, None
        if self._credential_error is not None:
            return RemoteStatus.MISCONFIGURED, self._credential_error

        keys = ", ".join(sorted([*values, *removed]))
        try:
            await retry_with_policy(
                self.remote.write_values,
                self._credential,
                values,
                removed,
                policy=self.config.retry,
                context_msg=f"write {keys}",
            )
        except RemoteStoreError as e:
            self._note_remote_error(e, f"write of {keys}")
            if self._credential_error is e:
                return RemoteStatus.MISCONFIGURED, e
            return RemoteStatus.FAILED, e

        logger.info(f"Saved {keys} to remote document")
        return RemoteStatus.SYNCED, None

    async def save_approved_tracks(self, tracks: list[Track] | list[dict[str, Any]]) -> ApprovalResult:
        """Save the approved list and promote it into the main collection.

        Steps, each attempted regardless of the others' remote outcome:
        1. Save ``approvedTracks``
        2. Merge it into ``tracks`` and save that if anything was added
        3. Drop newly approved records from ``pendingTracks``
        """
        approved = merge_collections([], tracks_from_json(list(tracks)))
        logger.info(f"Saving {len(approved)} approved tracks")
        approved_result = await self.save_data(APPROVED_TRACKS, approved)

        main = tracks_from_json(await self._load_value(TRACKS))
        promoted, changed = promote_approved(main, approved)
        tracks_result = None
        if changed:
            tracks_result = await self.save_data(TRACKS, promoted)
            logger.info(f"Promoted {len(promoted) - len(main)} approved tracks into {TRACKS}")

        pending = tracks_from_json(await self.local.get(PENDING_TRACKS))
        remaining, pruned = prune_pending(pending, approved)
        pending_result = None
        if pruned:
            pending_result = await self.save_data(PENDING_TRACKS, remaining)

        return ApprovalResult(
            approved=approved_result,
            tracks=tracks_result,
            pending=pending_result,
            promoted=len(promoted) - len(main),
            pruned=len(pending) - len(remaining),
        )

    # Sync

    async def sync(self) -> SyncResult:
        """Pull the remote document and merge it into the local store."""
        return await self._guarded_sync(push=False)

    async def force_sync_all(self) -> SyncResult:
        """Pull, merge, then push the merged collections back to the remote document."""
        return await self._guarded_sync(push=True)

    async def _guarded_sync(self, push: bool) -> SyncResult:
        state = self.state
        if self.sync_in_progress or state is not SyncState.IDLE:
            busy = SyncState.SYNCING if self.sync_in_progress else state
            retry_after = self.cooldown_remaining() if busy is SyncState.COOLDOWN else None
            error = ThrottledError(busy.value, retry_after)
            logger.info(error.message)
            return SyncResult(outcome=SyncOutcome.THROTTLED, error=error)

        if not self.remote_configured:
            logger.debug("Sync requested but no remote document is configured")
            return SyncResult(outcome=SyncOutcome.NOT_CONFIGURED)

        with self._hold("sync_in_progress"):
            self._state = SyncState.SYNCING
            start = self._clock()
            try:
                result = await self._run_sync(push)
                if result.success:
                    self._last_sync = datetime.now(UTC)
                    await self._notify_refresh(result.collections.get(TRACKS, []))
            finally:
                self._state = SyncState.COOLDOWN
                self._cooldown_until = self._clock() + self.config.sync_cooldown

        result.duration_ms = int((self._clock() - start) * 1000)
        return result

    async def _run_sync(self, push: bool) -> SyncResult:
        try:
            document = await retry_with_policy(
                self.remote.fetch_document,
                self._credential,
                policy=self.config.retry,
                context_msg="sync fetch",
            )
        except RemoteStoreError as e:
            self._note_remote_error(e, "sync")
            return SyncResult(outcome=SyncOutcome.FAILED, error=e)

        # A successful authenticated read proves the credentials work again
        self._credential_error = None

        collections = await self._merge_into_local(document)
        await self._reconcile(collections)

        result = SyncResult(outcome=SyncOutcome.SUCCESS, collections=collections)

        if push or document.needs_migration:
            status, error = await self._write_remote(
                {key: tracks_to_json(value) for key, value in collections.items()}
            )
            if status is RemoteStatus.SYNCED:
                result.pushed = True
                result.migrated = document.needs_migration
            elif error is not None:
                # Local holds the merged pull either way
                result.error = error
                logger.warning(f"Pulled and merged, but pushing back failed: {error.message}")

        logger.info(
            "Sync complete: "
            + ", ".join(f"{key}={len(value)}" for key, value in sorted(collections.items()))
        )
        return result

    async def _merge_into_local(self, document: RemoteDocument) -> dict[str, list[Track]]:
        """Merge every remote collection into its local counterpart (local wins ties)."""
        collections: dict[str, list[Track]] = {}

        for key in sorted(COLLECTION_KEYS | set(document.data)):
            local_value = await self.local.get(key)
            remote_value = document.data.get(key)

            if key not in COLLECTION_KEYS:
                if local_value is None and remote_value is not None:
                    await self.local.set(key, remote_value)
                continue

            local_tracks = tracks_from_json(local_value)
            if remote_value is None:
                if local_value is not None:
                    collections[key] = local_tracks
                continue

            merged = merge_collections(local_tracks, tracks_from_json(remote_value))
            if local_value is None or len(merged) != len(local_tracks):
                await self.local.set(key, tracks_to_json(merged))
            collections[key] = merged

        return collections

    async def _reconcile(self, collections: dict[str, list[Track]]) -> None:
        """Promote approved tracks into the catalog and prune the pending queue."""
        approved = collections.get(APPROVED_TRACKS, [])
        if not approved:
            return

        tracks = collections.get(TRACKS, [])
        promoted, changed = promote_approved(tracks, approved)
        if changed:
            await self.local.set(TRACKS, tracks_to_json(promoted))
            collections[TRACKS] = promoted

        if PENDING_TRACKS in collections:
            remaining, pruned = prune_pending(collections[PENDING_TRACKS], approved)
            if pruned:
                await self.local.set(PENDING_TRACKS, tracks_to_json(remaining))
                collections[PENDING_TRACKS] = remaining

    # Remote setup

    async def initialize_remote(self, public: bool = True) -> bool:
        """Make sure the remote document exists and holds the data file.

        Creates a new document (and stores its ID) when the configured one
        does not exist. Requires a token.

        Returns:
            True if the remote document is ready
        """
        if self.config.backend is not BackendKind.REMOTE:
            return False
        token = self._credential.token if self._credential else None
        if not token:
            logger.error("Cannot create or initialize the remote document without a token")
            return False

        try:
            if self.remote_configured:
                try:
                    await self.remote.ensure_data_file(self._credential)
                    return True
                except RemoteStoreError as e:
                    if e.kind is not ErrorKind.NOT_FOUND:
                        raise
                    logger.info("Remote document not found; creating a new one")

            document_id = await self.remote.create_document(token, public=public)
        except RemoteStoreError as e:
            self._note_remote_error(e, "initialization")
            return False

        return await self.set_credentials(document_id, token, validate=False)
