"""
Custom exceptions for track storage.

Remote and local backends raise these exceptions so the sync
orchestrator can classify failures consistently.
"""

from datetime import UTC, datetime
from enum import Enum


class ErrorKind(Enum):
    """Failure taxonomy shared by every storage component."""

    LOCAL_STORAGE_FAILURE = "local_storage_failure"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    RATE_LIMITED = "rate_limited"
    NOT_FOUND = "not_found"
    NETWORK = "network"
    THROTTLED = "throttled"
    MALFORMED_DOCUMENT = "malformed_document"


class TrackStorageError(Exception):
    """Base exception for all track storage errors."""

    kind: ErrorKind | None = None

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class LocalStorageFailure(TrackStorageError):
    """Raised when a local store read or write fails (quota, I/O, serialization)."""

    kind = ErrorKind.LOCAL_STORAGE_FAILURE

    def __init__(self, operation: str, key: str | None = None, cause: Exception | None = None):
        details = {"operation": operation}
        if key:
            details["key"] = key
        if cause:
            details["cause"] = str(cause)
        message = f"Local storage error during {operation}"
        if key:
            message += f": {key}"
        super().__init__(message, details)
        self.operation = operation
        self.key = key
        self.cause = cause


class StorageIOError(LocalStorageFailure):
    """Raised by the file helpers when a filesystem operation fails."""

    def __init__(self, operation: str, path: str | None = None, cause: Exception | None = None):
        super().__init__(operation, path, cause)
        self.path = path


class RemoteStoreError(TrackStorageError):
    """Base class for failures talking to the remote document store."""

    retryable = False

    def __init__(
        self,
        message: str,
        status: int | None = None,
        document_id: str | None = None,
        cause: Exception | None = None,
    ):
        details: dict = {}
        if status is not None:
            details["status"] = status
        if document_id:
            details["document_id"] = document_id
        if cause:
            details["cause"] = str(cause)
        super().__init__(message, details)
        self.status = status
        self.document_id = document_id
        self.cause = cause


class UnauthorizedError(RemoteStoreError):
    """The bearer token is invalid or expired (HTTP 401)."""

    kind = ErrorKind.UNAUTHORIZED


class ForbiddenError(RemoteStoreError):
    """The token lacks scope, or the document is private (HTTP 403)."""

    kind = ErrorKind.FORBIDDEN


class RateLimitedError(RemoteStoreError):
    """API quota is exhausted (HTTP 403 with zero remaining quota)."""

    kind = ErrorKind.RATE_LIMITED
    retryable = True

    def __init__(
        self,
        message: str,
        reset_at: datetime | None = None,
        status: int | None = 403,
        document_id: str | None = None,
    ):
        if reset_at is not None:
            message = f"{message} Quota resets at {reset_at.isoformat()}."
        super().__init__(message, status=status, document_id=document_id)
        self.reset_at = reset_at
        if reset_at is not None:
            self.details["reset_at"] = reset_at.isoformat()

    def seconds_until_reset(self, now: datetime | None = None) -> float | None:
        """Seconds until the quota resets, or None if the reset time is unknown."""
        if self.reset_at is None:
            return None
        now = now or datetime.now(UTC)
        return max(0.0, (self.reset_at - now).total_seconds())


class DocumentNotFoundError(RemoteStoreError):
    """The document ID does not exist (HTTP 404)."""

    kind = ErrorKind.NOT_FOUND


class NetworkError(RemoteStoreError):
    """Transport failure or any unclassified HTTP error."""

    kind = ErrorKind.NETWORK
    retryable = True


class MalformedDocumentError(TrackStorageError):
    """Remote content is present but does not match the document schema."""

    kind = ErrorKind.MALFORMED_DOCUMENT

    def __init__(self, filename: str, reason: str):
        super().__init__(
            f"Malformed document file {filename}: {reason}",
            {"filename": filename, "reason": reason},
        )
        self.filename = filename
        self.reason = reason


class ThrottledError(TrackStorageError):
    """A sync was requested while another was running or cooling down."""

    kind = ErrorKind.THROTTLED

    def __init__(self, state: str, retry_after: float | None = None):
        details: dict = {"state": state}
        message = f"Sync rejected while {state}"
        if retry_after is not None:
            details["retry_after"] = retry_after
            message += f"; retry in {retry_after:.1f}s"
        super().__init__(message, details)
        self.state = state
        self.retry_after = retry_after


class ValidationError(TrackStorageError):
    """Raised when caller-supplied data is invalid."""

    def __init__(self, field: str, reason: str, value: str | None = None):
        details = {"field": field, "reason": reason}
        if value is not None:
            details["value"] = value
        super().__init__(f"Validation failed for {field}: {reason}", details)
        self.field = field
        self.reason = reason
        self.value = value
