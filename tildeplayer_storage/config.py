"""
Storage configuration.

The backend is chosen explicitly: ``LOCAL`` never touches the network,
``REMOTE`` syncs with the shared document.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

import yaml

from .models import DEFAULT_DATA_FILENAME, DEFAULT_LEGACY_FILENAME, Credential
from .remote.api import DEFAULT_API_URL, DEFAULT_TIMEOUT
from .remote.credentials import DEFAULT_REQUIRED_SCOPE
from .resilience import RetryPolicy

DEFAULT_SYNC_COOLDOWN = 5.0  # seconds


class BackendKind(Enum):
    """Which backends the orchestrator may use.

    LOCAL: Local store only
    REMOTE: Local store plus the shared remote document
    """

    LOCAL = "local"
    REMOTE = "remote"


@dataclass
class StorageConfig:
    """Configuration for the sync orchestrator.

    Configuration can be provided directly, via environment variables,
    or from a YAML settings file.

    Environment Variables:
        TILDEPLAYER_BACKEND: "local" or "remote" (default: remote if a
            document ID is set, else local)
        TILDEPLAYER_GIST_ID: Remote document ID
        TILDEPLAYER_GITHUB_TOKEN: Bearer token (falls back to GITHUB_TOKEN)
        TILDEPLAYER_STORAGE_PATH: Local store directory
        TILDEPLAYER_API_URL: API base URL
        TILDEPLAYER_SYNC_COOLDOWN: Minimum seconds between syncs

    Attributes:
        backend: Explicit backend selection
        document_id: Remote document ID; when None in REMOTE mode the
            orchestrator reads it from the local store
        token: Bearer token; same fallback as document_id
        local_path: Directory for the local store
        api_base_url: Remote API base URL
        data_filename: File holding the collections inside the document
        legacy_filename: Pre-migration bare-array file
        required_scope: Token scope needed for writes
        request_timeout: Per-request timeout in seconds
        sync_cooldown: Fixed minimum interval between syncs in seconds
        retry: Retry policy for sync and remote writes
        local_max_value_bytes: Per-key local quota, None for unlimited
    """

    backend: BackendKind = BackendKind.LOCAL
    document_id: str | None = None
    token: str | None = None

    local_path: str | None = None

    api_base_url: str = DEFAULT_API_URL
    data_filename: str = DEFAULT_DATA_FILENAME
    legacy_filename: str = DEFAULT_LEGACY_FILENAME
    required_scope: str = DEFAULT_REQUIRED_SCOPE
    request_timeout: float = DEFAULT_TIMEOUT

    sync_cooldown: float = DEFAULT_SYNC_COOLDOWN
    retry: RetryPolicy = field(default_factory=RetryPolicy)

    local_max_value_bytes: int | None = 5 * 1024 * 1024

    @property
    def credential(self) -> Credential | None:
        """Construction-time credential, if a document ID was given."""
        if not self.document_id:
            return None
        return Credential(document_id=self.document_id, token=self.token)

    @classmethod
    def from_environment(cls) -> StorageConfig:
        """Create configuration from environment variables."""
        document_id = os.environ.get("TILDEPLAYER_GIST_ID") or None
        token = (
            os.environ.get("TILDEPLAYER_GITHUB_TOKEN") or os.environ.get("GITHUB_TOKEN") or None
        )

        backend_str = os.environ.get("TILDEPLAYER_BACKEND", "")
        try:
            backend = BackendKind(backend_str.lower())
        except ValueError:
            backend = BackendKind.REMOTE if document_id else BackendKind.LOCAL

        return cls(
            backend=backend,
            document_id=document_id,
            token=token,
            local_path=os.environ.get("TILDEPLAYER_STORAGE_PATH"),
            api_base_url=os.environ.get("TILDEPLAYER_API_URL", DEFAULT_API_URL),
            sync_cooldown=_float_env("TILDEPLAYER_SYNC_COOLDOWN", DEFAULT_SYNC_COOLDOWN),
        )

    @classmethod
    def from_settings_file(cls, path: Path | None = None) -> StorageConfig:
        """Create configuration from a YAML settings file.

        Configuration in ~/.tildeplayer/settings.yaml:

        ```yaml
        storage:
          backend: remote
          gist_id: "f308c693f01b8cf73beabd0dca6655b8"
          local_path: "~/.tildeplayer/storage"
          sync_cooldown: 10
          retry:
            max_attempts: 4
            backoff_base: 0.5
        ```

        A missing file or section yields the defaults.
        """
        path = path or Path.home() / ".tildeplayer" / "settings.yaml"
        settings = _load_yaml(path).get("storage") or {}

        document_id = settings.get("gist_id") or None
        backend_str = str(settings.get("backend", "")).lower()
        try:
            backend = BackendKind(backend_str)
        except ValueError:
            backend = BackendKind.REMOTE if document_id else BackendKind.LOCAL

        local_path = settings.get("local_path")
        if local_path:
            local_path = str(Path(local_path).expanduser())

        retry_settings = settings.get("retry") or {}
        retry = RetryPolicy(
            **{
                k: retry_settings[k]
                for k in ("max_attempts", "backoff_base", "backoff_max", "backoff_multiplier")
                if k in retry_settings
            }
        )

        return cls(
            backend=backend,
            document_id=document_id,
            token=settings.get("token") or None,
            local_path=local_path,
            api_base_url=settings.get("api_base_url", DEFAULT_API_URL),
            request_timeout=float(settings.get("request_timeout", DEFAULT_TIMEOUT)),
            sync_cooldown=float(settings.get("sync_cooldown", DEFAULT_SYNC_COOLDOWN)),
            retry=retry,
        )


def _float_env(name: str, default: float) -> float:
    try:
        return float(os.environ.get(name, default))
    except ValueError:
        return default


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with open(path, encoding="utf-8") as f:
            return yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError):
        return {}
