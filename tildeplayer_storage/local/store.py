"""
Local key-value store.

Each key is stored as ``{base_path}/{key}.json``. The store is the
durable fallback for every collection, so it never raises past its
boundary: failures are logged and reported as ``False`` / ``None``.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any

from ..exceptions import LocalStorageFailure
from ..logging_utils import get_storage_logger
from .file_ops import list_json_stems, read_json, remove_file, write_json_atomic

logger = get_storage_logger("local")

_KEY_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")

DEFAULT_MAX_VALUE_BYTES = 5 * 1024 * 1024


class LocalStore:
    """Flat key -> JSON value store on the client device.

    Directory structure:
    {base_path}/
      tracks.json
      playlist.json
      approvedTracks.json
      gist-id.json
      github-token.json
    """

    def __init__(
        self,
        base_path: str | Path | None = None,
        max_value_bytes: int | None = DEFAULT_MAX_VALUE_BYTES,
    ) -> None:
        """Initialize the local store.

        Args:
            base_path: Directory holding the key files.
                Defaults to ~/.tildeplayer/storage
            max_value_bytes: Per-key size quota, None for unlimited
        """
        if base_path:
            self.base_path = Path(base_path)
        else:
            self.base_path = Path.home() / ".tildeplayer" / "storage"
        self.max_value_bytes = max_value_bytes

    def _key_file(self, key: str) -> Path:
        if not _KEY_PATTERN.match(key):
            raise LocalStorageFailure("validate_key", key, ValueError("invalid key"))
        return self.base_path / f"{key}.json"

    async def get(self, key: str) -> Any | None:
        """Return the stored value, or None if missing or unreadable."""
        try:
            return await read_json(self._key_file(key))
        except LocalStorageFailure as e:
            logger.warning(f"Treating {key} as missing: {e.message} ({e.details.get('cause')})")
            return None

    async def set(self, key: str, value: Any) -> bool:
        """Store a value. Returns False (and logs) on any failure."""
        try:
            await write_json_atomic(self._key_file(key), value, max_bytes=self.max_value_bytes)
        except LocalStorageFailure as e:
            logger.warning(f"Failed to save {key} locally: {e.message} ({e.details.get('cause')})")
            return False
        return True

    async def remove(self, key: str) -> bool:
        """Delete a key. Returns True if it existed and was removed."""
        try:
            return await remove_file(self._key_file(key))
        except LocalStorageFailure as e:
            logger.warning(f"Failed to remove {key} locally: {e.message}")
            return False

    async def keys(self) -> list[str]:
        """List stored keys."""
        try:
            return await list_json_stems(self.base_path)
        except LocalStorageFailure as e:
            logger.warning(f"Failed to list local keys: {e.message}")
            return []

    async def close(self) -> None:
        """Close storage (no-op for file storage)."""
        pass
