"""
JSON file operations for the local store.

Provides:
- Atomic writes using temp file + rename
- Reads that distinguish a missing file from an unreadable one
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Any

import aiofiles
import aiofiles.os

from ..exceptions import StorageIOError


async def ensure_directory(path: Path) -> None:
    """Ensure directory exists, creating if necessary.

    Args:
        path: Directory path to ensure exists
    """
    try:
        await aiofiles.os.makedirs(path, exist_ok=True)
    except OSError as e:
        raise StorageIOError("create_directory", str(path), e) from e


async def read_json(path: Path) -> Any:
    """Read a JSON file.

    Args:
        path: Path to JSON file

    Returns:
        Parsed JSON value, or None if the file doesn't exist or is empty
    """
    try:
        if not await aiofiles.os.path.exists(path):
            return None
        async with aiofiles.open(path, encoding="utf-8") as f:
            content = await f.read()
            return json.loads(content) if content.strip() else None
    except json.JSONDecodeError as e:
        raise StorageIOError("parse_json", str(path), e) from e
    except OSError as e:
        raise StorageIOError("read_json", str(path), e) from e


async def write_json_atomic(path: Path, data: Any, max_bytes: int | None = None) -> None:
    """Write JSON file atomically using temp file + rename.

    Serialization happens before any file is touched, so an
    unserializable or oversized value leaves the previous content in place.

    Args:
        path: Target path for JSON file
        data: Data to serialize as JSON
        max_bytes: Optional size quota for the serialized value
    """
    try:
        payload = json.dumps(data, indent=2, default=_json_serializer)
    except (TypeError, ValueError) as e:
        raise StorageIOError("serialize_json", str(path), e) from e

    if max_bytes is not None and len(payload.encode("utf-8")) > max_bytes:
        raise StorageIOError("quota", str(path), ValueError(f"value exceeds {max_bytes} bytes"))

    await ensure_directory(path.parent)

    fd, temp_path = tempfile.mkstemp(
        dir=path.parent,
        prefix=".tmp_",
        suffix=".json",
    )
    try:
        os.close(fd)
        async with aiofiles.open(temp_path, "w", encoding="utf-8") as f:
            await f.write(payload)
            await f.flush()
            os.fsync(f.fileno())

        # Atomic rename
        await aiofiles.os.replace(temp_path, path)
    except Exception as e:
        try:
            await aiofiles.os.remove(temp_path)
        except OSError:
            pass
        raise StorageIOError("write_json", str(path), e) from e


async def remove_file(path: Path) -> bool:
    """Remove a file if it exists.

    Args:
        path: Path to remove

    Returns:
        True if file was removed, False if it didn't exist
    """
    try:
        if await aiofiles.os.path.exists(path):
            await aiofiles.os.remove(path)
            return True
        return False
    except OSError as e:
        raise StorageIOError("remove", str(path), e) from e


async def list_json_stems(path: Path) -> list[str]:
    """List the stems of ``*.json`` files in a directory.

    Args:
        path: Directory to list

    Returns:
        Sorted file stems, empty if the directory doesn't exist
    """
    try:
        if not await aiofiles.os.path.exists(path):
            return []
        entries = await aiofiles.os.listdir(path)
    except OSError as e:
        raise StorageIOError("list_directory", str(path), e) from e
    return sorted(e[: -len(".json")] for e in entries if e.endswith(".json") and not e.startswith("."))


def _json_serializer(obj: Any) -> Any:
    """Custom JSON serializer for types not handled by default.

    Args:
        obj: Object to serialize

    Returns:
        JSON-serializable representation
    """
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    if isinstance(obj, (set, frozenset)):
        return sorted(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")
