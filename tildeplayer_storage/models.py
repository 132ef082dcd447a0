"""
Track records, collections and the remote document schema.

A collection is an ordered list of tracks; order drives playback and
display, so every helper here preserves it.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from .exceptions import MalformedDocumentError
from .logging_utils import get_storage_logger

logger = get_storage_logger("models")

# Collection names
TRACKS = "tracks"
PLAYLIST = "playlist"
APPROVED_TRACKS = "approvedTracks"
PENDING_TRACKS = "pendingTracks"

COLLECTION_KEYS = frozenset({TRACKS, PLAYLIST, APPROVED_TRACKS, PENDING_TRACKS})

# Credential keys in the local store
GIST_ID_KEY = "gist-id"
GITHUB_TOKEN_KEY = "github-token"

LAST_UPDATED_KEY = "lastUpdated"

DEFAULT_DATA_FILENAME = "tildeplayer_data.json"
DEFAULT_LEGACY_FILENAME = "tracks.json"


class Duration(Enum):
    """Length bucket of a track."""

    SHORT = "short"
    MEDIUM = "medium"
    LONG = "long"
    EXTENDED = "extended"


@dataclass
class Track:
    """A single track record.

    Identity is ``track_id``. ``(title, artist)`` is a secondary identity
    used when two writers assigned ids independently.

    Attributes:
        track_id: Caller-assigned unique id
        title: Track title
        artist: Performing artist
        src: Path or URI of the audio file
        fallback_src: Alternate URI tried when ``src`` fails
        album_art: Cover image URI
        mood: Mood tags
        genre: Genre tags
        duration: Length bucket, None when absent or unrecognised
        extra: Unknown fields, kept so a round trip does not drop them
    """

    track_id: int
    title: str
    artist: str
    src: str = ""
    fallback_src: str | None = None
    album_art: str | None = None
    mood: frozenset[str] = field(default_factory=frozenset)
    genre: frozenset[str] = field(default_factory=frozenset)
    duration: Duration | None = None
    extra: dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def natural_key(self) -> tuple[str, str]:
        return (self.title, self.artist)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the JSON shape stored locally and remotely."""
        data: dict[str, Any] = dict(self.extra)
        data.update(
            {
                "id": self.track_id,
                "title": self.title,
                "artist": self.artist,
                "src": self.src,
                "mood": sorted(self.mood),
                "genre": sorted(self.genre),
            }
        )
        if self.fallback_src is not None:
            data["fallbackSrc"] = self.fallback_src
        if self.album_art is not None:
            data["albumArt"] = self.album_art
        if self.duration is not None:
            data["duration"] = self.duration.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Track:
        """Deserialize from a stored dictionary."""
        if "id" not in data:
            raise ValueError("track record has no id")

        known = {
            "id", "title", "artist", "src", "fallbackSrc", "albumArt",
            "mood", "genre", "duration",
        }
        extra = {k: v for k, v in data.items() if k not in known}

        duration: Duration | None = None
        raw_duration = data.get("duration")
        if raw_duration is not None:
            try:
                duration = Duration(raw_duration)
            except ValueError:
                # Keep the raw value so it is written back unchanged
                extra["duration"] = raw_duration

        return cls(
            track_id=data["id"],
            title=data.get("title", ""),
            artist=data.get("artist", ""),
            src=data.get("src", ""),
            fallback_src=data.get("fallbackSrc"),
            album_art=data.get("albumArt"),
            mood=frozenset(_as_tags(data.get("mood"))),
            genre=frozenset(_as_tags(data.get("genre"))),
            duration=duration,
            extra=extra,
        )


def _as_tags(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return [str(v) for v in value]


def tracks_from_json(items: Any) -> list[Track]:
    """Parse a stored collection, skipping entries that are not track records."""
    if not isinstance(items, list):
        return []

    tracks: list[Track] = []
    for item in items:
        if isinstance(item, Track):
            tracks.append(item)
            continue
        if not isinstance(item, dict):
            logger.warning(f"Skipping non-object collection entry: {item!r}")
            continue
        try:
            tracks.append(Track.from_dict(item))
        except (ValueError, TypeError) as e:
            logger.warning(f"Skipping invalid track record: {e}")
    return tracks


def tracks_to_json(tracks: list[Track]) -> list[dict[str, Any]]:
    return [t.to_dict() for t in tracks]


@dataclass
class Credential:
    """Remote document address plus optional bearer token."""

    document_id: str
    token: str | None = None

    @property
    def can_write(self) -> bool:
        return bool(self.document_id and self.token)

    def __repr__(self) -> str:
        token = "set" if self.token else "none"
        return f"Credential(document_id={self.document_id!r}, token={token})"


@dataclass
class RemoteDocument:
    """The shared document holding every synced collection.

    Attributes:
        data: Collection name -> stored JSON value (``lastUpdated`` excluded)
        last_updated: Timestamp of the last write, if any
        file_present: Whether the data file exists in the document
        needs_migration: Content came from the legacy file or a malformed
            data file and must be rewritten in the current schema
        owner: Document owner login, when reported
        public: Whether the document is public, when reported
    """

    data: dict[str, Any] = field(default_factory=dict)
    last_updated: str | None = None
    file_present: bool = False
    needs_migration: bool = False
    owner: str | None = None
    public: bool | None = None

    def collection(self, key: str) -> list[Track] | None:
        """Return a collection as tracks, or None if the document lacks it."""
        if key not in self.data:
            return None
        return tracks_from_json(self.data[key])

    def with_value(self, key: str, value: Any) -> RemoteDocument:
        """Copy of this document with one key replaced."""
        data = dict(self.data)
        data[key] = value
        return RemoteDocument(
            data=data,
            last_updated=self.last_updated,
            file_present=self.file_present,
            needs_migration=self.needs_migration,
            owner=self.owner,
            public=self.public,
        )

    def to_content(self) -> str:
        """Serialize for writing; stamps a fresh ``lastUpdated``."""
        self.last_updated = datetime.now(UTC).isoformat()
        body = dict(self.data)
        body[LAST_UPDATED_KEY] = self.last_updated
        return json.dumps(body, indent=2, default=_json_default)

    @classmethod
    def from_gist(
        cls,
        payload: dict[str, Any],
        data_filename: str = DEFAULT_DATA_FILENAME,
        legacy_filename: str = DEFAULT_LEGACY_FILENAME,
    ) -> RemoteDocument:
        """Build a document from a document-API response body.

        A missing data file yields an empty document. A legacy bare-array
        file is read as ``tracks`` and flagged for migration. Malformed
        content is logged and treated as empty, also flagged for migration.
        """
        files = payload.get("files") or {}
        owner_info = payload.get("owner")
        owner = owner_info.get("login") if isinstance(owner_info, dict) else owner_info
        doc = cls(owner=owner, public=payload.get("public"))

        if data_filename in files:
            doc.file_present = True
            content = (files[data_filename] or {}).get("content")
            try:
                parsed = _parse_content(data_filename, content)
            except MalformedDocumentError as e:
                logger.warning(f"{e.message}; treating document as empty")
                doc.needs_migration = True
                return doc

            if isinstance(parsed, list):
                doc.data = {TRACKS: parsed}
                doc.needs_migration = True
            else:
                doc.last_updated = parsed.pop(LAST_UPDATED_KEY, None)
                doc.data = parsed
            return doc

        if legacy_filename in files:
            content = (files[legacy_filename] or {}).get("content")
            try:
                parsed = _parse_content(legacy_filename, content)
            except MalformedDocumentError as e:
                logger.warning(f"{e.message}; ignoring legacy file")
                return doc
            if isinstance(parsed, dict):
                parsed = parsed.get(TRACKS, [])
            doc.data = {TRACKS: parsed if isinstance(parsed, list) else []}
            doc.needs_migration = True
            logger.info(f"Read legacy {legacy_filename}; will migrate to {data_filename}")

        return doc


def _parse_content(filename: str, content: Any) -> dict[str, Any] | list[Any]:
    if not isinstance(content, str) or not content.strip():
        raise MalformedDocumentError(filename, "empty content")
    try:
        parsed = json.loads(content)
    except json.JSONDecodeError as e:
        raise MalformedDocumentError(filename, f"invalid JSON ({e.msg})") from e
    if not isinstance(parsed, (dict, list)):
        raise MalformedDocumentError(filename, f"unexpected {type(parsed).__name__}")
    return parsed


def _json_default(obj: Any) -> Any:
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    if isinstance(obj, (set, frozenset)):
        return sorted(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")
