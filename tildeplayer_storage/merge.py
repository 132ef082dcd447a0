"""
Collection merge engine.

One primitive, ``merge_collections``, serves both call sites:

- local/remote reconciliation (base = local, incoming = remote)
- approved -> main promotion (base = tracks, incoming = approvedTracks)

It is an order-preserving union where the base wins ties. A record is a
duplicate if it matches any record already in the result by id or by
(title, artist).
"""

from __future__ import annotations

from collections.abc import Iterable

from .models import Track


def records_match(a: Track, b: Track) -> bool:
    """True if two records share an id or a (title, artist) pair."""
    return a.track_id == b.track_id or a.natural_key == b.natural_key


class _IdentityIndex:
    """Tracks the ids and natural keys already present in a merge result."""

    def __init__(self, tracks: Iterable[Track] = ()) -> None:
        self._ids: set = set()
        self._keys: set[tuple[str, str]] = set()
        for track in tracks:
            self.add(track)

    def add(self, track: Track) -> None:
        self._ids.add(track.track_id)
        self._keys.add(track.natural_key)

    def __contains__(self, track: Track) -> bool:
        return track.track_id in self._ids or track.natural_key in self._keys


def merge_collections(base: list[Track], incoming: list[Track]) -> list[Track]:
    """Union of two collections, base first, skipping duplicates.

    Args:
        base: Collection whose records and order win
        incoming: Records appended when not already present

    Returns:
        New list; neither argument is modified. ``merge(a, [])`` is ``a``
        unchanged and ``merge([], b)`` is a deduplicated copy of ``b``.
    """
    if not incoming:
        return list(base)

    result: list[Track] = []
    seen = _IdentityIndex()
    for track in [*base, *incoming]:
        if track in seen:
            continue
        result.append(track)
        seen.add(track)
    return result


def promote_approved(tracks: list[Track], approved: list[Track]) -> tuple[list[Track], bool]:
    """Make sure every approved record is in the main collection.

    Returns:
        (promoted collection, whether anything was added)
    """
    promoted = merge_collections(tracks, approved)
    return promoted, len(promoted) != len(tracks)


def prune_pending(pending: list[Track], approved: list[Track]) -> tuple[list[Track], bool]:
    """Drop pending records that have already been approved.

    Returns:
        (remaining pending records, whether anything was removed)
    """
    approved_index = _IdentityIndex(approved)
    remaining = [t for t in pending if t not in approved_index]
    return remaining, len(remaining) != len(pending)
