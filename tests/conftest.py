"""
Shared test configuration and fixtures.

Provides an in-memory stand-in for the GitHub gist API that speaks the
same request/response shape as an aiohttp session, so the remote client
and the orchestrator can be exercised without network access.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any

import pytest

from tildeplayer_storage.config import BackendKind, StorageConfig
from tildeplayer_storage.local import LocalStore
from tildeplayer_storage.models import DEFAULT_DATA_FILENAME
from tildeplayer_storage.remote import GistClient
from tildeplayer_storage.resilience import RetryPolicy

API = "https://api.test"
RAW = "https://raw.test"

GIST_ID = "gist-abc"
TOKEN = "tok-good"


class DummyResp:
    """Async context manager mimicking an aiohttp response."""

    def __init__(self, status: int, data: Any = None, headers: dict | None = None, text: str | None = None):
        self.status = status
        self._data = data
        self._text = text
        self.headers = headers or {}

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def json(self, content_type=None):
        return self._data

    async def text(self):
        if self._text is not None:
            return self._text
        return json.dumps(self._data)


class FakeGitHub:
    """Scriptable in-memory gist API.

    ``gists`` maps document id -> {filename: content}. Responses queued
    with ``fail_next`` are returned before any simulated handling.
    """

    def __init__(self):
        self.gists: dict[str, dict[str, str]] = {}
        self.tokens: dict[str, tuple[str, str]] = {TOKEN: ("octocat", "gist, repo")}
        self.truncated: set[str] = set()
        self.calls: list[tuple[str, str, Any]] = []
        self.queued: list[Any] = []
        self.closed = False
        self._next_id = 1

    # Scripting helpers

    def add_gist(self, gist_id: str = GIST_ID, data: Any = None, filename: str = DEFAULT_DATA_FILENAME) -> None:
        files = self.gists.setdefault(gist_id, {})
        if data is not None:
            files[filename] = data if isinstance(data, str) else json.dumps(data)

    def document(self, gist_id: str = GIST_ID, filename: str = DEFAULT_DATA_FILENAME) -> dict:
        return json.loads(self.gists[gist_id][filename])

    def fail_next(
        self,
        status: int,
        headers: dict | None = None,
        times: int = 1,
        method: str | None = None,
    ) -> None:
        """Queue failing responses, optionally only for one HTTP method."""
        for _ in range(times):
            self.queued.append((method, DummyResp(status, {"message": "scripted"}, headers)))

    def raise_next(self, exc: Exception, method: str | None = None) -> None:
        self.queued.append((method, exc))

    def count(self, method: str, fragment: str = "") -> int:
        return sum(1 for m, url, _ in self.calls if m == method and fragment in url)

    @property
    def remote_calls(self) -> int:
        return len(self.calls)

    # aiohttp session surface

    def request(self, method, url, headers=None, json=None):
        self.calls.append((method, url, json))
        for i, (only, item) in enumerate(self.queued):
            if only is None or only == method:
                del self.queued[i]
                if isinstance(item, Exception):
                    raise item
                return item

        auth = (headers or {}).get("Authorization", "")
        token = auth[len("token "):] if auth.startswith("token ") else None
        if token is not None and token not in self.tokens:
            return DummyResp(401, {"message": "Bad credentials"})

        if url.startswith(RAW):
            gist_id, name = url[len(RAW) + 1:].split("/", 1)
            return DummyResp(200, text=self.gists[gist_id][name])

        path = url[len(API) + 1:]
        if path == "user":
            if token is None:
                return DummyResp(401, {"message": "Requires authentication"})
            return DummyResp(200, {"login": self.tokens[token][0]})
        if path.startswith("gists?"):
            scopes = self.tokens[token][1] if token else ""
            return DummyResp(200, [], {"X-OAuth-Scopes": scopes})
        if path == "gists" and method == "POST":
            if token is None:
                return DummyResp(401, {"message": "Requires authentication"})
            new_id = f"created-{self._next_id}"
            self._next_id += 1
            self.gists[new_id] = {n: f["content"] for n, f in json["files"].items()}
            return DummyResp(201, {"id": new_id})

        gist_id = path[len("gists/"):]
        if gist_id not in self.gists:
            return DummyResp(404, {"message": "Not Found"})
        if method == "GET":
            return DummyResp(200, self._gist_body(gist_id))
        if method == "PATCH":
            if token is None:
                return DummyResp(401, {"message": "Requires authentication"})
            for name, f in json["files"].items():
                self.gists[gist_id][name] = f["content"]
            return DummyResp(200, self._gist_body(gist_id))
        return DummyResp(405, {"message": "Method not allowed"})

    def _gist_body(self, gist_id: str) -> dict:
        files = {}
        for name, content in self.gists[gist_id].items():
            if name in self.truncated:
                files[name] = {
                    "content": content[:10],
                    "truncated": True,
                    "raw_url": f"{RAW}/{gist_id}/{name}",
                }
            else:
                files[name] = {"content": content, "truncated": False}
        return {"id": gist_id, "public": True, "owner": {"login": "octocat"}, "files": files}

    async def close(self):
        self.closed = True


@pytest.fixture
def fake_github() -> FakeGitHub:
    return FakeGitHub()


@pytest.fixture
async def gist_client(fake_github: FakeGitHub) -> AsyncIterator[GistClient]:
    client = GistClient(api_base_url=API, session=fake_github)
    yield client
    await client.close()


@pytest.fixture
def local_store(tmp_path: Path) -> LocalStore:
    return LocalStore(tmp_path / "store")


@pytest.fixture
def no_sleep(monkeypatch) -> list[float]:
    """Record retry delays instead of sleeping."""
    delays: list[float] = []

    async def fake_sleep(delay):
        delays.append(delay)

    monkeypatch.setattr("tildeplayer_storage.resilience.asyncio.sleep", fake_sleep)
    return delays


def remote_config(tmp_path: Path, **overrides: Any) -> StorageConfig:
    values: dict[str, Any] = {
        "backend": BackendKind.REMOTE,
        "document_id": GIST_ID,
        "token": TOKEN,
        "local_path": str(tmp_path / "store"),
        "api_base_url": API,
        "sync_cooldown": 5.0,
        "retry": RetryPolicy(max_attempts=2, backoff_base=0.0),
    }
    values.update(overrides)
    return StorageConfig(**values)


def track(track_id: int, title: str | None = None, artist: str = "Artist") -> dict[str, Any]:
    return {
        "id": track_id,
        "title": title or f"Song {track_id}",
        "artist": artist,
        "src": f"music/{track_id}.mp3",
        "mood": [],
        "genre": [],
    }
