"""
GitHub REST API transport.

Wraps an aiohttp session with the headers the document API expects and
turns HTTP failures into the storage error taxonomy.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

import aiohttp

from ..exceptions import (
    DocumentNotFoundError,
    ForbiddenError,
    NetworkError,
    RateLimitedError,
    RemoteStoreError,
    UnauthorizedError,
)
from ..logging_utils import get_storage_logger

logger = get_storage_logger("remote")

DEFAULT_API_URL = "https://api.github.com"
DEFAULT_TIMEOUT = 30.0

ACCEPT_HEADER = "application/vnd.github.v3+json"
USER_AGENT = "tildeplayer-storage"

RATE_LIMIT_REMAINING_HEADER = "X-RateLimit-Remaining"
RATE_LIMIT_RESET_HEADER = "X-RateLimit-Reset"
OAUTH_SCOPES_HEADER = "X-OAuth-Scopes"


def get_header(headers: Mapping[str, str] | None, name: str) -> str | None:
    """Case-insensitive header lookup that also works on plain dicts."""
    if not headers:
        return None
    value = headers.get(name)
    if value is not None:
        return value
    lowered = name.lower()
    for key, val in headers.items():
        if key.lower() == lowered:
            return val
    return None


def _parse_reset(value: str | None) -> datetime | None:
    if value is None:
        return None
    try:
        return datetime.fromtimestamp(int(value), UTC)
    except (ValueError, TypeError, OverflowError):
        return None


def classify_response(
    status: int,
    headers: Mapping[str, str] | None,
    operation: str = "API request",
    document_id: str | None = None,
) -> RemoteStoreError:
    """Map a failed HTTP response to a storage error.

    401 -> Unauthorized; 403 -> RateLimited when the remaining quota header
    reads zero, otherwise Forbidden; 404 -> NotFound; anything else ->
    Network.
    """
    if status == 401:
        return UnauthorizedError(
            "GitHub authentication failed (401). The token may be invalid or expired.",
            status=status,
            document_id=document_id,
        )
    if status == 403:
        if get_header(headers, RATE_LIMIT_REMAINING_HEADER) == "0":
            return RateLimitedError(
                "GitHub API rate limit exceeded. Try again later or add a personal access token.",
                reset_at=_parse_reset(get_header(headers, RATE_LIMIT_RESET_HEADER)),
                status=status,
                document_id=document_id,
            )
        return ForbiddenError(
            "GitHub API access forbidden (403). Check that the token has the correct "
            "permissions and can read this document.",
            status=status,
            document_id=document_id,
        )
    if status == 404:
        return DocumentNotFoundError(
            "Document not found (404). Check the document ID or create a new document.",
            status=status,
            document_id=document_id,
        )
    return NetworkError(
        f"GitHub API error during {operation}: HTTP {status}",
        status=status,
        document_id=document_id,
    )


class GitHubApiClient:
    """Minimal async client for the GitHub REST API.

    The session can be injected (shared with the host application, or a
    fake in tests). When none is given, one is created on first use and
    closed by ``close()``.
    """

    def __init__(
        self,
        api_base_url: str = DEFAULT_API_URL,
        session: aiohttp.ClientSession | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.api_base_url = api_base_url.rstrip("/")
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
            self._owns_session = True
        return self._session

    def url(self, path: str) -> str:
        return f"{self.api_base_url}/{path.lstrip('/')}"

    @staticmethod
    def headers(token: str | None) -> dict[str, str]:
        headers = {
            "Accept": ACCEPT_HEADER,
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
        }
        if token:
            headers["Authorization"] = f"token {token}"
        return headers

    async def request(
        self,
        method: str,
        url: str,
        token: str | None = None,
        payload: dict[str, Any] | None = None,
        operation: str = "API request",
        document_id: str | None = None,
        raw: bool = False,
    ) -> tuple[Any, Mapping[str, str]]:
        """Issue one HTTP request.

        Args:
            method: HTTP method
            url: Absolute URL
            token: Bearer token, if any
            payload: JSON body
            operation: Description used in error messages
            document_id: Document the call targets, for error context
            raw: Return the body as text instead of parsed JSON

        Returns:
            (body, response headers)

        Raises:
            RemoteStoreError: Classified HTTP or transport failure
        """
        session = self._get_session()
        try:
            async with session.request(
                method,
                url,
                headers=self.headers(token),
                json=payload,
            ) as resp:
                if resp.status >= 400:
                    raise classify_response(resp.status, resp.headers, operation, document_id)
                if raw:
                    return await resp.text(), resp.headers
                if resp.status == 204:
                    return None, resp.headers
                return await resp.json(content_type=None), resp.headers
        except RemoteStoreError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise NetworkError(
                f"Network error during {operation}: {e}",
                document_id=document_id,
                cause=e,
            ) from e

    async def close(self) -> None:
        """Close the HTTP session if this client created it."""
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> GitHubApiClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()
