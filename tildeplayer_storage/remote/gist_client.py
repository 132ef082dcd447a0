"""
Remote document store client.

All synced collections live in one JSON file inside one gist. Writes
are always read-merge-write: the current document is fetched, the keys
being written are replaced, and the whole file is patched back, so a
write to one collection never drops another client's collections.
"""

from __future__ import annotations

from typing import Any

import aiohttp

from ..exceptions import NetworkError
from ..logging_utils import StorageLoggerAdapter, get_storage_logger
from ..models import (
    APPROVED_TRACKS,
    DEFAULT_DATA_FILENAME,
    DEFAULT_LEGACY_FILENAME,
    PENDING_TRACKS,
    PLAYLIST,
    TRACKS,
    Credential,
    RemoteDocument,
)
from .api import DEFAULT_API_URL, DEFAULT_TIMEOUT, GitHubApiClient

logger = get_storage_logger("gist")

DOCUMENT_DESCRIPTION = "TildePlayer Data Storage"

INITIAL_COLLECTIONS = (TRACKS, APPROVED_TRACKS, PENDING_TRACKS, PLAYLIST)


class GistClient(GitHubApiClient):
    """Fetches and patches the shared document.

    Example:
        >>> async with GistClient() as client:
        ...     doc = await client.fetch_document(Credential("f308c6...", token))
        ...     await client.write_values(credential, {"playlist": [...]})
    """

    def __init__(
        self,
        api_base_url: str = DEFAULT_API_URL,
        session: aiohttp.ClientSession | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        data_filename: str = DEFAULT_DATA_FILENAME,
        legacy_filename: str = DEFAULT_LEGACY_FILENAME,
    ) -> None:
        super().__init__(api_base_url=api_base_url, session=session, timeout=timeout)
        self.data_filename = data_filename
        self.legacy_filename = legacy_filename

    def _log(self, credential: Credential) -> StorageLoggerAdapter:
        return StorageLoggerAdapter(logger, {"document_id": credential.document_id})

    async def fetch_document(self, credential: Credential) -> RemoteDocument:
        """Fetch and parse the whole document.

        Raises:
            RemoteStoreError: Unauthorized, Forbidden, RateLimited,
                NotFound or Network
        """
        body, _ = await self.request(
            "GET",
            self.url(f"gists/{credential.document_id}"),
            token=credential.token,
            operation="fetching document",
            document_id=credential.document_id,
        )
        body = body or {}

        files = body.get("files") or {}
        data_file = files.get(self.data_filename)
        if isinstance(data_file, dict) and data_file.get("truncated") and data_file.get("raw_url"):
            self._log(credential).info(f"{self.data_filename} is truncated; fetching raw content")
            content, _ = await self.request(
                "GET",
                data_file["raw_url"],
                token=credential.token,
                operation="fetching truncated content",
                document_id=credential.document_id,
                raw=True,
            )
            data_file["content"] = content

        return RemoteDocument.from_gist(body, self.data_filename, self.legacy_filename)

    async def patch_document(
        self,
        credential: Credential,
        files: dict[str, str],
        description: str | None = None,
    ) -> None:
        """Replace the given files in the document.

        Args:
            credential: Target document and token
            files: Filename -> full file content
            description: Optional new document description
        """
        payload: dict[str, Any] = {
            "files": {name: {"content": content} for name, content in files.items()}
        }
        if description is not None:
            payload["description"] = description

        await self.request(
            "PATCH",
            self.url(f"gists/{credential.document_id}"),
            token=credential.token,
            payload=payload,
            operation="updating document",
            document_id=credential.document_id,
        )

    async def write_values(
        self,
        credential: Credential,
        values: dict[str, Any],
        removed: tuple[str, ...] = (),
    ) -> RemoteDocument:
        """Read-merge-write a set of keys.

        Keys not named in ``values`` or ``removed`` are written back as
        they were read. Content read from the legacy file is written
        under the current filename; the legacy file itself is left alone.

        Returns:
            The document as written
        """
        current = await self.fetch_document(credential)

        data = dict(current.data)
        data.update(values)
        for key in removed:
            data.pop(key, None)

        document = RemoteDocument(
            data=data,
            file_present=True,
            owner=current.owner,
            public=current.public,
        )
        await self.patch_document(credential, {self.data_filename: document.to_content()})

        if current.needs_migration:
            self._log(credential).info(f"Migrated document content to {self.data_filename}")
        self._log(credential).debug(f"Wrote keys {sorted(values)} (removed {list(removed)})")
        return document

    async def write_value(self, credential: Credential, key: str, value: Any) -> RemoteDocument:
        """Read-merge-write a single key."""
        return await self.write_values(credential, {key: value})

    async def ensure_data_file(self, credential: Credential) -> bool:
        """Add the data file to an existing document if it is missing.

        Returns:
            True if the document had to be written
        """
        current = await self.fetch_document(credential)
        if current.file_present and not current.needs_migration:
            return False

        data = {key: [] for key in INITIAL_COLLECTIONS}
        data.update(current.data)
        document = RemoteDocument(data=data, file_present=True)
        await self.patch_document(
            credential,
            {self.data_filename: document.to_content()},
            description=DOCUMENT_DESCRIPTION,
        )
        self._log(credential).info(f"Initialized {self.data_filename} in existing document")
        return True

    async def create_document(self, token: str, public: bool = True) -> str:
        """Create a new document holding empty collections.

        Returns:
            The new document ID
        """
        document = RemoteDocument(data={key: [] for key in INITIAL_COLLECTIONS})
        body, _ = await self.request(
            "POST",
            self.url("gists"),
            token=token,
            payload={
                "description": DOCUMENT_DESCRIPTION,
                "public": public,
                "files": {self.data_filename: {"content": document.to_content()}},
            },
            operation="creating document",
        )
        document_id = (body or {}).get("id")
        if not document_id:
            raise NetworkError("Document API returned no id for the created document")
        logger.info(f"Created new document {document_id}")
        return document_id
