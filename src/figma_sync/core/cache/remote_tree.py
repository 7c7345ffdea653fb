"""Remote tree cache: decides when a stored design tree is stale."""

import asyncio

from loguru import logger

from figma_sync.errors import RemoteFetchFailed
from figma_sync.models.document import FileSyncState, RemoteDocument
from figma_sync.protocols import ApiProtocol


def should_refetch(cached: RemoteDocument | None, remote_revision_stamp: str) -> bool:
    """Check if the cached document is missing or older than the remote one."""
    if cached is None:
        return True
    return cached.revision_stamp != remote_revision_stamp


class RemoteTreeCache:
    """Owns the cached RemoteDocument of one FileSyncState.

    The state is held by reference, so a refresh that completes after other
    mutations still lands on the same record.
    """

    def __init__(self, state: FileSyncState) -> None:
        self.state = state

    @property
    def document(self) -> RemoteDocument | None:
        return self.state.cached_document

    def replace(self, new_document: RemoteDocument) -> None:
        """Swap in a new document in one assignment."""
        self.state.cached_document = new_document
        if new_document.name:
            self.state.file_display_name = new_document.name
        logger.info(
            "Cached {!r} at revision {!r} ({} root layers)",
            new_document.name, new_document.revision_stamp, len(new_document.root_nodes),
        )

    async def fetch_newer(self, api: ApiProtocol, file_key: str) -> RemoteDocument | None:
        """Download the remote file if it differs from the cached one.

        Asks for the revision stamp first and only downloads the tree when it
        differs. API calls run in a worker thread; nothing is mutated here.

        Returns:
            The newer document, or None if the cache is up to date.

        Raises:
            RemoteFetchFailed: The API call failed.
        """
        try:
            remote_stamp = await asyncio.to_thread(api.fetch_revision, file_key)
            if not should_refetch(self.document, remote_stamp):
                logger.debug("File {!r} up to date at revision {!r}", file_key, remote_stamp)
                return None

            stored = self.document.revision_stamp if self.document else "(not stored)"
            logger.debug(
                "Fetching file {!r}, revision: remote {!r}, stored {!r}",
                file_key, remote_stamp, stored,
            )
            new_document = await asyncio.to_thread(api.fetch_document, file_key)
        except Exception as e:
            raise RemoteFetchFailed(f"Could not fetch file {file_key!r}: {e}", cause=e) from e

        # The file may have been saved again between the two calls.
        if not should_refetch(self.document, new_document.revision_stamp):
            return None
        return new_document
