"""Protocols for the collaborators the sync engine talks to."""

from typing import Any, Protocol, runtime_checkable

from figma_sync.models.document import FileSyncState, RemoteDocument, TextRange


@runtime_checkable
class ApiProtocol(Protocol):
    """Protocol for design-service clients. The credential is bound at construction."""

    def fetch_revision(self, file_key: str) -> str:
        """Return the current revision stamp of a remote file."""
        ...

    def fetch_document(self, file_key: str) -> RemoteDocument:
        """Download and parse the full remote file."""
        ...


@runtime_checkable
class StateStoreProtocol(Protocol):
    """Protocol for persisting per-stylesheet sync state."""

    def load_state(self, file_uri: str) -> FileSyncState | None:
        """Return the stored state, or None if this file was never synced."""
        ...

    def save_state(self, file_uri: str, state: FileSyncState) -> None:
        """Persist the state. Raises PersistenceFailed."""
        ...

    def delete_state(self, file_uri: str) -> None:
        """Forget everything stored for this file."""
        ...


@runtime_checkable
class TreeViewProtocol(Protocol):
    """Protocol for the host tree view showing layers."""

    def refresh(self, layer_id: str | None = None) -> None:
        """Redraw one layer, or the whole tree when layer_id is None."""
        ...


@runtime_checkable
class DecorationRendererProtocol(Protocol):
    """Protocol for the host's text decoration API."""

    def render(self, source_range: TextRange, hover_text: str, style_token: str) -> Any:
        """Show a decoration and return a handle for disposing it."""
        ...

    def dispose(self, handle: Any) -> None:
        """Remove a decoration previously returned by render()."""
        ...
