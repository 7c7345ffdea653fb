"""Sync controller: react to activation, edits, refreshes and link commands."""

import asyncio
from dataclasses import dataclass
from functools import partial

from loguru import logger

from figma_sync.config import CHANGE_WAIT_MS
from figma_sync.core.annotations.manager import AnnotationManager
from figma_sync.core.cache.remote_tree import RemoteTreeCache
from figma_sync.core.links.store import LinkStore
from figma_sync.core.stylesheet.selector_index import SelectorIndex
from figma_sync.core.tree.layers import LayerTree
from figma_sync.errors import NotExpandable, PersistenceFailed
from figma_sync.models.document import DocumentChange, FileSyncState, Layer, Link, Scope
from figma_sync.protocols import (
    ApiProtocol,
    DecorationRendererProtocol,
    StateStoreProtocol,
    TreeViewProtocol,
)


def _linked_scopes(scopes: dict[str, Scope], selectors: set[str]) -> dict[str, Scope]:
    return {sel: scopes[sel] for sel in selectors if sel in scopes}


@dataclass(frozen=True)
class _ActiveFile:
    file_uri: str
    state: FileSyncState
    links: LinkStore
    layers: LayerTree
    annotations: AnnotationManager


class SyncController:
    """Orchestrates the sync engine for the active stylesheet.

    All methods run on one asyncio event loop. Only remote API calls leave the
    loop thread. The controller is the only component that fetches remotely
    or triggers a full re-render.
    """

    def __init__(
        self,
        *,
        store: StateStoreProtocol,
        renderer: DecorationRendererProtocol,
        tree_view: TreeViewProtocol,
        api: ApiProtocol | None = None,
        change_wait_ms: int = CHANGE_WAIT_MS,
    ) -> None:
        self._store = store
        self._renderer = renderer
        self._tree_view = tree_view
        self._api = api
        self.change_wait_ms = change_wait_ms

        self.file_uri: str | None = None
        self.state: FileSyncState | None = None
        self.index = SelectorIndex()
        self.cache: RemoteTreeCache | None = None
        self.links: LinkStore | None = None
        self.layers: LayerTree | None = None
        self.annotations: AnnotationManager | None = None

        # Bumped on every activation and sync removal; stale fetch results compare against it.
        self._generation = 0
        # file_uri -> debounce timer; at most one pending pass per file
        self._pending: dict[str, asyncio.TimerHandle] = {}
        self._pending_changes: dict[str, DocumentChange] = {}

    def _require_active(self) -> _ActiveFile:
        if (
            self.file_uri is None
            or self.state is None
            or self.links is None
            or self.layers is None
            or self.annotations is None
        ):
            msg = "No active stylesheet"
            raise RuntimeError(msg)
        return _ActiveFile(self.file_uri, self.state, self.links, self.layers, self.annotations)

    # --- Activation ---

    def activate(self, file_uri: str, text: str) -> None:
        """Switch to a stylesheet: load its state and redraw everything."""
        # pending passes hold text older than the one being activated
        if self.file_uri is not None:
            self._cancel_pending(self.file_uri)
        self._cancel_pending(file_uri)
        if self.annotations is not None:
            self.annotations.dispose_all()

        self._generation += 1
        state = self._store.load_state(file_uri) or FileSyncState()
        self.file_uri = file_uri
        self.state = state

        links = LinkStore(state, partial(self._store.save_state, file_uri, state))
        self.links = links
        self.cache = RemoteTreeCache(state)
        self.layers = LayerTree(
            lambda: state.cached_document,
            lambda layer_id: link.selector if (link := links.get(layer_id)) else None,
        )
        self.index = SelectorIndex()
        self.index.parse(text)
        self.annotations = AnnotationManager(self._renderer, links, self.index)
        self.annotations.reconcile_all()
        self._tree_view.refresh(None)

        logger.debug(
            "Activated {} (file key {!r}, {} links)", file_uri, state.file_key, len(state.links)
        )

    # --- Remote ---

    async def refresh(self) -> bool:
        """Check the remote file and replace the cached tree if it changed.

        Returns:
            True if the cached tree was replaced.

        Raises:
            RemoteFetchFailed: The cached tree is left as it was.
        """
        active = self._require_active()
        file_uri, state = active.file_uri, active.state
        if not state.file_key or self._api is None:
            logger.debug("Not refreshing {}: no file key or API client", file_uri)
            return False

        generation = self._generation
        cache = RemoteTreeCache(state)
        new_document = await cache.fetch_newer(self._api, state.file_key)
        if generation != self._generation:
            logger.debug("Discarding fetch result for {}: file switched or sync removed", file_uri)
            return False
        if new_document is None:
            return False

        previous = (state.cached_document, state.file_display_name)
        cache.replace(new_document)
        try:
            self._store.save_state(file_uri, state)
        except PersistenceFailed:
            state.cached_document, state.file_display_name = previous
            raise
        self._tree_view.refresh(None)
        return True

    async def attach(self, file_key: str) -> bool:
        """Connect the active stylesheet to a remote file, then fetch it."""
        active = self._require_active()
        state = active.state
        previous = state.file_key
        state.file_key = file_key
        try:
            self._store.save_state(active.file_uri, state)
        except PersistenceFailed:
            state.file_key = previous
            raise
        return await self.refresh()

    # --- Document edits ---

    def on_document_changed(self, change: DocumentChange) -> None:
        """Schedule a re-parse, superseding any pass already pending for the file."""
        if change.file_uri != self.file_uri:
            logger.debug("Ignoring edit of inactive file {}", change.file_uri)
            return
        self._cancel_pending(change.file_uri)
        self._pending_changes[change.file_uri] = change
        loop = asyncio.get_running_loop()
        self._pending[change.file_uri] = loop.call_later(
            self.change_wait_ms / 1000, self._evaluate_change, change.file_uri
        )

    def _cancel_pending(self, file_uri: str) -> None:
        handle = self._pending.pop(file_uri, None)
        if handle is not None:
            handle.cancel()
        self._pending_changes.pop(file_uri, None)

    def _evaluate_change(self, file_uri: str) -> None:
        self._pending.pop(file_uri, None)
        change = self._pending_changes.pop(file_uri, None)
        if change is None or file_uri != self.file_uri:
            return
        active = self._require_active()

        linked = {link.selector for link in active.links.all()}
        before = _linked_scopes(self.index.scopes, linked)
        self.index.parse(change.document_text)
        token = self.index.token_at(change.start_line)
        if token not in linked and _linked_scopes(self.index.scopes, linked) == before:
            logger.debug(
                "Edit at line {} (in {!r}) leaves decorations as they are",
                change.start_line,
                token,
            )
            return
        logger.debug("Edit at line {} is inside {!r}", change.start_line, token)
        active.annotations.reconcile_changed()

    def flush_pending(self) -> None:
        """Run any pending re-parse now instead of waiting for its timer."""
        for file_uri, handle in list(self._pending.items()):
            handle.cancel()
            self._evaluate_change(file_uri)

    # --- Links ---

    def link_layer(self, layer_id: str, selector: str) -> Link | None:
        """Link a layer to a selector. An empty selector removes the link."""
        if not selector:
            self.unlink_layer(layer_id)
            return None
        active = self._require_active()

        layer_path = active.layers.path_to(layer_id)
        if layer_path is None:
            msg = f"Layer {layer_id!r} not found in the cached tree"
            raise ValueError(msg)

        link = Link(layer_id=layer_id, selector=selector, layer_path=tuple(layer_path))
        displaced = active.links.add_or_replace(link)
        for other_id in displaced:
            active.annotations.dispose_layer(other_id)
            self._tree_view.refresh(other_id)
        active.annotations.render_layer(layer_id)
        self._tree_view.refresh(layer_id)
        return link

    def unlink_layer(self, layer_id: str) -> None:
        active = self._require_active()
        active.links.remove(layer_id)
        active.annotations.dispose_layer(layer_id)
        self._tree_view.refresh(layer_id)

    def remove_sync(self) -> None:
        """Forget the remote file and every link of the active stylesheet."""
        active = self._require_active()
        file_uri, state = active.file_uri, active.state

        previous = vars(state).copy()
        state.clear()
        try:
            self._store.delete_state(file_uri)
        except PersistenceFailed:
            vars(state).update(previous)
            raise
        # a refresh still in flight must not write the old tree back
        self._generation += 1
        active.annotations.reconcile_all()
        self._tree_view.refresh(None)
        logger.info("Removed sync for {}", file_uri)

    # --- Tree view ---

    def get_roots(self) -> tuple[Layer, ...]:
        return self.layers.roots() if self.layers else ()

    def get_children(self, layer_id: str) -> tuple[Layer, ...]:
        if self.layers is None:
            return ()
        layer = self.layers.find(layer_id)
        if layer is None:
            return ()
        try:
            return self.layers.children_of(layer)
        except NotExpandable:
            logger.debug("Tree view asked for children of leaf {!r}", layer_id)
            return ()

    def status_text(self) -> str:
        if self.state is None or not self.state.file_key:
            return "Not connected to Figma"
        return f"Figma: {self.state.file_display_name or self.state.file_key}"
