"""Annotation manager: keep stylesheet decorations in line with links and selectors."""

import io
from typing import Any

from loguru import logger

from figma_sync.config import LINKED_LAYER_STYLE
from figma_sync.core.links.store import LinkStore
from figma_sync.core.stylesheet.selector_index import SelectorIndex
from figma_sync.models.document import Decoration, Link
from figma_sync.protocols import DecorationRendererProtocol


def hover_text_for(layer_path: tuple[str, ...] | list[str]) -> str:
    """Render a layer breadcrumb as the markdown shown when hovering a selector.

    Each level is a nested bullet; the linked layer itself is bold.
    """
    out = io.StringIO()
    out.write("**Linked with Figma layer:**")
    for depth, name in enumerate(layer_path):
        bold = "**" if depth + 1 == len(layer_path) else ""
        indent = "\t" * depth
        out.write(f"\n{indent}* {bold}{name}{bold}")
    return out.getvalue()


class AnnotationManager:
    """Sole owner of the live decoration handles, one per linked layer.

    A layer is either decorated (its link resolves to a selector in the last
    parse) or not. Links that do not resolve stay in the store and come back
    as soon as their selector reappears.
    """

    def __init__(
        self,
        renderer: DecorationRendererProtocol,
        links: LinkStore,
        index: SelectorIndex,
        *,
        style_token: str = LINKED_LAYER_STYLE,
    ) -> None:
        self._renderer = renderer
        self._links = links
        self._index = index
        self._style_token = style_token
        # layer_id -> (renderer handle, what it shows)
        self._handles: dict[str, tuple[Any, Decoration]] = {}

    def decorations(self) -> list[Decoration]:
        return [decoration for _handle, decoration in self._handles.values()]

    def _resolve(self, link: Link) -> Decoration | None:
        scope = self._index.get_scope(link.selector)
        if scope is None:
            return None
        return Decoration(
            layer_id=link.layer_id,
            selector=link.selector,
            source_range=scope.source_range,
            hover_text=hover_text_for(link.layer_path),
        )

    def dispose_layer(self, layer_id: str) -> None:
        entry = self._handles.pop(layer_id, None)
        if entry is not None:
            self._renderer.dispose(entry[0])

    def render_layer(self, layer_id: str) -> Decoration | None:
        """(Re)draw the decoration of one layer. Returns None if nothing is shown."""
        self.dispose_layer(layer_id)
        link = self._links.get(layer_id)
        if link is None:
            return None
        decoration = self._resolve(link)
        if decoration is None:
            logger.debug("Selector {!r} of layer {!r} not in stylesheet", link.selector, layer_id)
            return None
        handle = self._renderer.render(decoration.source_range, decoration.hover_text, self._style_token)
        self._handles[layer_id] = (handle, decoration)
        return decoration

    def dispose_all(self) -> None:
        for layer_id in list(self._handles):
            self.dispose_layer(layer_id)

    def reconcile_all(self) -> None:
        """Dispose everything, then redraw every link that resolves."""
        self.dispose_all()
        for link in self._links.all():
            self.render_layer(link.layer_id)
        logger.debug("Reconciled: {} of {} links shown", len(self._handles), len(self._links.all()))

    def reconcile_changed(self) -> list[str]:
        """Redraw only the layers whose decoration no longer matches the last parse.

        Returns:
            The layer ids that were touched.
        """
        affected: list[str] = []
        for layer_id in list(self._handles):
            if self._links.get(layer_id) is None:
                self.dispose_layer(layer_id)
                affected.append(layer_id)

        for link in self._links.all():
            entry = self._handles.get(link.layer_id)
            current = entry[1] if entry else None
            if current != self._resolve(link):
                self.render_layer(link.layer_id)
                affected.append(link.layer_id)

        if affected:
            logger.debug("Re-rendered {} decorations: {!r}", len(affected), affected)
        return affected
