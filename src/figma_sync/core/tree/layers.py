"""Layer tree: lazy, addressable view over the cached design tree."""

from collections.abc import Callable, Iterator

from figma_sync.errors import NotExpandable
from figma_sync.models.document import Layer, RawNode, RemoteDocument, wrap_node


class LayerTree:
    """Wrap RawNodes into Layers on demand.

    Nothing is materialized up front: ``children_of`` wraps one level at a time
    and never caches the Layers it returns.
    """

    def __init__(
        self,
        document_getter: Callable[[], RemoteDocument | None],
        selector_for: Callable[[str], str | None] = lambda _layer_id: None,
    ) -> None:
        self._document_getter = document_getter
        self._selector_for = selector_for

    def _wrap(self, node: RawNode) -> Layer:
        return wrap_node(node, self._selector_for(node.id))

    def _root_nodes(self) -> tuple[RawNode, ...]:
        document = self._document_getter()
        return document.root_nodes if document else ()

    def roots(self) -> tuple[Layer, ...]:
        return tuple(self._wrap(node) for node in self._root_nodes())

    def children_of(self, layer: Layer) -> tuple[Layer, ...]:
        """Return the wrapped children of an expandable layer, in display order.

        Raises:
            NotExpandable: The layer is a leaf.
        """
        if not layer.expandable:
            raise NotExpandable(f"Layer {layer.id!r} ({layer.kind}) has no children to show")
        node = layer.node
        if node is None:
            node = self._find_node(layer.id)
        if node is None or node.children is None:
            return ()
        return tuple(self._wrap(child) for child in node.children)

    def _walk(self) -> Iterator[tuple[RawNode, list[str]]]:
        """Yield (node, ancestor names) in pre-order."""
        # stack, top is the last item: push in reverse to keep display order
        todo: list[tuple[RawNode, list[str]]] = [(n, []) for n in reversed(self._root_nodes())]
        while todo:
            node, parents = todo.pop()
            yield node, parents
            path = [*parents, node.name]
            todo.extend((child, path) for child in reversed(node.children or ()))

    def _find_node(self, layer_id: str) -> RawNode | None:
        for node, _parents in self._walk():
            if node.id == layer_id:
                return node
        return None

    def find(self, layer_id: str) -> Layer | None:
        node = self._find_node(layer_id)
        return self._wrap(node) if node else None

    def path_to(self, layer_id: str) -> list[str] | None:
        """Display names from the root down to (and including) the layer."""
        for node, parents in self._walk():
            if node.id == layer_id:
                return [*parents, node.name]
        return None
