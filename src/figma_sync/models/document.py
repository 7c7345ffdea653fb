"""Domain models for the sync engine."""

from dataclasses import dataclass, field
from typing import Any

from figma_sync.config import EXPANDABLE_KINDS

# (start, end) character offsets into the stylesheet text, end exclusive.
TextRange = tuple[int, int]


@dataclass(frozen=True)
class RawNode:
    """A single node of the remote design tree, as fetched."""

    id: str
    name: str
    kind: str
    children: tuple["RawNode", ...] | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"id": self.id, "name": self.name, "type": self.kind}
        if self.children is not None:
            data["children"] = [child.to_dict() for child in self.children]
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RawNode":
        """Build a node (and its whole subtree) from a Figma-style dict.

        Unknown keys are ignored; a missing ``children`` key stays absent.
        """
        raw_children = data.get("children")
        children = None
        if raw_children is not None:
            children = tuple(cls.from_dict(child) for child in raw_children)
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            kind=data.get("type", ""),
            children=children,
        )


@dataclass(frozen=True)
class RemoteDocument:
    """A fetched design file. Replaced wholesale on refresh, never mutated."""

    revision_stamp: str
    root_nodes: tuple[RawNode, ...]
    name: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "revision_stamp": self.revision_stamp,
            "name": self.name,
            "root_nodes": [node.to_dict() for node in self.root_nodes],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RemoteDocument":
        return cls(
            revision_stamp=data["revision_stamp"],
            name=data.get("name", ""),
            root_nodes=tuple(RawNode.from_dict(n) for n in data["root_nodes"]),
        )


@dataclass(frozen=True)
class Layer:
    """Presentation wrapper over a RawNode. Compares and hashes by id only."""

    id: str
    display_name: str = field(compare=False)
    kind: str = field(compare=False)
    expandable: bool = field(compare=False)
    linked_selector: str | None = field(default=None, compare=False)
    node: RawNode | None = field(default=None, compare=False, repr=False)


def wrap_node(node: RawNode, linked_selector: str | None = None) -> Layer:
    """Wrap a RawNode into a Layer. Pure: same input, equal output."""
    return Layer(
        id=node.id,
        display_name=node.name,
        kind=node.kind,
        expandable=node.kind in EXPANDABLE_KINDS,
        linked_selector=linked_selector,
        node=node,
    )


@dataclass(frozen=True)
class Scope:
    """A selector and where it sits in the stylesheet text.

    ``source_range`` covers the selector text itself, ``body_range`` runs from
    the selector start to the closing brace of its block.
    """

    selector: str
    source_range: TextRange
    body_range: TextRange


@dataclass(frozen=True)
class Link:
    """A persisted binding between one layer and one selector.

    ``layer_path`` is the breadcrumb of display names captured when the link
    was made. It is not updated when the remote tree is renamed or reshaped.
    """

    layer_id: str
    selector: str
    layer_path: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "layer_id": self.layer_id,
            "selector": self.selector,
            "layer_path": list(self.layer_path),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Link":
        return cls(
            layer_id=data["layer_id"],
            selector=data["selector"],
            layer_path=tuple(data.get("layer_path", ())),
        )


@dataclass
class FileSyncState:
    """Everything persisted for one synced stylesheet."""

    file_key: str | None = None
    file_display_name: str | None = None
    cached_document: RemoteDocument | None = None
    # layer_id -> Link, in insertion order
    links: dict[str, Link] = field(default_factory=dict)

    def clear(self) -> None:
        self.file_key = None
        self.file_display_name = None
        self.cached_document = None
        self.links = {}


@dataclass(frozen=True)
class Decoration:
    """A rendered annotation, as tracked by the annotation manager."""

    layer_id: str
    selector: str
    source_range: TextRange
    hover_text: str


@dataclass(frozen=True)
class DocumentChange:
    """An edit event delivered by the host editor.

    ``document_text`` is the full stylesheet text right after the edit.
    """

    file_uri: str
    start_line: int
    new_text: str
    document_text: str
