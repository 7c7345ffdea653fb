"""Shared test fixtures."""

import pytest

from figma_sync.models.document import RawNode, RemoteDocument
from tests.unit.fakes import FakeApi, FakeRenderer, FakeStateStore, FakeTreeView

STYLESHEET = """\
.header {
    color: red;
    .title {
        font-weight: bold;
    }
}
.footer {
    color: blue;
}
"""

FILE_URI = "file:///project/styles.less"


def make_document(revision_stamp: str = "2024-01-01T00:00:00Z", header_name: str = "Header") -> RemoteDocument:
    """Page-level frames of a small design file."""
    return RemoteDocument(
        revision_stamp=revision_stamp,
        name="Website",
        root_nodes=(
            RawNode(
                id="1:1",
                name="Page",
                kind="FRAME",
                children=(
                    RawNode(
                        id="1:2",
                        name=header_name,
                        kind="GROUP",
                        children=(RawNode(id="1:3", name="Title", kind="TEXT"),),
                    ),
                    RawNode(id="1:4", name="Footer", kind="COMPONENT", children=()),
                    RawNode(id="1:5", name="Logo", kind="VECTOR"),
                ),
            ),
            RawNode(id="2:1", name="Button", kind="INSTANCE"),
        ),
    )


@pytest.fixture
def document() -> RemoteDocument:
    return make_document()


@pytest.fixture
def fake_api(document: RemoteDocument) -> FakeApi:
    api = FakeApi()
    api.add_document("KEY", document)
    return api


@pytest.fixture
def store() -> FakeStateStore:
    return FakeStateStore()


@pytest.fixture
def renderer() -> FakeRenderer:
    return FakeRenderer()


@pytest.fixture
def tree_view() -> FakeTreeView:
    return FakeTreeView()
