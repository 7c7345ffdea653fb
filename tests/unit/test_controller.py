"""Tests for the sync controller: activation, debounce, refresh and links."""

import asyncio

import pytest

from figma_sync.core.sync.controller import SyncController
from figma_sync.errors import PersistenceFailed, RemoteFetchFailed
from figma_sync.models.document import DocumentChange, FileSyncState, Link, RemoteDocument
from tests.unit.conftest import FILE_URI, STYLESHEET, make_document
from tests.unit.fakes import FakeApi, FakeRenderer, FakeStateStore, FakeTreeView

OTHER_URI = "file:///project/other.less"


@pytest.fixture
def controller(
    store: FakeStateStore, renderer: FakeRenderer, tree_view: FakeTreeView, fake_api: FakeApi
) -> SyncController:
    return SyncController(
        store=store, renderer=renderer, tree_view=tree_view, api=fake_api, change_wait_ms=100
    )


def _seed(
    store: FakeStateStore,
    document: RemoteDocument | None = None,
    links: list[Link] | None = None,
    file_uri: str = FILE_URI,
) -> None:
    state = FileSyncState(
        file_key="KEY",
        file_display_name=document.name if document else None,
        cached_document=document,
        links={link.layer_id: link for link in links or []},
    )
    store.save_state(file_uri, state)


def _edit(text: str, start_line: int = 0, file_uri: str = FILE_URI) -> DocumentChange:
    return DocumentChange(file_uri=file_uri, start_line=start_line, new_text="", document_text=text)


# --- Activation ---


def test_activate_without_state_shows_nothing(
    controller: SyncController, renderer: FakeRenderer, tree_view: FakeTreeView
) -> None:
    controller.activate(FILE_URI, STYLESHEET)

    assert renderer.live == {}
    assert controller.get_roots() == ()
    assert controller.status_text() == "Not connected to Figma"
    assert tree_view.refreshed == [None]


def test_activate_renders_persisted_link(
    controller: SyncController,
    store: FakeStateStore,
    renderer: FakeRenderer,
    document: RemoteDocument,
) -> None:
    _seed(store, document, [Link(layer_id="L1", selector=".header", layer_path=("Page", "Header"))])

    controller.activate(FILE_URI, STYLESHEET)

    assert renderer.ranges() == [(0, 7)]
    (_range, hover_text, _style), = renderer.live.values()
    assert "Page" in hover_text and "Header" in hover_text
    assert controller.status_text() == "Figma: Website"
    assert [layer.id for layer in controller.get_roots()] == ["1:1", "2:1"]


def test_switching_files_disposes_previous_decorations(
    controller: SyncController, store: FakeStateStore, renderer: FakeRenderer
) -> None:
    _seed(store, None, [Link(layer_id="L1", selector=".header")])
    controller.activate(FILE_URI, STYLESHEET)
    assert len(renderer.live) == 1

    controller.activate(OTHER_URI, ".header { }")

    assert renderer.live == {}
    assert controller.links is not None and controller.links.all() == []


def test_get_children_of_leaf_is_empty(controller: SyncController, store: FakeStateStore, document: RemoteDocument) -> None:
    _seed(store, document)
    controller.activate(FILE_URI, STYLESHEET)

    assert [layer.id for layer in controller.get_children("1:1")] == ["1:2", "1:4", "1:5"]
    assert controller.get_children("1:5") == ()
    assert controller.get_children("missing") == ()


# --- Debounce ---


def test_burst_of_edits_runs_one_pass_with_last_content(
    controller: SyncController, store: FakeStateStore, renderer: FakeRenderer
) -> None:
    _seed(store, None, [Link(layer_id="L1", selector=".header")])
    controller.activate(FILE_URI, STYLESHEET)
    parsed: list[str] = []
    original_parse = controller.index.parse

    def spy(text: str) -> dict:
        parsed.append(text)
        return original_parse(text)

    controller.index.parse = spy  # type: ignore[method-assign]

    async def scenario() -> None:
        for n in range(5):
            controller.on_document_changed(_edit("\n" * n + ".header { }", start_line=n))
            await asyncio.sleep(0.01)
        assert parsed == []
        await asyncio.sleep(0.3)

    asyncio.run(scenario())

    assert parsed == ["\n\n\n\n.header { }"]
    assert renderer.ranges() == [(4, 11)]


def test_edit_removing_selector_disposes_but_keeps_link(
    controller: SyncController, store: FakeStateStore, renderer: FakeRenderer
) -> None:
    link = Link(layer_id="L1", selector=".header", layer_path=("Page", "Header"))
    _seed(store, None, [link])
    controller.activate(FILE_URI, STYLESHEET)
    reconcile_all_calls: list[None] = []
    assert controller.annotations is not None
    controller.annotations.reconcile_all = lambda: reconcile_all_calls.append(None)  # type: ignore[method-assign]

    async def scenario() -> None:
        controller.on_document_changed(_edit(".footer { }"))
        await asyncio.sleep(0.3)

    asyncio.run(scenario())

    assert renderer.live == {}
    assert controller.links is not None and controller.links.get("L1") == link
    assert reconcile_all_calls == []


def test_switching_files_cancels_pending_pass(
    controller: SyncController, store: FakeStateStore
) -> None:
    controller.activate(FILE_URI, STYLESHEET)

    async def scenario() -> None:
        controller.on_document_changed(_edit(".changed { }"))
        controller.activate(OTHER_URI, ".other { }")
        await asyncio.sleep(0.3)

    asyncio.run(scenario())

    assert list(controller.index.scopes) == [".other"]


def test_reactivating_same_file_cancels_pending_pass(
    controller: SyncController, store: FakeStateStore, renderer: FakeRenderer
) -> None:
    _seed(store, None, [Link(layer_id="L1", selector=".header")])
    controller.activate(FILE_URI, ".header { }")

    async def scenario() -> None:
        controller.on_document_changed(_edit(".other { }"))
        controller.activate(FILE_URI, "\n\n.header { }")
        await asyncio.sleep(0.3)

    asyncio.run(scenario())

    assert list(controller.index.scopes) == [".header"]
    assert renderer.ranges() == [(2, 9)]


def test_edit_outside_linked_scopes_skips_reconcile(
    controller: SyncController, store: FakeStateStore, renderer: FakeRenderer
) -> None:
    _seed(store, None, [Link(layer_id="L1", selector=".footer")])
    controller.activate(FILE_URI, STYLESHEET)
    reconciles: list[None] = []
    assert controller.annotations is not None
    original_reconcile = controller.annotations.reconcile_changed

    def spy() -> list[str]:
        reconciles.append(None)
        return original_reconcile()

    controller.annotations.reconcile_changed = spy  # type: ignore[method-assign]

    async def scenario() -> None:
        controller.on_document_changed(_edit(STYLESHEET + ".extra { }\n", start_line=9))
        await asyncio.sleep(0.3)
        assert reconciles == []

        controller.on_document_changed(
            _edit(STYLESHEET.replace("color: blue", "color: navy"), start_line=7)
        )
        await asyncio.sleep(0.3)

    asyncio.run(scenario())

    assert len(reconciles) == 1
    assert ".extra" not in controller.index.scopes
    assert renderer.ranges() == [(STYLESHEET.index(".footer"), STYLESHEET.index(".footer") + 7)]


def test_edits_of_inactive_file_are_ignored(controller: SyncController) -> None:
    controller.activate(FILE_URI, STYLESHEET)

    async def scenario() -> None:
        controller.on_document_changed(_edit(".x { }", file_uri=OTHER_URI))
        await asyncio.sleep(0.3)

    asyncio.run(scenario())

    assert ".x" not in controller.index.scopes


def test_flush_pending_runs_pass_immediately(controller: SyncController) -> None:
    controller.activate(FILE_URI, STYLESHEET)

    async def scenario() -> None:
        controller.on_document_changed(_edit(".flushed { }"))
        controller.flush_pending()
        assert list(controller.index.scopes) == [".flushed"]

    asyncio.run(scenario())


# --- Remote refresh ---


def test_attach_stores_key_and_fetches(
    controller: SyncController, store: FakeStateStore, tree_view: FakeTreeView
) -> None:
    controller.activate(FILE_URI, STYLESHEET)

    assert asyncio.run(controller.attach("KEY")) is True

    assert controller.status_text() == "Figma: Website"
    saved = store.load_state(FILE_URI)
    assert saved is not None and saved.file_key == "KEY"
    assert saved.cached_document is not None
    assert tree_view.refreshed[-1] is None


def test_refresh_with_same_revision_changes_nothing(
    controller: SyncController,
    store: FakeStateStore,
    renderer: FakeRenderer,
    tree_view: FakeTreeView,
    fake_api: FakeApi,
    document: RemoteDocument,
) -> None:
    _seed(store, document, [Link(layer_id="L1", selector=".header")])
    controller.activate(FILE_URI, STYLESHEET)
    cached = controller.state.cached_document if controller.state else None
    renders, refreshes, saves = renderer.render_calls, len(tree_view.refreshed), store.saves

    assert asyncio.run(controller.refresh()) is False

    assert controller.state is not None and controller.state.cached_document is cached
    assert renderer.render_calls == renders
    assert len(tree_view.refreshed) == refreshes
    assert store.saves == saves
    assert ("fetch_document", "KEY") not in fake_api.calls


def test_refresh_with_new_revision_replaces_tree(
    controller: SyncController,
    store: FakeStateStore,
    tree_view: FakeTreeView,
    fake_api: FakeApi,
    document: RemoteDocument,
) -> None:
    _seed(store, document)
    controller.activate(FILE_URI, STYLESHEET)
    fake_api.add_document("KEY", make_document("2024-06-01T00:00:00Z", header_name="Top bar"))

    assert asyncio.run(controller.refresh()) is True

    assert [c.display_name for c in controller.get_children("1:1")][0] == "Top bar"
    saved = store.load_state(FILE_URI)
    assert saved is not None and saved.cached_document is not None
    assert saved.cached_document.revision_stamp == "2024-06-01T00:00:00Z"
    assert tree_view.refreshed[-1] is None


def test_refresh_failure_keeps_cached_tree(
    controller: SyncController, store: FakeStateStore, fake_api: FakeApi, document: RemoteDocument
) -> None:
    _seed(store, document)
    controller.activate(FILE_URI, STYLESHEET)
    fake_api.error = ConnectionError("offline")

    with pytest.raises(RemoteFetchFailed):
        asyncio.run(controller.refresh())

    assert controller.state is not None and controller.state.cached_document == document


def test_refresh_without_file_key_does_nothing(controller: SyncController, fake_api: FakeApi) -> None:
    controller.activate(FILE_URI, STYLESHEET)

    assert asyncio.run(controller.refresh()) is False
    assert fake_api.calls == []


def test_refresh_result_discarded_after_file_switch(
    controller: SyncController, store: FakeStateStore, fake_api: FakeApi
) -> None:
    _seed(store, None)
    controller.activate(FILE_URI, STYLESHEET)

    async def scenario() -> bool:
        task = asyncio.create_task(controller.refresh())
        await asyncio.sleep(0)  # let the fetch start
        controller.activate(OTHER_URI, ".other { }")
        return await task

    assert asyncio.run(scenario()) is False

    saved = store.load_state(FILE_URI)
    assert saved is not None and saved.cached_document is None
    assert ("fetch_revision", "KEY") in fake_api.calls


def test_refresh_result_discarded_after_remove_sync(
    controller: SyncController, store: FakeStateStore, fake_api: FakeApi
) -> None:
    _seed(store, None)
    controller.activate(FILE_URI, STYLESHEET)

    async def scenario() -> bool:
        task = asyncio.create_task(controller.refresh())
        await asyncio.sleep(0)  # let the fetch start
        controller.remove_sync()
        return await task

    assert asyncio.run(scenario()) is False

    assert store.load_state(FILE_URI) is None
    assert controller.state is not None
    assert controller.state.cached_document is None
    assert controller.state.file_display_name is None
    assert ("fetch_revision", "KEY") in fake_api.calls


def test_refresh_save_failure_rolls_back_tree(
    controller: SyncController, store: FakeStateStore, fake_api: FakeApi, document: RemoteDocument
) -> None:
    _seed(store, document)
    controller.activate(FILE_URI, STYLESHEET)
    fake_api.add_document("KEY", make_document("2024-06-01T00:00:00Z"))
    store.fail_saves = True

    with pytest.raises(PersistenceFailed):
        asyncio.run(controller.refresh())

    assert controller.state is not None and controller.state.cached_document == document


# --- Links ---


def test_link_layer_captures_path_and_renders(
    controller: SyncController,
    store: FakeStateStore,
    renderer: FakeRenderer,
    tree_view: FakeTreeView,
    document: RemoteDocument,
) -> None:
    _seed(store, document)
    controller.activate(FILE_URI, STYLESHEET)

    link = controller.link_layer("1:2", ".header")

    assert link == Link(layer_id="1:2", selector=".header", layer_path=("Page", "Header"))
    assert renderer.ranges() == [(0, 7)]
    assert tree_view.refreshed[-1] == "1:2"
    header = controller.get_children("1:1")[0]
    assert header.linked_selector == ".header"
    saved = store.load_state(FILE_URI)
    assert saved is not None and list(saved.links) == ["1:2"]


def test_linking_taken_selector_moves_the_decoration(
    controller: SyncController, store: FakeStateStore, renderer: FakeRenderer, document: RemoteDocument
) -> None:
    _seed(store, document)
    controller.activate(FILE_URI, STYLESHEET)
    controller.link_layer("1:2", ".header")

    controller.link_layer("1:4", ".header")

    assert controller.links is not None
    assert controller.links.get("1:2") is None
    assert controller.links.get("1:4") is not None
    assert len(renderer.live) == 1
    assert controller.annotations is not None
    assert [d.layer_id for d in controller.annotations.decorations()] == ["1:4"]

    controller.activate(FILE_URI, STYLESHEET)
    assert len(renderer.live) == 1


def test_link_unknown_layer_raises(controller: SyncController, store: FakeStateStore, document: RemoteDocument) -> None:
    _seed(store, document)
    controller.activate(FILE_URI, STYLESHEET)

    with pytest.raises(ValueError, match="not found"):
        controller.link_layer("nope", ".header")


def test_empty_selector_unlinks(
    controller: SyncController, store: FakeStateStore, renderer: FakeRenderer, document: RemoteDocument
) -> None:
    _seed(store, document)
    controller.activate(FILE_URI, STYLESHEET)
    controller.link_layer("1:2", ".header")

    assert controller.link_layer("1:2", "") is None

    assert renderer.live == {}
    assert controller.links is not None and controller.links.all() == []


def test_failed_link_save_leaves_no_decoration(
    controller: SyncController, store: FakeStateStore, renderer: FakeRenderer, document: RemoteDocument
) -> None:
    _seed(store, document)
    controller.activate(FILE_URI, STYLESHEET)
    store.fail_saves = True

    with pytest.raises(PersistenceFailed):
        controller.link_layer("1:2", ".header")

    assert renderer.live == {}
    assert controller.links is not None and controller.links.all() == []


def test_upstream_rename_keeps_old_name_in_hover(
    controller: SyncController,
    store: FakeStateStore,
    renderer: FakeRenderer,
    fake_api: FakeApi,
    document: RemoteDocument,
) -> None:
    """The breadcrumb is captured at link time; renames upstream do not update it."""
    _seed(store, document)
    controller.activate(FILE_URI, STYLESHEET)
    controller.link_layer("1:2", ".header")
    fake_api.add_document("KEY", make_document("2024-06-01T00:00:00Z", header_name="Top bar"))

    asyncio.run(controller.refresh())
    controller.activate(FILE_URI, STYLESHEET)

    (_range, hover_text, _style), = renderer.live.values()
    assert "Header" in hover_text
    assert "Top bar" not in hover_text
    assert controller.get_children("1:1")[0].display_name == "Top bar"


def test_remove_sync_clears_everything(
    controller: SyncController,
    store: FakeStateStore,
    renderer: FakeRenderer,
    document: RemoteDocument,
) -> None:
    _seed(store, document, [Link(layer_id="1:2", selector=".header")])
    controller.activate(FILE_URI, STYLESHEET)
    assert len(renderer.live) == 1

    controller.remove_sync()

    assert renderer.live == {}
    assert controller.get_roots() == ()
    assert controller.status_text() == "Not connected to Figma"
    assert store.load_state(FILE_URI) is None


def test_remove_sync_failure_restores_state(
    controller: SyncController, store: FakeStateStore, document: RemoteDocument
) -> None:
    _seed(store, document, [Link(layer_id="1:2", selector=".header")])
    controller.activate(FILE_URI, STYLESHEET)
    store.fail_saves = True

    with pytest.raises(PersistenceFailed):
        controller.remove_sync()

    assert controller.state is not None
    assert controller.state.file_key == "KEY"
    assert list(controller.state.links) == ["1:2"]


def test_commands_need_an_active_file(controller: SyncController) -> None:
    with pytest.raises(RuntimeError, match="No active stylesheet"):
        controller.unlink_layer("1:2")


def test_operations_before_activation_raise(controller: SyncController) -> None:
    with pytest.raises(RuntimeError, match="No active stylesheet"):
        controller.link_layer("1:2", ".header")
    with pytest.raises(RuntimeError, match="No active stylesheet"):
        controller.unlink_layer("1:2")
    with pytest.raises(RuntimeError, match="No active stylesheet"):
        controller.remove_sync()
    assert controller.get_roots() == ()
