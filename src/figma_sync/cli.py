"""CLI for figma-sync (attach, refresh, link, and inspect a stylesheet)."""

import asyncio
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Annotated, Any

import typer
from loguru import logger

from figma_sync.api import FigmaApi, read_api_token, save_api_token
from figma_sync.config import DATABASE_NAME, resolve_data_directory
from figma_sync.core.database.schema import migrate_schema
from figma_sync.core.database.state_store import SqliteStateStore
from figma_sync.core.sync.controller import SyncController
from figma_sync.errors import PersistenceFailed, RemoteFetchFailed
from figma_sync.logging_config import configure_logging
from figma_sync.models.document import Decoration, DocumentChange, Layer, TextRange
from figma_sync.protocols import ApiProtocol

app = typer.Typer(help="Link LESS selectors to Figma layers and keep them in sync.")

_DEFAULT_DATA_DIR = resolve_data_directory()

DataDirOption = Annotated[
    Path | None,
    typer.Option("--data-dir", "-d", help="Directory holding the sync database"),
]
StylesheetArgument = Annotated[Path, typer.Argument(help="LESS stylesheet to work on")]


class ConsoleRenderer:
    """Decoration renderer that keeps decorations in memory for printing."""

    def __init__(self) -> None:
        self.live: dict[int, tuple[TextRange, str, str]] = {}
        self._next_handle = 0

    def render(self, source_range: TextRange, hover_text: str, style_token: str) -> int:
        self._next_handle += 1
        self.live[self._next_handle] = (source_range, hover_text, style_token)
        return self._next_handle

    def dispose(self, handle: Any) -> None:
        self.live.pop(handle, None)


class _LoggingTreeView:
    def refresh(self, layer_id: str | None = None) -> None:
        logger.debug("Layer tree changed: {}", layer_id or "(all)")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    configure_logging(verbose=verbose)


def _open_db(data_dir: Path | None) -> sqlite3.Connection:
    dst = data_dir or _DEFAULT_DATA_DIR
    dst.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(dst / DATABASE_NAME))
    migrate_schema(conn)
    return conn


def _read_stylesheet(stylesheet: Path) -> str:
    if not stylesheet.is_file():
        logger.error("Stylesheet not found: {}", stylesheet)
        raise typer.Exit(1)
    return stylesheet.read_text(encoding="utf-8")


@contextmanager
def _session(
    stylesheet: Path,
    data_dir: Path | None,
    *,
    api: ApiProtocol | None = None,
) -> Iterator[SyncController]:
    """Open the database and activate the stylesheet in a fresh controller."""
    text = _read_stylesheet(stylesheet)
    conn = _open_db(data_dir)
    try:
        controller = SyncController(
            store=SqliteStateStore(conn),
            renderer=ConsoleRenderer(),
            tree_view=_LoggingTreeView(),
            api=api,
        )
        controller.activate(stylesheet.resolve().as_uri(), text)
        yield controller
    except PersistenceFailed as e:
        logger.error("{}", e)
        raise typer.Exit(1) from e
    finally:
        conn.close()


def _make_api(token: str | None = None) -> FigmaApi:
    try:
        return FigmaApi(token)
    except RuntimeError as e:
        logger.error("{}", e)
        raise typer.Exit(1) from e


def _run_refresh(controller: SyncController, coro: Any) -> bool:
    try:
        return bool(asyncio.run(coro))
    except RemoteFetchFailed as e:
        logger.error("{}", e)
        if controller.state and controller.state.cached_document:
            logger.warning("Keeping the cached layer tree")
        raise typer.Exit(1) from e


@app.command()
def attach(
    stylesheet: StylesheetArgument,
    file_key: Annotated[
        str | None, typer.Option("--file-key", "-k", help="Key from the Figma file URL")
    ] = None,
    token: Annotated[
        str | None, typer.Option("--token", "-t", help="Figma personal access token")
    ] = None,
    data_dir: DataDirOption = None,
) -> None:
    """Connect a LESS stylesheet to a Figma file."""
    if stylesheet.suffix.lower() != ".less":
        logger.error("You can only run this command on a LESS file.")
        raise typer.Exit(1)

    token = token or read_api_token()
    if not token:
        token = typer.prompt(
            "Enter your API Key. You can generate one in Figma > Account Settings > "
            "Personal Access Token",
            hide_input=True,
        )
        save_api_token(token)

    with _session(stylesheet, data_dir, api=_make_api(token)) as controller:
        if not file_key:
            current = controller.state.file_key if controller.state else None
            file_key = typer.prompt(
                "Enter the key for the file you want to sync with "
                "(you can get it from the file's URL)",
                default=current,
            )
        _run_refresh(controller, controller.attach(file_key))
        typer.echo(controller.status_text())


@app.command()
def refresh(stylesheet: StylesheetArgument, data_dir: DataDirOption = None) -> None:
    """Re-check the Figma file and update the cached layer tree."""
    with _session(stylesheet, data_dir, api=_make_api()) as controller:
        if not (controller.state and controller.state.file_key):
            typer.echo("Not connected to Figma. Run 'attach' first.")
            raise typer.Exit(1)
        changed = _run_refresh(controller, controller.refresh())
        typer.echo("Layer tree updated" if changed else "Layer tree up to date")
        typer.echo(controller.status_text())


@app.command()
def remove(
    stylesheet: StylesheetArgument,
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
    data_dir: DataDirOption = None,
) -> None:
    """Remove the connection between a stylesheet and Figma."""
    with _session(stylesheet, data_dir) as controller:
        if not yes and not typer.confirm("Remove the connection between this file and Figma?"):
            raise typer.Abort()
        controller.remove_sync()
        typer.echo(controller.status_text())


@app.command()
def status(stylesheet: StylesheetArgument, data_dir: DataDirOption = None) -> None:
    """Show which Figma file a stylesheet is synced with."""
    with _session(stylesheet, data_dir) as controller:
        typer.echo(controller.status_text())


def _format_layer(layer: Layer) -> str:
    marker = "+" if layer.expandable else " "
    line = f"{marker} {layer.display_name} [{layer.kind}] ({layer.id})"
    if layer.linked_selector:
        line += f" -> {layer.linked_selector}"
    return line


@app.command()
def layers(
    stylesheet: StylesheetArgument,
    layer: Annotated[
        str | None, typer.Option("--layer", "-l", help="Show the children of this layer id")
    ] = None,
    data_dir: DataDirOption = None,
) -> None:
    """List cached layers (roots, or the children of one layer)."""
    with _session(stylesheet, data_dir) as controller:
        if controller.state is None or controller.state.cached_document is None:
            typer.echo("No cached layer tree. Run 'attach' or 'refresh' first.")
            raise typer.Exit(1)
        items = controller.get_children(layer) if layer else controller.get_roots()
        for item in items:
            typer.echo(_format_layer(item))


@app.command()
def link(
    stylesheet: StylesheetArgument,
    layer_id: Annotated[str, typer.Argument(help="Layer id (see 'layers')")],
    selector: Annotated[str, typer.Argument(help="Selector text exactly as in the stylesheet")],
    data_dir: DataDirOption = None,
) -> None:
    """Link a Figma layer with a selector."""
    with _session(stylesheet, data_dir) as controller:
        if controller.index.get_scope(selector) is None:
            typer.echo(f"Selector '{selector}' not found in {stylesheet}.")
            raise typer.Exit(1)
        try:
            new_link = controller.link_layer(layer_id, selector)
        except ValueError as e:
            typer.echo(str(e))
            raise typer.Exit(1) from e
        if new_link is not None:
            typer.echo(f"Linked {' > '.join(new_link.layer_path)} with {selector}")


@app.command()
def unlink(
    stylesheet: StylesheetArgument,
    layer_id: Annotated[str, typer.Argument(help="Layer id")],
    data_dir: DataDirOption = None,
) -> None:
    """Remove the link of a Figma layer."""
    with _session(stylesheet, data_dir) as controller:
        controller.unlink_layer(layer_id)
        typer.echo(f"Unlinked {layer_id}")


@app.command()
def links(stylesheet: StylesheetArgument, data_dir: DataDirOption = None) -> None:
    """List the links of a stylesheet."""
    with _session(stylesheet, data_dir) as controller:
        all_links = controller.links.all() if controller.links else []
        if not all_links:
            typer.echo("No links.")
            return
        for item in all_links:
            missing = "" if controller.index.get_scope(item.selector) else "  (not in stylesheet)"
            typer.echo(f"{item.layer_id}\t{item.selector}\t{' > '.join(item.layer_path)}{missing}")


def _decorations(controller: SyncController) -> list[Decoration]:
    return controller.annotations.decorations() if controller.annotations else []


def _format_decoration(controller: SyncController, decoration: Decoration) -> str:
    start_line, start_col = controller.index.line_col(decoration.source_range[0])
    end_line, end_col = controller.index.line_col(decoration.source_range[1])
    linked = controller.links.get(decoration.layer_id) if controller.links else None
    layer_name = " > ".join(linked.layer_path) if linked else decoration.layer_id
    return (
        f"{start_line + 1}:{start_col + 1}-{end_line + 1}:{end_col + 1}\t"
        f"{decoration.selector}\t{layer_name}"
    )


@app.command()
def annotations(stylesheet: StylesheetArgument, data_dir: DataDirOption = None) -> None:
    """Print the decorations an editor would show for this stylesheet."""
    with _session(stylesheet, data_dir) as controller:
        for decoration in _decorations(controller):
            typer.echo(_format_decoration(controller, decoration))


def _first_changed_line(old: str, new: str) -> int:
    for lnum, (a, b) in enumerate(zip(old.splitlines(), new.splitlines(), strict=False)):
        if a != b:
            return lnum
    return min(len(old.splitlines()), len(new.splitlines()))


async def _watch(controller: SyncController, stylesheet: Path, interval: float) -> None:
    file_uri = controller.file_uri
    if file_uri is None:
        return
    if controller.state and controller.state.file_key:
        try:
            await controller.refresh()
        except RemoteFetchFailed as e:
            logger.error("{}", e)

    text = stylesheet.read_text(encoding="utf-8")
    shown = set(_decorations(controller))
    while True:
        await asyncio.sleep(interval)
        new_text = stylesheet.read_text(encoding="utf-8")
        if new_text != text:
            controller.on_document_changed(
                DocumentChange(
                    file_uri=file_uri,
                    start_line=_first_changed_line(text, new_text),
                    new_text=new_text,
                    document_text=new_text,
                )
            )
            text = new_text

        current = set(_decorations(controller))
        if current != shown:
            for decoration in sorted(current - shown, key=lambda d: d.source_range):
                typer.echo("+ " + _format_decoration(controller, decoration))
            for decoration in sorted(shown - current, key=lambda d: d.source_range):
                typer.echo(f"- {decoration.selector}")
            shown = current


@app.command()
def watch(
    stylesheet: StylesheetArgument,
    interval: float = typer.Option(0.5, "--interval", "-i", help="Seconds between file checks"),
    data_dir: DataDirOption = None,
) -> None:
    """Follow edits of a stylesheet and print decoration changes."""
    token = read_api_token()
    api = FigmaApi(token) if token else None
    with _session(stylesheet, data_dir, api=api) as controller:
        typer.echo(controller.status_text())
        try:
            asyncio.run(_watch(controller, stylesheet, interval))
        except KeyboardInterrupt:
            controller.flush_pending()
