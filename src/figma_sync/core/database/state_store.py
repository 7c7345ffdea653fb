"""Persist FileSyncState records in SQLite, one row per stylesheet."""

import json
import sqlite3
import time

from loguru import logger

from figma_sync.errors import PersistenceFailed
from figma_sync.models.document import FileSyncState, Link, RemoteDocument


def state_to_row(state: FileSyncState) -> tuple[str | None, str | None, str | None, str]:
    """Serialize a state into (file_key, file_display_name, document_json, links_json)."""
    document_json = None
    if state.cached_document is not None:
        document_json = json.dumps(state.cached_document.to_dict(), separators=(",", ":"))
    links_json = json.dumps([link.to_dict() for link in state.links.values()])
    return state.file_key, state.file_display_name, document_json, links_json


def state_from_row(
    file_key: str | None,
    file_display_name: str | None,
    document_json: str | None,
    links_json: str,
) -> FileSyncState:
    document = RemoteDocument.from_dict(json.loads(document_json)) if document_json else None
    links = [Link.from_dict(item) for item in json.loads(links_json)]
    return FileSyncState(
        file_key=file_key,
        file_display_name=file_display_name,
        cached_document=document,
        links={link.layer_id: link for link in links},
    )


class SqliteStateStore:
    """State store backed by the ``file_sync_state`` table.

    The schema must already exist (see ``migrate_schema``).
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def load_state(self, file_uri: str) -> FileSyncState | None:
        try:
            row = self.conn.execute(
                "SELECT file_key, file_display_name, document_json, links_json "
                "FROM file_sync_state WHERE file_uri = ?",
                (file_uri,),
            ).fetchone()
        except sqlite3.Error as e:
            raise PersistenceFailed(f"Cannot read state for {file_uri!r}: {e}", cause=e) from e
        if row is None:
            return None
        return state_from_row(*row)

    def save_state(self, file_uri: str, state: FileSyncState) -> None:
        now_ms = int(time.time() * 1000)
        try:
            self.conn.execute(
                """INSERT OR REPLACE INTO file_sync_state
                   (file_uri, file_key, file_display_name, document_json, links_json, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (file_uri, *state_to_row(state), now_ms),
            )
            self.conn.commit()
        except sqlite3.Error as e:
            self.conn.rollback()
            raise PersistenceFailed(f"Cannot save state for {file_uri!r}: {e}", cause=e) from e
        logger.debug("Saved state for {} ({} links)", file_uri, len(state.links))

    def delete_state(self, file_uri: str) -> None:
        try:
            self.conn.execute("DELETE FROM file_sync_state WHERE file_uri = ?", (file_uri,))
            self.conn.commit()
        except sqlite3.Error as e:
            self.conn.rollback()
            raise PersistenceFailed(f"Cannot delete state for {file_uri!r}: {e}", cause=e) from e
