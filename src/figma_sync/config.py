"""Configuration constants for figma-sync."""

import os
from pathlib import Path

API_BASE_URL: str = "https://api.figma.com/v1"

# Seconds before an API request is abandoned.
REQUEST_TIMEOUT: float = 30.0

# Environment variable checked before the token files.
API_TOKEN_ENV: str = "FIGMA_SYNC_TOKEN"

# API token location. First file found is used; `attach` writes to the first one.
API_TOKEN_FILES: list[Path] = [
    Path("~/.config/figma-sync-token.txt").expanduser(),
    Path("~/.config/secret/figma-sync-token.txt").expanduser(),
    Path(f"/run/user/{os.getuid()}/figma-sync-token"),
]

# Directory with sync state. First directory which is found is used.
DATA_DIRECTORIES: list[Path] = [
    Path("~/.local/share/figma-sync").expanduser(),
    Path("~/.figma-sync").expanduser(),
    Path("~/.config/figma-sync").expanduser(),
]

DATABASE_NAME: str = "sync.db"

# How long we wait after the last edit before re-parsing the stylesheet.
CHANGE_WAIT_MS: int = 1000

# Node kinds the tree view may expand. Everything else is a leaf.
EXPANDABLE_KINDS: frozenset[str] = frozenset({"FRAME", "GROUP", "COMPONENT", "INSTANCE"})

# Style token handed to the decoration renderer for linked selectors.
LINKED_LAYER_STYLE: str = "figma-linked-layer"


def resolve_data_directory() -> Path:
    """Return the first existing data directory, or the first candidate if none exist."""
    for candidate in DATA_DIRECTORIES:
        if candidate.is_dir():
            return candidate
    return DATA_DIRECTORIES[0]
