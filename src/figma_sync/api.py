"""Figma REST API client."""

import os
from typing import Any

import requests
from loguru import logger

from figma_sync.config import API_BASE_URL, API_TOKEN_ENV, API_TOKEN_FILES, REQUEST_TIMEOUT
from figma_sync.models.document import RawNode, RemoteDocument


def read_api_token() -> str | None:
    """Return the API token from the environment or the first token file found."""
    token = os.environ.get(API_TOKEN_ENV, "").strip()
    if token:
        return token
    for token_path in API_TOKEN_FILES:
        try:
            token = token_path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            continue
        if token:
            return token
    return None


def save_api_token(token: str) -> None:
    """Store the token in the first token file location."""
    token_path = API_TOKEN_FILES[0]
    token_path.parent.mkdir(parents=True, exist_ok=True)
    token_path.write_text(token.strip() + "\n", encoding="utf-8")
    token_path.chmod(0o600)
    logger.debug("Saved API token to {}", token_path)


def parse_file_response(data: dict[str, Any]) -> RemoteDocument:
    """Turn a ``GET /files/:key`` response into a RemoteDocument.

    The root nodes are the top-level children of every page, in page order.
    Pages themselves are not shown.
    """
    document = data["document"]
    root_nodes: list[RawNode] = []
    for page in document.get("children", []):
        root_nodes.extend(RawNode.from_dict(child) for child in page.get("children", []))
    return RemoteDocument(
        revision_stamp=data["lastModified"],
        name=data.get("name", ""),
        root_nodes=tuple(root_nodes),
    )


class FigmaApi:
    """Figma file API bound to one personal access token."""

    def __init__(self, token: str | None = None) -> None:
        self.sess = requests.Session()

        resolved = token or read_api_token()
        if not resolved:
            msg = (
                f"Cannot find Figma API token: set {API_TOKEN_ENV} "
                f"or write one of {API_TOKEN_FILES!r}"
            )
            raise RuntimeError(msg)
        self.sess.headers["X-Figma-Token"] = resolved

    def _get(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        logger.debug("Making request: {!r} {!r}", path, params)
        r = self.sess.get(f"{API_BASE_URL}/{path}", params=params, timeout=REQUEST_TIMEOUT)
        r.raise_for_status()
        rv: dict[str, Any] = r.json()
        if rv.get("err"):
            msg = f"API call failed: {path!r} -> ({rv.get('status')!r}, {rv['err']!r})"
            raise RuntimeError(msg)
        return rv

    def fetch_revision(self, file_key: str) -> str:
        """Return ``lastModified`` without downloading the node tree."""
        rv = self._get(f"files/{file_key}", {"depth": 1})
        return str(rv["lastModified"])

    def fetch_document(self, file_key: str) -> RemoteDocument:
        rv = self._get(f"files/{file_key}")
        doc = parse_file_response(rv)
        logger.debug(
            "Fetched {!r}: {} root nodes, revision {!r}",
            doc.name, len(doc.root_nodes), doc.revision_stamp,
        )
        return doc
