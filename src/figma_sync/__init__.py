"""Keep LESS stylesheets linked to Figma layers."""

from figma_sync.api import FigmaApi
from figma_sync.core.sync.controller import SyncController
from figma_sync.protocols import (
    ApiProtocol,
    DecorationRendererProtocol,
    StateStoreProtocol,
    TreeViewProtocol,
)

__all__ = [
    "ApiProtocol",
    "DecorationRendererProtocol",
    "FigmaApi",
    "StateStoreProtocol",
    "SyncController",
    "TreeViewProtocol",
]
