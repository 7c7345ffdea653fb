"""Link store: the persisted layer-to-selector relation of one stylesheet."""

from collections.abc import Callable

from loguru import logger

from figma_sync.errors import PersistenceFailed
from figma_sync.models.document import FileSyncState, Link


class LinkStore:
    """Mutate ``FileSyncState.links`` while keeping both uniqueness rules.

    - At most one link per layer id.
    - At most one link per selector.

    Every mutation is saved through ``save`` before it returns. If saving
    fails, the links are put back the way they were and the error propagates.
    """

    def __init__(self, state: FileSyncState, save: Callable[[], None]) -> None:
        self.state = state
        self._save = save

    def get(self, layer_id: str) -> Link | None:
        return self.state.links.get(layer_id)

    def all(self) -> list[Link]:
        """All links, in insertion order."""
        return list(self.state.links.values())

    def for_selector(self, selector: str) -> Link | None:
        for link in self.state.links.values():
            if link.selector == selector:
                return link
        return None

    def _commit(self, previous: dict[str, Link]) -> None:
        try:
            self._save()
        except PersistenceFailed:
            self.state.links = previous
            logger.warning("Could not save links, rolled back in memory")
            raise

    def add_or_replace(self, link: Link) -> list[str]:
        """Insert a link, dropping any link it would conflict with.

        Returns:
            Ids of other layers that lost their link to this selector.
        """
        if self.state.links.get(link.layer_id) == link:
            return []

        previous = dict(self.state.links)
        displaced = [
            other.layer_id
            for other in previous.values()
            if other.selector == link.selector and other.layer_id != link.layer_id
        ]
        links = {
            layer_id: other
            for layer_id, other in previous.items()
            if layer_id != link.layer_id and other.selector != link.selector
        }
        links[link.layer_id] = link
        self.state.links = links
        self._commit(previous)

        logger.debug(
            "Linked layer {!r} to {!r}{}",
            link.layer_id, link.selector, f", displaced {displaced!r}" if displaced else "",
        )
        return displaced

    def remove(self, layer_id: str) -> Link | None:
        """Remove the link of a layer. Removing a missing link is a no-op."""
        if layer_id not in self.state.links:
            return None

        previous = dict(self.state.links)
        links = dict(previous)
        removed = links.pop(layer_id)
        self.state.links = links
        self._commit(previous)

        logger.debug("Unlinked layer {!r} from {!r}", layer_id, removed.selector)
        return removed
