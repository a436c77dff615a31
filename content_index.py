"""
Thread-safe index of content that already exists in Heartcore.

Keyed by TVMaze show id (as a string, compared case-insensitively). Filled
once from the parent's children before the upsert pass, then extended by
workers right after each successful create so a later record with the same
id is skipped instead of created twice.
"""

import logging
import threading
from typing import Dict, Iterator, List, Mapping, Optional

from models import IndexEntry

logger = logging.getLogger(__name__)


def _normalize_key(show_id) -> str:
    return str(show_id).strip().casefold()


class ExistingContentIndex:
    """
    Concurrent mapping of show id -> IndexEntry(key, name).

    All operations are internally synchronized; callers never lock.

    Usage:
        index = ExistingContentIndex.from_remote(client, parent_key)
        if index.lookup(show.id) is None:
            key = client.create_content(payload)
            index.try_add(show.id, key, show.display_name)
    """

    def __init__(self, entries: Optional[Mapping[str, IndexEntry]] = None):
        self._lock = threading.Lock()
        self._entries: Dict[str, IndexEntry] = {}
        for show_id, entry in (entries or {}).items():
            self._entries[_normalize_key(show_id)] = entry

    @classmethod
    def from_remote(cls, client, parent_key: str) -> "ExistingContentIndex":
        """
        Build the index from one children listing of the parent node.

        Args:
            client: Object with get_children_index(parent_key)
            parent_key: Key of the shows container

        Returns:
            Populated index
        """
        index = cls(client.get_children_index(parent_key))
        logger.debug(f"Existing content index holds {len(index)} shows")
        return index

    def lookup(self, show_id) -> Optional[IndexEntry]:
        """Get the existing entry for a show id, or None."""
        with self._lock:
            return self._entries.get(_normalize_key(show_id))

    def insert(self, show_id, key: str, name: str) -> None:
        """Add or overwrite an entry (last writer wins)."""
        with self._lock:
            self._entries[_normalize_key(show_id)] = IndexEntry(key=key, name=name)

    def try_add(self, show_id, key: str, name: str) -> bool:
        """
        Add an entry only if the id is not indexed yet.

        Returns:
            True if the entry was added
        """
        normalized = _normalize_key(show_id)
        with self._lock:
            if normalized in self._entries:
                return False
            self._entries[normalized] = IndexEntry(key=key, name=name)
            return True

    def keys(self) -> List[str]:
        """Snapshot of indexed show ids."""
        with self._lock:
            return list(self._entries)

    def entries(self) -> Dict[str, IndexEntry]:
        """Snapshot of the whole index."""
        with self._lock:
            return dict(self._entries)

    def __contains__(self, show_id) -> bool:
        return self.lookup(show_id) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys())
