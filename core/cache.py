from __future__ import annotations
import threading
from dataclasses import dataclass
from typing import Dict, Optional

from connectors.base import NodeKind
from core.paths import ancestors, is_descendant, normalize_path


@dataclass(frozen=True)
class PathCacheEntry:
    kind: NodeKind
    id: str


class PathCache:
    """Process-lifetime map of normalized path -> (kind, remote id).

    All access goes through one lock so that multi-key invalidation is atomic
    with respect to concurrent resolvers. Entries have no TTL; they are dropped
    explicitly when the path, one of its ancestors or descendants is mutated.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: Dict[str, PathCacheEntry] = {}

    def get(self, path: str, kind: Optional[NodeKind] = None) -> Optional[PathCacheEntry]:
        key = normalize_path(path)
        with self._lock:
            entry = self._entries.get(key)
        if entry is None or (kind is not None and entry.kind is not kind):
            return None
        return entry

    def put(self, path: str, kind: NodeKind, node_id: str) -> PathCacheEntry:
        entry = PathCacheEntry(kind=kind, id=str(node_id))
        key = normalize_path(path)
        with self._lock:
            self._entries[key] = entry
        return entry

    def invalidate(self, path: str) -> list[str]:
        """Drop ``path``, everything below it and every strict ancestor.

        Returns the removed keys.
        """
        key = normalize_path(path)
        doomed = {key, *ancestors(key)}
        with self._lock:
            doomed.update(k for k in self._entries if is_descendant(k, key))
            removed = [k for k in doomed if self._entries.pop(k, None) is not None]
        return sorted(removed)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __contains__(self, path: str) -> bool:
        key = normalize_path(path)
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def snapshot(self) -> Dict[str, PathCacheEntry]:
        with self._lock:
            return dict(self._entries)
