from __future__ import annotations
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional, Union

from connectors.base import NodeKind, RemoteNode, RemoteStoreClient
from core.cache import PathCache
from core.collision import CollisionResolver, CollisionStrategy, UseExisting
from core.errors import Conflict, NotFound, raise_if_cancelled
from core.paths import ROOT, join_path, normalize_path, segments, split_path

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Found:
    kind: NodeKind
    id: str


class _Missing:
    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "NOT_FOUND"


NOT_FOUND = _Missing()

Resolution = Union[Found, _Missing]


class PathResolver:
    """Map slash-separated paths onto Box folder/file ids.

    Resolution walks one folder listing per uncached segment and caches every
    segment it resolves, so repeated access to a subtree costs no listings.
    Remote calls are made outside the cache lock; concurrent resolvers may both
    list the same folder on a cold cache, and the last writer wins with an
    identical entry.
    """

    def __init__(
        self,
        client: RemoteStoreClient,
        root_folder_id: str = "0",
        cache: Optional[PathCache] = None,
        collisions: Optional[CollisionResolver] = None,
    ) -> None:
        self.client = client
        self.root_folder_id = str(root_folder_id)
        self.cache = cache if cache is not None else PathCache()
        self.collisions = collisions or CollisionResolver()

    def _find_child(
        self, folder_id: str, name: str, kind: NodeKind, cancel: Optional[threading.Event]
    ) -> Optional[RemoteNode]:
        raise_if_cancelled(cancel)
        for node in self.client.list_folder(folder_id, cancel=cancel):
            if node.kind is kind and node.name == name:
                return node
        return None

    def _fresh(self, path: str, lookup: Callable[..., Resolution], cancel: Optional[threading.Event]) -> Resolution:
        """Run ``lookup``, retrying once uncached if a cached id has vanished remotely."""
        try:
            return lookup(path, cancel)
        except NotFound:
            key = normalize_path(path)
            logger.info(f"Cached ids along '{key}' are stale; resolving again")
            self.cache.invalidate(key)
        try:
            return lookup(path, cancel)
        except NotFound:
            return NOT_FOUND

    def lookup_folder(self, path: str, cancel: Optional[threading.Event] = None) -> Resolution:
        return self._fresh(path, self._lookup_folder, cancel)

    def lookup_file(self, path: str, cancel: Optional[threading.Event] = None) -> Resolution:
        return self._fresh(path, self._lookup_file, cancel)

    def _lookup_folder(self, path: str, cancel: Optional[threading.Event]) -> Resolution:
        current_path = ROOT
        current_id = self.root_folder_id
        for segment in segments(path):
            current_path = join_path(current_path, segment)
            cached = self.cache.get(current_path, NodeKind.FOLDER)
            if cached is not None:
                current_id = cached.id
                continue
            logger.debug(f"Path cache miss for folder '{current_path}'")
            node = self._find_child(current_id, segment, NodeKind.FOLDER, cancel)
            if node is None:
                return NOT_FOUND
            self.cache.put(current_path, NodeKind.FOLDER, node.id)
            current_id = node.id
        return Found(NodeKind.FOLDER, current_id)

    def _lookup_file(self, path: str, cancel: Optional[threading.Event]) -> Resolution:
        key = normalize_path(path)
        if not key:
            return NOT_FOUND
        cached = self.cache.get(key, NodeKind.FILE)
        if cached is not None:
            return Found(NodeKind.FILE, cached.id)

        location = split_path(key)
        parent = self._lookup_folder(location.parent, cancel)
        if not parent:
            return NOT_FOUND
        logger.debug(f"Path cache miss for file '{key}'")
        node = self._find_child(parent.id, location.basename, NodeKind.FILE, cancel)
        if node is None:
            return NOT_FOUND
        self.cache.put(key, NodeKind.FILE, node.id)
        return Found(NodeKind.FILE, node.id)

    def resolve_folder(self, path: str, cancel: Optional[threading.Event] = None) -> str:
        found = self.lookup_folder(path, cancel)
        if not found:
            raise NotFound(f"Folder not found: {normalize_path(path)}", status_code=404)
        return found.id

    def resolve_file(self, path: str, cancel: Optional[threading.Event] = None) -> str:
        found = self.lookup_file(path, cancel)
        if not found:
            raise NotFound(f"File not found: {normalize_path(path)}", status_code=404)
        return found.id

    def folder_exists(self, path: str, cancel: Optional[threading.Event] = None) -> bool:
        return bool(self.lookup_folder(path, cancel))

    def file_exists(self, path: str, cancel: Optional[threading.Event] = None) -> bool:
        return bool(self.lookup_file(path, cancel))

    def ensure_folder(self, path: str, cancel: Optional[threading.Event] = None) -> str:
        """Resolve ``path`` as a folder, creating missing segments.

        Creation uses the ``skip`` strategy so a folder made concurrently by
        someone else is adopted instead of duplicated. Not atomic: segments
        created before a failure stay in place and are found on retry.
        """
        found = self.lookup_folder(path, cancel)
        if found:
            return found.id

        current_path = ROOT
        current_id = self.root_folder_id
        for segment in segments(path):
            current_path = join_path(current_path, segment)
            cached = self.cache.get(current_path, NodeKind.FOLDER)
            if cached is not None:
                current_id = cached.id
                continue
            raise_if_cancelled(cancel)
            outcome = self.collisions.resolve_create_name(
                current_id,
                segment,
                NodeKind.FOLDER,
                CollisionStrategy.SKIP,
                lambda folder_id: self.client.list_folder(folder_id, cancel=cancel),
            )
            if isinstance(outcome, UseExisting):
                current_id = outcome.node_id
            else:
                raise_if_cancelled(cancel)
                try:
                    created = self.client.create_folder(current_id, outcome.name, cancel=cancel)
                except Conflict as exc:
                    # Lost a race with another creator; adopt its folder.
                    if not exc.item_id:
                        raise
                    logger.info(f"Folder '{current_path}' appeared concurrently; using {exc.item_id}")
                    current_id = exc.item_id
                else:
                    logger.info(f"Created Box folder '{current_path}' ({created.id})")
                    current_id = created.id
            self.cache.put(current_path, NodeKind.FOLDER, current_id)
        return current_id

    def remember(self, path: str, node: RemoteNode) -> None:
        if normalize_path(path):
            self.cache.put(path, node.kind, node.id)

    def invalidate(self, path: str) -> None:
        removed = self.cache.invalidate(path)
        if removed:
            logger.debug(f"Invalidated path cache entries: {removed}")
