from __future__ import annotations
import functools
import logging
import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Any, BinaryIO, Callable, Iterator, Optional, TypeVar, Union

from connectors.base import NodeKind, RemoteNode
from connectors.box.client import BoxApiClient
from core.collision import CollisionResolver, CollisionStrategy, UseExisting
from core.errors import BoxFSError, FilesystemOperationFailed
from core.paths import join_path, normalize_path, split_path
from core.resolver import PathResolver

logger = logging.getLogger(__name__)

T = TypeVar("T")
Strategy = Union[str, CollisionStrategy, None]


@dataclass
class ContentEntry:
    """A listed item and its normalized path below the filesystem root."""

    path: str
    node: RemoteNode

    @property
    def is_file(self) -> bool:
        return self.node.is_file


def _operation(name: str) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Re-raise core errors as FilesystemOperationFailed for ``name``."""

    def _wrap(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def _inner(self: "BoxFilesystem", location: str, *args: Any, **kwargs: Any) -> T:
            try:
                return func(self, location, *args, **kwargs)
            except BoxFSError as e:
                if isinstance(e, FilesystemOperationFailed):
                    raise
                logger.warning(f"{name} failed for '{location}': {e}")
                raise FilesystemOperationFailed(name, location, type(e).__name__, str(e)) from e

        return _inner

    return _wrap


class BoxFilesystem:
    """Path-addressed filesystem over Box.

    Paths are slash-separated and relative to the configured root folder.
    Every failure surfaces as FilesystemOperationFailed; only the existence
    checks turn a missing path into False.
    """

    def __init__(
        self,
        client: BoxApiClient,
        root_folder_id: str = "0",
        collisions: Optional[CollisionResolver] = None,
        resolver: Optional[PathResolver] = None,
    ) -> None:
        self.client = client
        self.collisions = collisions or CollisionResolver()
        self.resolver = resolver or PathResolver(client, root_folder_id, collisions=self.collisions)

    @property
    def root_folder_id(self) -> str:
        return self.resolver.root_folder_id

    # Existence

    @_operation("check file existence")
    def file_exists(self, path: str, cancel: Optional[threading.Event] = None) -> bool:
        return self.resolver.file_exists(path, cancel)

    @_operation("check directory existence")
    def directory_exists(self, path: str, cancel: Optional[threading.Event] = None) -> bool:
        return self.resolver.folder_exists(path, cancel)

    # Reading

    @_operation("resolve file")
    def file_id(self, path: str, cancel: Optional[threading.Event] = None) -> str:
        return self.resolver.resolve_file(path, cancel)

    @_operation("resolve directory")
    def folder_id(self, path: str, cancel: Optional[threading.Event] = None) -> str:
        return self.resolver.resolve_folder(path, cancel)

    @_operation("read file")
    def read(self, path: str, cancel: Optional[threading.Event] = None) -> bytes:
        return self.client.download_file(self.resolver.resolve_file(path, cancel), cancel=cancel)

    def read_stream(self, path: str, cancel: Optional[threading.Event] = None) -> Iterator[bytes]:
        file_id = self.file_id(path, cancel)
        try:
            yield from self.client.stream_file(file_id, cancel=cancel)
        except BoxFSError as e:
            raise FilesystemOperationFailed("read file", path, type(e).__name__, str(e)) from e

    @_operation("retrieve metadata")
    def metadata(self, path: str, cancel: Optional[threading.Event] = None) -> RemoteNode:
        found = self.resolver.lookup_file(path, cancel)
        if found:
            return self.client.get_metadata(found.id, NodeKind.FILE, cancel=cancel)
        folder_id = self.resolver.resolve_folder(path, cancel)
        return self.client.get_metadata(folder_id, NodeKind.FOLDER, cancel=cancel)

    @_operation("retrieve file size")
    def file_size(self, path: str, cancel: Optional[threading.Event] = None) -> Optional[int]:
        return self._file_metadata(path, cancel).size

    @_operation("retrieve mime type")
    def mime_type(self, path: str, cancel: Optional[threading.Event] = None) -> Optional[str]:
        return self._file_metadata(path, cancel).mime_type

    @_operation("retrieve last modified")
    def last_modified(self, path: str, cancel: Optional[threading.Event] = None) -> Optional[datetime]:
        return self._file_metadata(path, cancel).modified_at

    def _file_metadata(self, path: str, cancel: Optional[threading.Event]) -> RemoteNode:
        return self.client.get_metadata(self.resolver.resolve_file(path, cancel), NodeKind.FILE, cancel=cancel)

    def list_contents(
        self, path: str = "", deep: bool = False, cancel: Optional[threading.Event] = None
    ) -> Iterator[ContentEntry]:
        """Lazily list a folder, optionally descending into subfolders.

        Descent is breadth-first over an explicit queue of folders; each
        folder costs one listing call when its turn comes. Re-invoke to
        restart from the top.
        """
        try:
            pending = deque([(normalize_path(path), self.resolver.resolve_folder(path, cancel))])
            while pending:
                folder_path, folder_id = pending.popleft()
                for node in self.client.list_folder(folder_id, cancel=cancel):
                    item_path = join_path(folder_path, node.name)
                    self.resolver.remember(item_path, node)
                    yield ContentEntry(item_path, node)
                    if deep and node.is_folder:
                        pending.append((item_path, node.id))
        except BoxFSError as e:
            raise FilesystemOperationFailed("list contents", path, type(e).__name__, str(e)) from e

    # Writing

    @_operation("write file")
    def write(
        self,
        path: str,
        contents: Union[bytes, str],
        collision_strategy: Strategy = None,
        cancel: Optional[threading.Event] = None,
    ) -> RemoteNode:
        """Upload ``contents`` to ``path``, creating parent folders as needed.

        Returns the stored node; under ``skip`` that is the untouched existing
        file, under ``rename`` its name may differ from the requested one.
        """
        if isinstance(contents, str):
            contents = contents.encode("utf-8")
        return self._upload("write file", path, contents, collision_strategy, cancel)

    @_operation("write stream")
    def write_stream(
        self,
        path: str,
        stream: BinaryIO,
        collision_strategy: Strategy = None,
        cancel: Optional[threading.Event] = None,
    ) -> RemoteNode:
        """Like write, but uploads from a binary file object without buffering it."""
        return self._upload("write stream", path, stream, collision_strategy, cancel)

    def _upload(
        self,
        operation: str,
        path: str,
        content: Union[bytes, BinaryIO],
        collision_strategy: Strategy,
        cancel: Optional[threading.Event],
    ) -> RemoteNode:
        location = split_path(path)
        if location.is_root:
            raise FilesystemOperationFailed(operation, path, "InvalidPath", "path has no file name")
        strategy = self.collisions.effective_strategy(collision_strategy)
        parent_id = self.resolver.ensure_folder(location.parent, cancel)

        outcome = self.collisions.resolve_create_name(
            parent_id,
            location.basename,
            NodeKind.FILE,
            strategy,
            lambda folder_id: self.client.list_folder(folder_id, cancel=cancel),
        )
        if isinstance(outcome, UseExisting):
            logger.info(f"'{path}' already exists as {outcome.node_id}; skipped upload")
            self.resolver.cache.put(path, NodeKind.FILE, outcome.node_id)
            return self.client.get_metadata(outcome.node_id, NodeKind.FILE, cancel=cancel)

        node = self.client.upload_file(
            parent_id,
            outcome.name,
            content,
            overwrite=strategy is CollisionStrategy.OVERWRITE,
            cancel=cancel,
        )
        stored_path = join_path(location.parent, node.name or outcome.name)
        self.resolver.remember(stored_path, node)
        logger.info(f"Uploaded '{stored_path}' ({node.id})")
        return node

    @_operation("create directory")
    def create_directory(self, path: str, cancel: Optional[threading.Event] = None) -> str:
        return self.resolver.ensure_folder(path, cancel)

    @_operation("delete file")
    def delete(self, path: str, cancel: Optional[threading.Event] = None) -> None:
        file_id = self.resolver.resolve_file(path, cancel)
        try:
            self.client.delete_file(file_id, cancel=cancel)
        finally:
            self.resolver.invalidate(path)

    @_operation("delete directory")
    def delete_directory(self, path: str, recursive: bool = True, cancel: Optional[threading.Event] = None) -> None:
        if split_path(path).is_root:
            raise FilesystemOperationFailed("delete directory", path, "InvalidPath", "refusing to delete the root folder")
        folder_id = self.resolver.resolve_folder(path, cancel)
        try:
            self.client.delete_folder(folder_id, recursive, cancel=cancel)
        finally:
            self.resolver.invalidate(path)

    def _forget(self, *paths: str) -> None:
        # runs even when the remote call failed, since it may have applied
        for path in paths:
            self.resolver.invalidate(path)

    @_operation("move file")
    def move(self, path: str, destination: str, cancel: Optional[threading.Event] = None) -> RemoteNode:
        file_id = self.resolver.resolve_file(path, cancel)
        target = split_path(destination)
        dest_parent_id = self.resolver.ensure_folder(target.parent, cancel)

        new_name = target.basename if target.basename != split_path(path).basename else None
        try:
            node = self.client.move_file(file_id, dest_parent_id, new_name, cancel=cancel)
        finally:
            self._forget(path, destination)
        self.resolver.remember(destination, node)
        return node

    @_operation("move directory")
    def move_directory(self, path: str, destination: str, cancel: Optional[threading.Event] = None) -> RemoteNode:
        if split_path(path).is_root:
            raise FilesystemOperationFailed("move directory", path, "InvalidPath", "cannot move the root folder")
        folder_id = self.resolver.resolve_folder(path, cancel)
        target = split_path(destination)
        dest_parent_id = self.resolver.ensure_folder(target.parent, cancel)

        new_name = target.basename if target.basename != split_path(path).basename else None
        try:
            node = self.client.move_folder(folder_id, dest_parent_id, new_name, cancel=cancel)
        finally:
            self._forget(path, destination)
        self.resolver.remember(destination, node)
        return node

    @_operation("copy file")
    def copy(
        self,
        path: str,
        destination: str,
        collision_strategy: Strategy = None,
        cancel: Optional[threading.Event] = None,
    ) -> RemoteNode:
        file_id = self.resolver.resolve_file(path, cancel)
        target = split_path(destination)
        dest_parent_id = self.resolver.ensure_folder(target.parent, cancel)

        outcome = self.collisions.resolve_create_name(
            dest_parent_id,
            target.basename,
            NodeKind.FILE,
            collision_strategy,
            lambda folder_id: self.client.list_folder(folder_id, cancel=cancel),
        )
        if isinstance(outcome, UseExisting):
            return self.client.get_metadata(outcome.node_id, NodeKind.FILE, cancel=cancel)
        node = self.client.copy_file(file_id, dest_parent_id, outcome.name, cancel=cancel)
        self.resolver.remember(join_path(target.parent, node.name or outcome.name), node)
        return node

    @_operation("create shared link")
    def share_link(
        self,
        path: str,
        access: str = "open",
        password: Optional[str] = None,
        cancel: Optional[threading.Event] = None,
    ) -> str:
        file_id = self.resolver.resolve_file(path, cancel)
        return self.client.create_shared_link(file_id, access=access, password=password, cancel=cancel)

    def close(self) -> None:
        self.client.close()
        self.client.auth.close()


def box_filesystem_from_settings(settings: Any = None) -> BoxFilesystem:
    """Wire credential manager, API client and resolvers from Settings."""
    if settings is None:
        from config.settings import settings
    collisions = CollisionResolver(settings.BOX_COLLISION_STRATEGY, settings.BOX_MAX_RENAME_ATTEMPTS)
    return BoxFilesystem(
        BoxApiClient.from_settings(settings),
        root_folder_id=settings.BOX_ROOT_FOLDER_ID,
        collisions=collisions,
    )
