from __future__ import annotations
import mimetypes
import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import BinaryIO, Iterable, Optional, Protocol, Sequence, Union


class NodeKind(str, Enum):
    FILE = "file"
    FOLDER = "folder"


def parse_timestamp(raw: Optional[str]) -> Optional[datetime]:
    if not raw:
        return None
    try:
        return datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None


@dataclass
class RemoteNode:
    """Normalized descriptor of a Box file or folder.

    Identity is ``id``; ``name`` is a single path segment relative to the
    parent. ``size`` and ``mime_type`` only carry values for files.
    """

    kind: NodeKind
    id: str
    name: str
    size: Optional[int] = None
    modified_at: Optional[datetime] = None
    mime_type: Optional[str] = None
    parent_id: Optional[str] = None

    @property
    def is_file(self) -> bool:
        return self.kind is NodeKind.FILE

    @property
    def is_folder(self) -> bool:
        return self.kind is NodeKind.FOLDER

    @classmethod
    def from_box(cls, entry: dict) -> "RemoteNode":
        kind = NodeKind(entry.get("type", "file"))
        name = entry.get("name") or ""
        parent = entry.get("parent") or {}
        size = mime_type = None
        if kind is NodeKind.FILE:
            size = entry.get("size")
            mime_type = entry.get("mime_type") or mimetypes.guess_type(name)[0]
        return cls(
            kind=kind,
            id=str(entry.get("id")),
            name=name,
            size=size,
            modified_at=parse_timestamp(entry.get("modified_at")),
            mime_type=mime_type,
            parent_id=str(parent["id"]) if parent.get("id") is not None else None,
        )


class RemoteStoreClient(Protocol):
    """Id-addressed operations the path layer needs from the remote store.

    Every method accepts an optional ``cancel`` event that is checked before
    the request goes out.
    """

    def list_folder(self, folder_id: str, *, cancel: Optional[threading.Event] = None) -> Sequence[RemoteNode]: ...
    def get_metadata(self, node_id: str, kind: NodeKind = NodeKind.FILE, *, cancel: Optional[threading.Event] = None) -> RemoteNode: ...
    def create_folder(self, parent_id: str, name: str, *, cancel: Optional[threading.Event] = None) -> RemoteNode: ...
    def upload_file(
        self,
        parent_id: str,
        name: str,
        content: Union[bytes, BinaryIO],
        *,
        overwrite: bool = False,
        cancel: Optional[threading.Event] = None,
    ) -> RemoteNode: ...
    def download_file(self, file_id: str, *, cancel: Optional[threading.Event] = None) -> bytes: ...
    def stream_file(self, file_id: str, *, cancel: Optional[threading.Event] = None) -> Iterable[bytes]: ...
    def delete_file(self, file_id: str, *, cancel: Optional[threading.Event] = None) -> None: ...
    def delete_folder(self, folder_id: str, recursive: bool = False, *, cancel: Optional[threading.Event] = None) -> None: ...
    def move_file(
        self, file_id: str, new_parent_id: str, new_name: Optional[str] = None, *, cancel: Optional[threading.Event] = None
    ) -> RemoteNode: ...
    def move_folder(
        self, folder_id: str, new_parent_id: str, new_name: Optional[str] = None, *, cancel: Optional[threading.Event] = None
    ) -> RemoteNode: ...
    def rename_file(self, file_id: str, new_name: str, *, cancel: Optional[threading.Event] = None) -> RemoteNode: ...
    def rename_folder(self, folder_id: str, new_name: str, *, cancel: Optional[threading.Event] = None) -> RemoteNode: ...
    def copy_file(
        self, file_id: str, new_parent_id: str, new_name: Optional[str] = None, *, cancel: Optional[threading.Event] = None
    ) -> RemoteNode: ...
    def copy_folder(
        self, folder_id: str, new_parent_id: str, new_name: Optional[str] = None, *, cancel: Optional[threading.Event] = None
    ) -> RemoteNode: ...
