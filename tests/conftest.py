from __future__ import annotations

import itertools
from collections import Counter
from typing import Optional

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from connectors.base import NodeKind, RemoteNode
from core.errors import Conflict, NotFound, raise_if_cancelled


class FakeAuth:
    def __init__(self) -> None:
        self.closed = False

    def close(self) -> None:
        self.closed = True


class FakeBoxStore:
    """In-memory stand-in for BoxApiClient, counting every remote call."""

    def __init__(self, root_id: str = "0") -> None:
        self.root_id = root_id
        self.nodes: dict[str, dict] = {root_id: {"kind": NodeKind.FOLDER, "name": "", "parent": None}}
        self.calls: Counter = Counter()
        self.listed: list[str] = []
        self.auth = FakeAuth()
        self.api_url = "https://api.box.test/2.0"
        self._ids = itertools.count(100)

    # helpers for tests
    def add(self, parent_id: str, name: str, kind: NodeKind = NodeKind.FILE, content: bytes = b"") -> str:
        node_id = str(next(self._ids))
        self.nodes[node_id] = {"kind": kind, "name": name, "parent": parent_id, "content": content}
        return node_id

    def add_folder(self, parent_id: str, name: str) -> str:
        return self.add(parent_id, name, NodeKind.FOLDER)

    def _node(self, node_id: str) -> RemoteNode:
        n = self.nodes[node_id]
        return RemoteNode(
            kind=n["kind"],
            id=node_id,
            name=n["name"],
            size=len(n.get("content", b"")) if n["kind"] is NodeKind.FILE else None,
            parent_id=n["parent"],
        )

    def _get(self, node_id: str, kind: NodeKind) -> dict:
        n = self.nodes.get(node_id)
        if n is None or n["kind"] is not kind:
            raise NotFound(f"{kind.value} {node_id} not found", status_code=404)
        return n

    def _clash(self, parent_id: str, name: str) -> Optional[str]:
        for node_id, n in self.nodes.items():
            if n["parent"] == parent_id and n["name"] == name:
                return node_id
        return None

    def children(self, parent_id: str) -> list[str]:
        return [i for i, n in self.nodes.items() if n["parent"] == parent_id]

    # RemoteStoreClient surface
    def list_folder(self, folder_id, *, cancel=None):
        raise_if_cancelled(cancel)
        self.calls["list_folder"] += 1
        self.listed.append(folder_id)
        self._get(folder_id, NodeKind.FOLDER)
        return [self._node(i) for i in self.children(folder_id)]

    def get_metadata(self, node_id, kind=NodeKind.FILE, *, cancel=None):
        self.calls["get_metadata"] += 1
        self._get(node_id, kind)
        return self._node(node_id)

    def create_folder(self, parent_id, name, *, cancel=None):
        raise_if_cancelled(cancel)
        self.calls["create_folder"] += 1
        self._get(parent_id, NodeKind.FOLDER)
        existing = self._clash(parent_id, name)
        if existing:
            raise Conflict("Item with the same name already exists", status_code=409, item_id=existing)
        return self._node(self.add_folder(parent_id, name))

    def upload_file(self, parent_id, name, content, *, overwrite=False, cancel=None):
        self.calls["upload_file"] += 1
        if hasattr(content, "read"):
            content = content.read()
        self._get(parent_id, NodeKind.FOLDER)
        existing = self._clash(parent_id, name)
        if existing:
            if not overwrite:
                raise Conflict("Item with the same name already exists", status_code=409, item_id=existing)
            self.nodes[existing]["content"] = content
            return self._node(existing)
        return self._node(self.add(parent_id, name, content=content))

    def download_file(self, file_id, *, cancel=None):
        self.calls["download_file"] += 1
        return self._get(file_id, NodeKind.FILE)["content"]

    def stream_file(self, file_id, *, cancel=None):
        content = self.download_file(file_id)
        for i in range(0, len(content), 4):
            yield content[i:i + 4]

    def delete_file(self, file_id, *, cancel=None):
        self.calls["delete_file"] += 1
        self._get(file_id, NodeKind.FILE)
        del self.nodes[file_id]

    def delete_folder(self, folder_id, recursive=False, *, cancel=None):
        self.calls["delete_folder"] += 1
        self._get(folder_id, NodeKind.FOLDER)
        pending = [folder_id]
        while pending:
            current = pending.pop()
            pending.extend(self.children(current))
            del self.nodes[current]

    def _move(self, node_id, kind, new_parent_id, new_name):
        node = self._get(node_id, kind)
        self._get(new_parent_id, NodeKind.FOLDER)
        existing = self._clash(new_parent_id, new_name or node["name"])
        if existing and existing != node_id:
            raise Conflict("Item with the same name already exists", status_code=409, item_id=existing)
        node["parent"] = new_parent_id
        if new_name:
            node["name"] = new_name
        return self._node(node_id)

    def move_file(self, file_id, new_parent_id, new_name=None, *, cancel=None):
        self.calls["move_file"] += 1
        return self._move(file_id, NodeKind.FILE, new_parent_id, new_name)

    def move_folder(self, folder_id, new_parent_id, new_name=None, *, cancel=None):
        self.calls["move_folder"] += 1
        return self._move(folder_id, NodeKind.FOLDER, new_parent_id, new_name)

    def rename_file(self, file_id, new_name, *, cancel=None):
        self.calls["rename_file"] += 1
        self._get(file_id, NodeKind.FILE)["name"] = new_name
        return self._node(file_id)

    def rename_folder(self, folder_id, new_name, *, cancel=None):
        self.calls["rename_folder"] += 1
        self._get(folder_id, NodeKind.FOLDER)["name"] = new_name
        return self._node(folder_id)

    def copy_file(self, file_id, new_parent_id, new_name=None, *, cancel=None):
        self.calls["copy_file"] += 1
        source = self._get(file_id, NodeKind.FILE)
        name = new_name or source["name"]
        existing = self._clash(new_parent_id, name)
        if existing:
            raise Conflict("Item with the same name already exists", status_code=409, item_id=existing)
        return self._node(self.add(new_parent_id, name, content=source["content"]))

    def copy_folder(self, folder_id, new_parent_id, new_name=None, *, cancel=None):
        raise NotImplementedError

    def create_shared_link(self, file_id, access="open", password=None, unshared_at=None, *, cancel=None):
        self._get(file_id, NodeKind.FILE)
        return f"https://app.box.test/s/{file_id}-{access}"

    def close(self) -> None:
        self.calls["close"] += 1


@pytest.fixture
def store() -> FakeBoxStore:
    return FakeBoxStore()


@pytest.fixture(scope="session")
def rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def rsa_pem(rsa_key) -> str:
    return rsa_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()
