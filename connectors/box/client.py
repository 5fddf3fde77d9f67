from __future__ import annotations
import json
import logging
import threading
from typing import Any, BinaryIO, Iterator, Optional, Union

import httpx

from connectors.base import NodeKind, RemoteNode
from connectors.box.auth import CredentialManager
from core.errors import (
    AuthenticationFailure,
    Conflict,
    NotFound,
    RemoteStoreError,
    TransientFailure,
    raise_if_cancelled,
)

logger = logging.getLogger(__name__)

API_BASE = "https://api.box.com/2.0"
UPLOAD_BASE = "https://upload.box.com/api/2.0"
LIST_LIMIT = 1000
ITEM_FIELDS = "id,name,type,size,modified_at,created_at,parent"

Content = Union[bytes, BinaryIO]


def _error_message(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return resp.text or resp.reason_phrase
    if not isinstance(data, dict):
        return resp.text
    return data.get("message") or data.get("error_description") or data.get("code") or resp.text


def _move_body(new_parent_id: str, new_name: Optional[str]) -> dict:
    body: dict = {"parent": {"id": new_parent_id}}
    if new_name:
        body["name"] = new_name
    return body


def _conflict_id(resp: httpx.Response) -> Optional[str]:
    try:
        conflicts = resp.json().get("context_info", {}).get("conflicts")
    except (ValueError, AttributeError):
        return None
    if isinstance(conflicts, list):
        conflicts = conflicts[0] if conflicts else None
    if isinstance(conflicts, dict) and conflicts.get("id") is not None:
        return str(conflicts["id"])
    return None


class BoxApiClient:
    """Id-addressed Box API calls over httpx.

    Each request is authorized with a token from the CredentialManager. Box
    error responses are translated into the core error taxonomy; a 401 also
    invalidates the held token so the next call re-authenticates.
    """

    def __init__(
        self,
        auth: CredentialManager,
        api_url: str = API_BASE,
        upload_url: str = UPLOAD_BASE,
        timeout: float = 60,
        http_client: Optional[httpx.Client] = None,
    ) -> None:
        self.auth = auth
        self.api_url = api_url.rstrip("/")
        self.upload_url = upload_url.rstrip("/")
        self._http = http_client or httpx.Client(timeout=timeout)

    @classmethod
    def from_settings(cls, settings: Any, auth: Optional[CredentialManager] = None) -> "BoxApiClient":
        return cls(
            auth or CredentialManager.from_settings(settings),
            api_url=settings.BOX_API_URL,
            upload_url=settings.BOX_UPLOAD_URL,
            timeout=settings.BOX_HTTP_TIMEOUT_SECONDS,
        )

    def __enter__(self) -> "BoxApiClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        self._http.close()

    def _url(self, endpoint: str) -> str:
        return endpoint if endpoint.startswith("http") else f"{self.api_url}{endpoint}"

    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self.auth.get_token()}"}

    def _check(self, method: str, url: str, resp: httpx.Response) -> None:
        status = resp.status_code
        if status < 400:
            return
        message = _error_message(resp)
        logger.warning(f"Box API {method} {url} failed: {status} - {message}")
        if status == 401:
            self.auth.invalidate()
            raise AuthenticationFailure(f"Box API error: {message}", status_code=status)
        if status == 404:
            raise NotFound(f"Box API error: {message}", status_code=status)
        if status == 409:
            raise Conflict(f"Box API error: {message}", status_code=status, item_id=_conflict_id(resp))
        if status == 429 or status >= 500:
            raise TransientFailure(f"Box API error: {message}", status_code=status)
        raise RemoteStoreError(f"Box API error: {message}", status_code=status)

    def request(
        self,
        method: str,
        endpoint: str,
        *,
        cancel: Optional[threading.Event] = None,
        **kwargs: Any,
    ) -> dict:
        raise_if_cancelled(cancel)
        url = self._url(endpoint)
        headers = {**kwargs.pop("headers", {}), **self._headers()}
        try:
            resp = self._http.request(method, url, headers=headers, **kwargs)
        except httpx.TransportError as e:
            raise TransientFailure(f"Box API request {method} {url} failed: {e}") from e
        self._check(method, url, resp)
        if not resp.content:
            return {}
        return resp.json()

    # Folders

    def list_folder(self, folder_id: str, *, cancel: Optional[threading.Event] = None) -> list[RemoteNode]:
        """List one page of a folder's items (no pagination)."""
        data = self.list_folder_contents(folder_id, cancel=cancel)
        return [RemoteNode.from_box(e) for e in data.get("entries", []) if e.get("type") in ("file", "folder")]

    def list_folder_contents(
        self, folder_id: str, limit: int = LIST_LIMIT, offset: int = 0, *, cancel: Optional[threading.Event] = None
    ) -> dict:
        params = {"limit": limit, "offset": offset, "fields": ITEM_FIELDS}
        return self.request("GET", f"/folders/{folder_id}/items", params=params, cancel=cancel)

    def get_folder_info(self, folder_id: str, *, cancel: Optional[threading.Event] = None) -> dict:
        return self.request("GET", f"/folders/{folder_id}", cancel=cancel)

    def create_folder(self, parent_id: str, name: str, *, cancel: Optional[threading.Event] = None) -> RemoteNode:
        data = self.request("POST", "/folders", json={"name": name, "parent": {"id": parent_id}}, cancel=cancel)
        return RemoteNode.from_box(data)

    def delete_folder(self, folder_id: str, recursive: bool = False, *, cancel: Optional[threading.Event] = None) -> None:
        params = {"recursive": "true" if recursive else "false"}
        self.request("DELETE", f"/folders/{folder_id}", params=params, cancel=cancel)

    def move_folder(
        self,
        folder_id: str,
        new_parent_id: str,
        new_name: Optional[str] = None,
        *,
        cancel: Optional[threading.Event] = None,
    ) -> RemoteNode:
        data = self.request("PUT", f"/folders/{folder_id}", json=_move_body(new_parent_id, new_name), cancel=cancel)
        return RemoteNode.from_box(data)

    def rename_folder(self, folder_id: str, new_name: str, *, cancel: Optional[threading.Event] = None) -> RemoteNode:
        data = self.request("PUT", f"/folders/{folder_id}", json={"name": new_name}, cancel=cancel)
        return RemoteNode.from_box(data)

    def copy_folder(
        self,
        folder_id: str,
        new_parent_id: str,
        new_name: Optional[str] = None,
        *,
        cancel: Optional[threading.Event] = None,
    ) -> RemoteNode:
        body: dict = {"parent": {"id": new_parent_id}}
        if new_name:
            body["name"] = new_name
        data = self.request("POST", f"/folders/{folder_id}/copy", json=body, cancel=cancel)
        return RemoteNode.from_box(data)

    # Files

    def get_file_info(self, file_id: str, *, cancel: Optional[threading.Event] = None) -> dict:
        return self.request("GET", f"/files/{file_id}", cancel=cancel)

    def get_metadata(
        self, node_id: str, kind: NodeKind = NodeKind.FILE, *, cancel: Optional[threading.Event] = None
    ) -> RemoteNode:
        if kind is NodeKind.FOLDER:
            return RemoteNode.from_box(self.get_folder_info(node_id, cancel=cancel))
        return RemoteNode.from_box(self.get_file_info(node_id, cancel=cancel))

    def _uploaded_node(self, data: dict) -> RemoteNode:
        entries = data.get("entries") or []
        if not entries or not entries[0].get("id"):
            raise RemoteStoreError("Upload failed: no file ID returned")
        return RemoteNode.from_box(entries[0])

    def upload_file(
        self,
        parent_id: str,
        name: str,
        content: Content,
        *,
        overwrite: bool = False,
        cancel: Optional[threading.Event] = None,
    ) -> RemoteNode:
        """Upload a new file; with ``overwrite`` a name clash becomes a new version.

        ``content`` may be bytes or a binary file object, which httpx streams.
        """
        attributes = {"name": name, "parent": {"id": parent_id}}
        try:
            data = self.request(
                "POST",
                f"{self.upload_url}/files/content",
                data={"attributes": json.dumps(attributes)},
                files={"file": (name, content)},
                cancel=cancel,
            )
        except Conflict as e:
            if not overwrite or not e.item_id:
                raise
            logger.info(f"'{name}' exists in folder {parent_id}; uploading new version of {e.item_id}")
            if hasattr(content, "seek"):
                content.seek(0)
            return self.upload_file_version(e.item_id, content, cancel=cancel)
        return self._uploaded_node(data)

    def upload_file_version(
        self,
        file_id: str,
        content: Content,
        filename: Optional[str] = None,
        *,
        cancel: Optional[threading.Event] = None,
    ) -> RemoteNode:
        form = {"attributes": json.dumps({"name": filename})} if filename else None
        data = self.request(
            "POST",
            f"{self.upload_url}/files/{file_id}/content",
            data=form,
            files={"file": (filename or "file", content)},
            cancel=cancel,
        )
        return self._uploaded_node(data)

    def download_file(self, file_id: str, *, cancel: Optional[threading.Event] = None) -> bytes:
        return b"".join(self.stream_file(file_id, cancel=cancel))

    def stream_file(self, file_id: str, *, cancel: Optional[threading.Event] = None) -> Iterator[bytes]:
        raise_if_cancelled(cancel)
        url = f"{self.api_url}/files/{file_id}/content"
        try:
            with self._http.stream("GET", url, headers=self._headers(), follow_redirects=True) as resp:
                if resp.status_code >= 400:
                    resp.read()
                    self._check("GET", url, resp)
                for chunk in resp.iter_bytes():
                    if chunk:
                        yield chunk
        except httpx.TransportError as e:
            raise TransientFailure(f"Failed to download file {file_id}: {e}") from e

    def delete_file(self, file_id: str, *, cancel: Optional[threading.Event] = None) -> None:
        self.request("DELETE", f"/files/{file_id}", cancel=cancel)

    def move_file(
        self,
        file_id: str,
        new_parent_id: str,
        new_name: Optional[str] = None,
        *,
        cancel: Optional[threading.Event] = None,
    ) -> RemoteNode:
        """Move a file, renaming it in the same request when ``new_name`` is given."""
        data = self.request("PUT", f"/files/{file_id}", json=_move_body(new_parent_id, new_name), cancel=cancel)
        return RemoteNode.from_box(data)

    def rename_file(self, file_id: str, new_name: str, *, cancel: Optional[threading.Event] = None) -> RemoteNode:
        data = self.request("PUT", f"/files/{file_id}", json={"name": new_name}, cancel=cancel)
        return RemoteNode.from_box(data)

    def copy_file(
        self,
        file_id: str,
        new_parent_id: str,
        new_name: Optional[str] = None,
        *,
        cancel: Optional[threading.Event] = None,
    ) -> RemoteNode:
        body: dict = {"parent": {"id": new_parent_id}}
        if new_name:
            body["name"] = new_name
        data = self.request("POST", f"/files/{file_id}/copy", json=body, cancel=cancel)
        return RemoteNode.from_box(data)

    def create_shared_link(
        self,
        file_id: str,
        access: str = "open",
        password: Optional[str] = None,
        unshared_at: Optional[str] = None,
        *,
        cancel: Optional[threading.Event] = None,
    ) -> str:
        """Create (or update) the shared link of a file and return its URL.

        access: open, company or collaborators
        """
        shared_link: dict = {"access": access}
        if password:
            shared_link["password"] = password
        if unshared_at:
            shared_link["unshared_at"] = unshared_at
        data = self.request(
            "PUT",
            f"/files/{file_id}",
            params={"fields": "shared_link"},
            json={"shared_link": shared_link},
            cancel=cancel,
        )
        return (data.get("shared_link") or {}).get("url", "")

    def search(
        self,
        query: str,
        type: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
        *,
        cancel: Optional[threading.Event] = None,
    ) -> list[RemoteNode]:
        params: dict = {"query": query, "limit": limit, "offset": offset}
        if type:
            params["type"] = type  # file or folder
        data = self.request("GET", "/search", params=params, cancel=cancel)
        return [RemoteNode.from_box(e) for e in data.get("entries", []) if e.get("type") in ("file", "folder")]
