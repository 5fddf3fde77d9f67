from __future__ import annotations
import threading
from typing import Optional


class BoxFSError(Exception):
    """Base class for every error raised by the Box filesystem layer."""


class InvalidConfiguration(BoxFSError):
    """Missing identifiers or unusable key material."""


class Cancelled(BoxFSError):
    """The caller cancelled the operation before the next remote call."""


class RemoteStoreError(BoxFSError):
    """Raised when the remote store rejects a call or cannot be reached."""

    def __init__(self, message: str, status_code: Optional[int] = None, item_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.item_id = item_id


class NotFound(RemoteStoreError):
    pass


class Conflict(RemoteStoreError):
    """Name collision rejected by the remote side.

    ``item_id`` carries the id of the conflicting item when Box reports it.
    """


class AuthenticationFailure(RemoteStoreError):
    pass


class TransientFailure(RemoteStoreError):
    pass


class FilesystemOperationFailed(BoxFSError):
    """Uniform failure raised by the filesystem facade.

    ``reason`` is the class name of the underlying error (``NotFound``,
    ``Conflict`` ...), the original exception is chained as ``__cause__``.
    """

    def __init__(self, operation: str, location: str, reason: str, message: str) -> None:
        super().__init__(f"Unable to {operation} at '{location}': {message}")
        self.operation = operation
        self.location = location
        self.reason = reason


def raise_if_cancelled(cancel: Optional[threading.Event]) -> None:
    if cancel is not None and cancel.is_set():
        raise Cancelled("operation cancelled")
