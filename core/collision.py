from __future__ import annotations
import logging
import posixpath
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Sequence, Union

from connectors.base import NodeKind, RemoteNode
from core.errors import Conflict

logger = logging.getLogger(__name__)

DEFAULT_MAX_RENAME_ATTEMPTS = 1000


class CollisionStrategy(str, Enum):
    RENAME = "rename"
    OVERWRITE = "overwrite"
    SKIP = "skip"

    @classmethod
    def parse(cls, value: Union[str, "CollisionStrategy"]) -> "CollisionStrategy":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(
                f"Unknown collision strategy {value!r}; expected one of {[s.value for s in cls]}"
            ) from None


@dataclass(frozen=True)
class UseName:
    """Create the object under ``name``."""

    name: str


@dataclass(frozen=True)
class UseExisting:
    """Do not create anything; the sibling ``node_id`` already satisfies the request."""

    node_id: str


Outcome = Union[UseName, UseExisting]


def numbered_name(name: str, n: int, kind: NodeKind) -> str:
    """Insert ``" (n)"`` before the extension of a file, or after a folder name.

    >>> numbered_name("report.pdf", 1, NodeKind.FILE)
    'report (1).pdf'
    >>> numbered_name("2024.q1", 2, NodeKind.FOLDER)
    '2024.q1 (2)'
    """
    if kind is NodeKind.FOLDER:
        return f"{name} ({n})"
    stem, ext = posixpath.splitext(name)
    return f"{stem} ({n}){ext}"


class CollisionResolver:
    """Decide the effective name of a create/upload under a collision strategy.

    The resolver only inspects the sibling listing it is handed; it never
    touches the path cache. ``Rename`` probes the single listing snapshot
    linearly and gives up with ``Conflict`` after ``max_rename_attempts``
    numbered candidates.
    """

    def __init__(
        self,
        default_strategy: Union[str, CollisionStrategy] = CollisionStrategy.RENAME,
        max_rename_attempts: int = DEFAULT_MAX_RENAME_ATTEMPTS,
    ) -> None:
        if max_rename_attempts < 1:
            raise ValueError("max_rename_attempts must be at least 1")
        self.default_strategy = CollisionStrategy.parse(default_strategy)
        self.max_rename_attempts = max_rename_attempts

    def effective_strategy(self, strategy: Union[str, CollisionStrategy, None]) -> CollisionStrategy:
        return self.default_strategy if strategy is None else CollisionStrategy.parse(strategy)

    def resolve_create_name(
        self,
        parent_id: str,
        desired_name: str,
        kind: NodeKind,
        strategy: Union[str, CollisionStrategy, None],
        list_siblings: Callable[[str], Sequence[RemoteNode]],
    ) -> Outcome:
        strategy = self.effective_strategy(strategy)
        if strategy is CollisionStrategy.OVERWRITE:
            return UseName(desired_name)

        taken = {node.name: node.id for node in list_siblings(parent_id) if node.kind is kind}
        if desired_name not in taken:
            return UseName(desired_name)

        if strategy is CollisionStrategy.SKIP:
            logger.debug(f"Skipping create of {kind.value} '{desired_name}' in {parent_id}; exists as {taken[desired_name]}")
            return UseExisting(taken[desired_name])

        for n in range(1, self.max_rename_attempts + 1):
            candidate = numbered_name(desired_name, n, kind)
            if candidate not in taken:
                logger.debug(f"Renaming '{desired_name}' to '{candidate}' in folder {parent_id}")
                return UseName(candidate)
        raise Conflict(
            f"No free name for '{desired_name}' in folder {parent_id} after {self.max_rename_attempts} attempts",
            status_code=409,
            item_id=taken[desired_name],
        )
