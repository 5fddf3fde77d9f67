from __future__ import annotations
from dataclasses import dataclass
from typing import Iterator, Optional

SEPARATOR = "/"
ROOT = ""


@dataclass(frozen=True)
class ResolvedPath:
    """A path split into its parent directory and base name.

    The root has no parent (``parent is None``) and an empty base name.
    """

    parent: Optional[str]
    basename: str

    @property
    def is_root(self) -> bool:
        return self.parent is None


def normalize_path(path: str) -> str:
    """Normalize a slash-separated path into a cache key.

    Leading/trailing separators are stripped, empty and ``.`` segments are
    dropped. The root ("" or "/") normalizes to "". ``..`` is rejected.
    """
    segments = []
    for segment in (path or "").split(SEPARATOR):
        if segment in ("", "."):
            continue
        if segment == "..":
            raise ValueError(f"Path traversal is not allowed: {path!r}")
        segments.append(segment)
    return SEPARATOR.join(segments)


def is_root(path: str) -> bool:
    return normalize_path(path) == ROOT


def segments(path: str) -> list[str]:
    normalized = normalize_path(path)
    return normalized.split(SEPARATOR) if normalized else []


def split_path(path: str) -> ResolvedPath:
    normalized = normalize_path(path)
    if not normalized:
        return ResolvedPath(parent=None, basename="")
    head, sep, tail = normalized.rpartition(SEPARATOR)
    if not sep:
        return ResolvedPath(parent=ROOT, basename=normalized)
    return ResolvedPath(parent=head, basename=tail)


def join_path(parent: str, name: str) -> str:
    parent = normalize_path(parent)
    return f"{parent}{SEPARATOR}{name}" if parent else name


def ancestors(path: str) -> Iterator[str]:
    """Yield the strict ancestors of ``path``, nearest first, excluding the root."""
    current = split_path(path).parent
    while current:
        yield current
        current = split_path(current).parent


def is_descendant(candidate: str, path: str) -> bool:
    """True if ``candidate`` lies strictly under ``path`` (both normalized)."""
    if not path:
        return bool(candidate)
    return candidate.startswith(path + SEPARATOR)
