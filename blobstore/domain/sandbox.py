"""Filesystem sandbox utilities for safe path resolution."""

from dataclasses import dataclass
from pathlib import Path

PARENT_SEGMENT = ".."
NUL = "\x00"


class UnsafePath(Exception):
    """Raised when a requested path could escape the configured root directory."""


@dataclass(frozen=True)
class ResolvedLocation:
    """A sanitized request path and the filesystem location it maps to."""

    url_path: str
    location: Path

    @property
    def is_root(self) -> bool:
        """True when the request addresses the root directory itself."""
        return self.url_path == "/"


def clean_path(path: str) -> str:
    """Return the shortest rooted path equivalent to ``path``.

    Purely lexical: ``.`` segments and empty segments are dropped and ``..``
    removes the preceding segment. A ``..`` at the root is discarded.
    """
    if not path.startswith("/"):
        path = "/" + path
    segments: list[str] = []
    for segment in path.split("/"):
        if segment in ("", "."):
            continue
        if segment == PARENT_SEGMENT:
            if segments:
                segments.pop()
            continue
        segments.append(segment)
    return "/" + "/".join(segments)


def _is_unsafe(raw_path: str, cleaned: str) -> bool:
    if NUL in raw_path or NUL in cleaned:
        return True
    if PARENT_SEGMENT in raw_path.split("/"):
        return True
    # Textual check: names like "foo..bar" are rejected as well.
    return PARENT_SEGMENT in cleaned


def resolve_request_path(root: str, request_path: str) -> ResolvedLocation:
    """Map an untrusted request path onto a location inside ``root``."""
    cleaned = clean_path(request_path)
    if _is_unsafe(request_path, cleaned):
        raise UnsafePath(request_path)
    return ResolvedLocation(cleaned, Path(root).joinpath(cleaned.lstrip("/")))
