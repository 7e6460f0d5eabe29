"""
Utility functions for arctree.
"""

import datetime
import logging
import os
import posixpath
from typing import overload

from arctree.types import EntryKind

logger = logging.getLogger(__name__)


@overload
def decode_bytes_with_fallback(data: None, encodings: list[str]) -> None: ...


@overload
def decode_bytes_with_fallback(data: bytes, encodings: list[str]) -> str: ...


def decode_bytes_with_fallback(data: bytes | None, encodings: list[str]) -> str | None:
    """
    Decode bytes with a list of encodings, replacing undecodable bytes if all fail.
    """
    if data is None:
        return None

    assert isinstance(data, bytes), "Expected bytes for data"

    for encoding in encodings:
        try:
            return data.decode(encoding)
        except (UnicodeDecodeError, LookupError):
            continue

    logger.warning("Failed to decode %r, falling back to utf-8", data)
    return data.decode("utf-8", errors="replace")


def split_path(path: str) -> list[str]:
    """Split an archive path into its non-empty segments.

    ``.`` segments are dropped, so ``./a//b/`` and ``/a/b`` give the same result.
    ``..`` removes the previous segment and never climbs above the root.
    """
    segments: list[str] = []
    for segment in path.split("/"):
        if not segment or segment == ".":
            continue
        if segment == "..":
            if segments:
                segments.pop()
            continue
        segments.append(segment)
    return segments


def join_path(segments: list[str]) -> str:
    return "/" + "/".join(segments)


def normalize_path(path: str) -> str:
    """Return the absolute form of an archive path, as used as an index key."""
    return join_path(split_path(path.replace("\\", "/")))


def resolve_link_target(parent_path: str, target: str) -> str:
    """Resolve a symlink target relative to the directory holding the link."""
    if target.startswith("/"):
        return posixpath.normpath(target)
    return posixpath.normpath(posixpath.join(parent_path, target))


def set_file_mtime(full_path: str, mtime: datetime.datetime, kind: EntryKind) -> bool:
    kwargs = {}
    if kind == EntryKind.SYMLINK:
        if os.utime not in os.supports_follow_symlinks:
            return False
        kwargs["follow_symlinks"] = False

    os.utime(full_path, (mtime.timestamp(), mtime.timestamp()), **kwargs)
    return True


def set_file_permissions(full_path: str, permissions: int, kind: EntryKind) -> bool:
    kwargs = {}
    if kind == EntryKind.SYMLINK:
        if os.chmod not in os.supports_follow_symlinks:
            return False
        kwargs["follow_symlinks"] = False

    os.chmod(full_path, permissions, **kwargs)
    return True
