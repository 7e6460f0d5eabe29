"""Immutable entry objects making up an archive's tree."""

from __future__ import annotations

import types
from datetime import datetime
from typing import Any, BinaryIO, Iterator, Mapping, Optional, Protocol

from arctree.internal.utils import resolve_link_target
from arctree.types import DataRange, EntryKind


class EntryOpener(Protocol):
    """Opens the data of entries; implemented per archive format."""

    def open_entry(self, entry: DataEntry, random_access: bool) -> BinaryIO: ...


class ArchiveEntry:
    """An entry (file, directory or symbolic link) in an archive.

    Entries are created once while the archive is parsed and never change
    afterwards. Format-specific header data is available in :attr:`metadata`; it is
    a :class:`~arctree.formats.tar_header.TarHeader` for Tar archives and a
    :class:`~arctree.formats.zip_headers.ZipEntryInfo` for Zip archives. Synthetic
    Zip directories have no metadata.
    """

    kind: EntryKind

    __slots__ = ("_path", "_name", "_parent", "_metadata")

    def __init__(self, path: str, metadata: Any = None):
        self._path = path
        self._name = path.rsplit("/", 1)[-1]
        self._parent: Optional[DirectoryEntry] = None
        self._metadata = metadata

    def _attach(self, parent: DirectoryEntry) -> None:
        assert self._parent is None, f"{self._path} already has a parent"
        self._parent = parent

    @property
    def path(self) -> str:
        """Absolute path in the archive, ``/``-separated. The root is ``/``."""
        return self._path

    @property
    def name(self) -> str:
        """The last segment of the path; empty for the root."""
        return self._name

    @property
    def parent(self) -> Optional[DirectoryEntry]:
        return self._parent

    @property
    def metadata(self) -> Any:
        return self._metadata

    @property
    def is_dir(self) -> bool:
        return self.kind == EntryKind.DIR

    @property
    def is_file(self) -> bool:
        return self.kind == EntryKind.FILE

    @property
    def is_symlink(self) -> bool:
        return self.kind == EntryKind.SYMLINK

    @property
    def mode(self) -> Optional[int]:
        """Permission bits, if the archive stores them."""
        return getattr(self._metadata, "mode", None)

    @property
    def mtime(self) -> Optional[datetime]:
        return getattr(self._metadata, "mtime_datetime", None)

    @property
    def uid(self) -> Optional[int]:
        return getattr(self._metadata, "uid", None)

    @property
    def gid(self) -> Optional[int]:
        return getattr(self._metadata, "gid", None)

    @property
    def uname(self) -> Optional[str]:
        return getattr(self._metadata, "uname", None)

    @property
    def gname(self) -> Optional[str]:
        return getattr(self._metadata, "gname", None)

    @property
    def crc32(self) -> Optional[int]:
        return getattr(self._metadata, "crc32", None)

    @property
    def comment(self) -> Optional[str]:
        return getattr(self._metadata, "comment", None)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._path!r})"


class DirectoryEntry(ArchiveEntry):
    kind = EntryKind.DIR

    __slots__ = ("_children", "_synthetic")

    def __init__(
        self,
        path: str,
        children: Mapping[str, ArchiveEntry],
        metadata: Any = None,
        synthetic: bool = False,
    ):
        super().__init__(path, metadata)
        self._children = types.MappingProxyType(dict(children))
        self._synthetic = synthetic
        for child in self._children.values():
            child._attach(self)

    @property
    def children(self) -> Mapping[str, ArchiveEntry]:
        """Read-only mapping from child name to child entry."""
        return self._children

    @property
    def is_synthetic(self) -> bool:
        """True if the directory has no header of its own in the archive."""
        return self._synthetic

    def get_child(self, name: str) -> Optional[ArchiveEntry]:
        return self._children.get(name)

    def is_empty(self) -> bool:
        return not self._children

    def __iter__(self) -> Iterator[ArchiveEntry]:
        return iter(self._children.values())

    def __len__(self) -> int:
        return len(self._children)

    def __contains__(self, name: object) -> bool:
        return name in self._children


class DataEntry(ArchiveEntry):
    """An entry that has data stored in the archive."""

    __slots__ = ("_data_range", "_size", "_opener")

    def __init__(
        self,
        path: str,
        data_range: DataRange,
        size: int,
        opener: EntryOpener,
        metadata: Any = None,
    ):
        super().__init__(path, metadata)
        self._data_range = data_range
        self._size = size
        self._opener = opener

    @property
    def data_range(self) -> DataRange:
        """Where the stored (possibly compressed) data lives in the archive file."""
        return self._data_range

    @property
    def size(self) -> int:
        """Uncompressed size of the data."""
        return self._size

    @property
    def compressed_size(self) -> int:
        return self._data_range.length

    @property
    def compression_method(self) -> Optional[str]:
        return getattr(self._metadata, "compression_method_name", None)

    def open(self) -> BinaryIO:
        """Open the entry data for sequential reading.

        Each call returns an independent stream. Streams stop working when the
        archive is closed.

        Raises:
            ArchiveClosedError: If the archive has been closed.
            UnsupportedCompressionMethodError: If the data cannot be decompressed.
        """
        return self._opener.open_entry(self, random_access=False)

    def open_random_access(self) -> BinaryIO:
        """Open the entry data for random access (seekable) reading.

        Raises:
            ArchiveClosedError: If the archive has been closed.
            RandomAccessNotSupportedError: If the data is stored with a compression
                method that can only be read sequentially.
        """
        return self._opener.open_entry(self, random_access=True)

    def read(self) -> bytes:
        """Return the whole entry data."""
        with self.open() as stream:
            return stream.read()


class FileEntry(DataEntry):
    kind = EntryKind.FILE

    __slots__ = ()


class SymlinkEntry(DataEntry):
    kind = EntryKind.SYMLINK

    __slots__ = ("_target", "_has_target")

    def __init__(
        self,
        path: str,
        target: str,
        data_range: DataRange,
        opener: EntryOpener,
        metadata: Any = None,
        size: int = 0,
        has_target: bool = True,
    ):
        super().__init__(path, data_range, size, opener, metadata)
        self._target = target
        self._has_target = has_target

    @property
    def target(self) -> str:
        """The link target, absolute or relative to the link's parent directory.

        Empty if the target could not be read when the archive was opened (Zip
        symlinks that are encrypted or use an unsupported compression method).
        """
        return self._target

    @property
    def has_target(self) -> bool:
        return self._has_target

    @property
    def is_absolute_target(self) -> bool:
        return self._target.startswith("/")

    @property
    def resolved_path(self) -> Optional[str]:
        """The absolute archive path the link points to, or None if the target is
        not known."""
        if not self._has_target:
            return None
        parent_path = self._path.rsplit("/", 1)[0] or "/"
        return resolve_link_target(parent_path, self._target)
