"""Builds the entry tree of a Tar archive from its parsed headers."""

import io
import logging
import time
from dataclasses import dataclass
from typing import BinaryIO, Optional

from arctree.backing_store import BackingStore, GuardedStream
from arctree.entries import (
    ArchiveEntry,
    DataEntry,
    DirectoryEntry,
    FileEntry,
    SymlinkEntry,
)
from arctree.exceptions import ArchiveFormatError
from arctree.formats.tar_header import (
    DEFAULT_DIRECTORY_MODE,
    DIRECTORY_TYPE,
    TarHeader,
    classify_header,
)
from arctree.formats.tar_parser import TarDataStream, TarStreamParser
from arctree.internal.path_tree import PathNode, PathTree
from arctree.types import DataRange, EntryKind

logger = logging.getLogger(__name__)


def default_directory_header(path: str, mtime: Optional[int] = None) -> TarHeader:
    """Header used for directories that are implied by other paths."""
    return TarHeader(
        path=path,
        mode=DEFAULT_DIRECTORY_MODE,
        uid=0,
        gid=0,
        size=0,
        mtime=int(time.time()) if mtime is None else mtime,
        checksum=0,
        type_flag=DIRECTORY_TYPE,
        link_name="",
        magic="",
        is_directory=True,
        uname="",
        gname="",
    )


@dataclass
class _TarRecord:
    header: TarHeader
    data_offset: int


class TarEntryOpener:
    """Tar data is stored uncompressed, so every entry supports random access."""

    def __init__(self, store: BackingStore):
        self._store = store

    def open_entry(self, entry: DataEntry, random_access: bool) -> BinaryIO:
        data_range = entry.data_range
        return GuardedStream(
            lambda: self._store.open_range(data_range.start, data_range.length),
            self._store,
            entry_path=entry.path,
        )


class TarTreeBuilder:
    """Tar entry handler that records every header in a path tree.

    Pass it to :class:`TarStreamParser` and call :meth:`build` once parsing is done.
    """

    def __init__(
        self,
        opener: TarEntryOpener,
        strict_directories: bool = True,
        synthetic_mtime: Optional[int] = None,
    ):
        self._opener = opener
        self._strict_directories = strict_directories
        self._synthetic_mtime = (
            int(time.time()) if synthetic_mtime is None else synthetic_mtime
        )
        self._tree: PathTree[_TarRecord] = PathTree()

    def __call__(self, header: TarHeader, data: TarDataStream) -> int:
        self._tree.add(header.segments, _TarRecord(header, data.position))
        # Data is read lazily later; skip over it.
        return header.size

    def _build_node(
        self,
        path: str,
        node: PathNode[_TarRecord],
        children: dict[str, ArchiveEntry],
    ) -> ArchiveEntry:
        record = node.record
        if record is None:
            return DirectoryEntry(
                path,
                children,
                metadata=default_directory_header(path, self._synthetic_mtime),
                synthetic=True,
            )

        header = record.header
        if children:
            if not header.is_directory:
                if self._strict_directories:
                    raise ArchiveFormatError(
                        f"Entry {path} has child entries but is not a directory",
                        header.header_offset,
                    )
                logger.warning(
                    "Entry %s has child entries but is not a directory; "
                    "treating it as one",
                    path,
                )
            return DirectoryEntry(path, children, metadata=header)

        kind = classify_header(header)
        if kind == EntryKind.DIR:
            return DirectoryEntry(path, children, metadata=header)

        if kind == EntryKind.SYMLINK:
            return SymlinkEntry(
                path,
                header.link_name,
                DataRange(record.data_offset, 0),
                self._opener,
                metadata=header,
            )

        return FileEntry(
            path,
            DataRange(record.data_offset, header.size),
            header.size,
            self._opener,
            metadata=header,
        )

    def build(self) -> tuple[DirectoryEntry, dict[str, ArchiveEntry]]:
        root, index = self._tree.materialize(self._build_node)
        if not isinstance(root, DirectoryEntry):
            raise ArchiveFormatError("The archive root is not a directory")
        return root, index


def build_tar_tree(
    store: BackingStore,
    charset: str = "utf-8",
    strict_directories: bool = True,
) -> tuple[DirectoryEntry, dict[str, ArchiveEntry]]:
    """Parse the whole Tar archive in ``store`` and return its root and path index."""
    builder = TarTreeBuilder(TarEntryOpener(store), strict_directories)
    with io.BufferedReader(store.open_all(), buffer_size=65536) as reader:
        TarStreamParser(charset).parse(reader, builder)
    return builder.build()
