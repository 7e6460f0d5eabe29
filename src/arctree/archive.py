import logging
import types
from typing import Iterator, Mapping, Optional

from arctree.backing_store import BackingStore
from arctree.entries import ArchiveEntry, DirectoryEntry
from arctree.exceptions import ArchiveEntryNotFoundError
from arctree.internal.utils import normalize_path
from arctree.types import ArchiveFormat

logger = logging.getLogger(__name__)


class Archive:
    """A parsed Tar or Zip archive.

    The entry tree and the path index are built once, when the archive is opened,
    and never change. They stay usable after :meth:`close`, but opening or reading
    entry data then raises :class:`~arctree.exceptions.ArchiveClosedError`.

    Archives are context managers; leaving the ``with`` block closes them.
    """

    def __init__(
        self,
        store: BackingStore,
        format: ArchiveFormat,
        root: DirectoryEntry,
        index: Mapping[str, ArchiveEntry],
        comment: Optional[str] = None,
    ):
        self._store = store
        self._format = format
        self._root = root
        self._index = types.MappingProxyType(dict(index))
        self._comment = comment
        logger.debug(
            "Opened %s archive %s with %d entries",
            format,
            store.archive_path,
            len(self._index),
        )

    @property
    def format(self) -> ArchiveFormat:
        return self._format

    @property
    def archive_path(self) -> Optional[str]:
        return self._store.archive_path

    @property
    def comment(self) -> Optional[str]:
        """The archive comment (Zip only)."""
        return self._comment

    @property
    def closed(self) -> bool:
        return self._store.closed

    def root(self) -> DirectoryEntry:
        return self._root

    def get(self, path: str) -> Optional[ArchiveEntry]:
        """Return the entry at ``path``, or None.

        ``path`` is normalized first, so ``a/b``, ``/a/b/`` and ``/a/./b`` all find
        the same entry.
        """
        return self._index.get(normalize_path(path))

    def get_entry(self, path: str) -> ArchiveEntry:
        entry = self.get(path)
        if entry is None:
            error = ArchiveEntryNotFoundError(f"No entry {path!r} in the archive")
            error.archive_path = self.archive_path
            error.entry_path = path
            raise error
        return entry

    def entries(self) -> Mapping[str, ArchiveEntry]:
        """Read-only mapping from absolute path to entry, including the root."""
        return self._index

    def size(self) -> int:
        """Number of entries, counting the root."""
        return len(self._index)

    def close(self) -> None:
        """Release the archive file. Calling it again does nothing."""
        self._store.close()

    def __enter__(self) -> "Archive":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __iter__(self) -> Iterator[ArchiveEntry]:
        return iter(self._index.values())

    def __contains__(self, path: object) -> bool:
        return isinstance(path, str) and self.get(path) is not None

    def __len__(self) -> int:
        return len(self._index)

    def __repr__(self) -> str:
        return f"Archive({self.archive_path!r}, format={self._format})"
