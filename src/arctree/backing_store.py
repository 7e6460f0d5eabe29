"""Shared access to the archive file through independent range-bounded readers."""

import io
import logging
import os
import threading
from typing import IO, BinaryIO, Callable, Optional, Union

from arctree.exceptions import (
    ArchiveClosedError,
    ArchiveEOFError,
    ArchiveError,
    ArchiveIOError,
    ArchiveNotSupportedError,
)
from arctree.internal.io_helpers import (
    ExceptionTranslatingIO,
    is_seekable,
    read_exact,
    translate_os_error,
)

logger = logging.getLogger(__name__)

ArchiveSource = Union[str, bytes, os.PathLike, BinaryIO]


class BackingStore:
    """Owns the archive file and hands out independent readers over byte ranges.

    Every reader keeps its own position; reads go through :meth:`read_at`, which
    seeks and reads the shared handle atomically. Readers therefore never observe
    each other's position, and any number of them can be used at the same time
    from different threads.

    The store is closed exactly once. After that, every reader (including ones
    obtained earlier) raises :class:`ArchiveClosedError`.
    """

    def __init__(self, source: ArchiveSource, archive_path: Optional[str] = None):
        if isinstance(source, (str, bytes, os.PathLike)):
            self.archive_path = archive_path or os.fsdecode(source)
            try:
                self._file: IO[bytes] = open(source, "rb")
            except OSError as e:
                raise ArchiveIOError(f"Cannot open {self.archive_path}: {e}") from e
            self._should_close = True
        else:
            if not is_seekable(source):
                raise ArchiveNotSupportedError(
                    "Archives can only be read from seekable streams"
                )
            self.archive_path = archive_path or getattr(source, "name", None)
            self._file = source
            self._should_close = False

        self._io_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._closed = False
        self._readers: set["RangeReader"] = set()

        try:
            self.size = self._file.seek(0, io.SEEK_END)
        except OSError as e:
            self._release()
            raise ArchiveIOError(f"Cannot determine archive size: {e}") from e

    @property
    def closed(self) -> bool:
        return self._closed

    def check_open(self) -> None:
        if self._closed:
            raise ArchiveClosedError(f"Archive {self.archive_path} is closed")

    def read_at(self, position: int, n: int) -> bytes:
        """Read up to ``n`` bytes starting at ``position``, without moving any reader."""
        with self._io_lock:
            # close() releases the file under the same lock
            self.check_open()
            if n <= 0 or position >= self.size:
                return b""
            try:
                self._file.seek(position)
                return read_exact(self._file, n)
            except OSError as e:
                raise ArchiveIOError(
                    f"Error reading {self.archive_path} at offset {position}: {e}"
                ) from e

    def open_range(self, start: int, length: int) -> "RangeReader":
        """Open a new reader over ``[start, start + length)``."""
        with self._state_lock:
            self.check_open()
            if start < 0 or length < 0 or start + length > self.size:
                raise ArchiveEOFError(
                    f"Range [{start}, {start + length}) extends past the end of the "
                    f"archive (size {self.size})",
                    start,
                )
            reader = RangeReader(self, start, length)
            self._readers.add(reader)
        return reader

    def open_all(self) -> "RangeReader":
        return self.open_range(0, self.size)

    def _forget(self, reader: "RangeReader") -> None:
        with self._state_lock:
            self._readers.discard(reader)

    def close(self) -> None:
        """Close every open reader and release the file. Safe to call repeatedly."""
        with self._state_lock:
            if self._closed:
                return
            self._closed = True
            readers = list(self._readers)
            self._readers.clear()

        for reader in readers:
            reader.close()
        with self._io_lock:
            self._release()
        logger.debug("Closed backing store for %s", self.archive_path)

    def _release(self) -> None:
        if self._should_close:
            try:
                self._file.close()
            except OSError as e:
                raise ArchiveIOError(f"Error closing {self.archive_path}: {e}") from e


class RangeReader(io.RawIOBase, BinaryIO):
    """A seekable read-only view over part of a :class:`BackingStore`."""

    def __init__(self, store: BackingStore, start: int, length: int):
        super().__init__()
        self._store = store
        self._start = start
        self._length = length
        self._pos = 0

    @property
    def length(self) -> int:
        return self._length

    def _check(self) -> None:
        self._store.check_open()
        if self.closed:
            raise ValueError("I/O operation on closed file.")

    def readable(self) -> bool:
        return True

    def writable(self) -> bool:
        return False

    def seekable(self) -> bool:
        return True

    def read(self, n: int = -1) -> bytes:
        self._check()
        remaining = self._length - self._pos
        if n is None or n < 0 or n > remaining:
            n = remaining
        if n <= 0:
            return b""
        data = self._store.read_at(self._start + self._pos, n)
        self._pos += len(data)
        return data

    def readall(self) -> bytes:
        return self.read(-1)

    def readinto(self, b: bytearray | memoryview) -> int:
        data = self.read(len(b))
        b[: len(data)] = data
        return len(data)

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        self._check()
        if whence == io.SEEK_SET:
            new_pos = offset
        elif whence == io.SEEK_CUR:
            new_pos = self._pos + offset
        elif whence == io.SEEK_END:
            new_pos = self._length + offset
        else:
            raise ValueError(f"Invalid whence: {whence}")
        if new_pos < 0:
            raise ValueError(f"Invalid offset: {offset}")
        self._pos = new_pos
        return self._pos

    def tell(self) -> int:
        self._check()
        return self._pos

    def close(self) -> None:
        if not self.closed:
            self._store._forget(self)
        super().close()


class GuardedStream(ExceptionTranslatingIO):
    """Entry data stream that stops working as soon as its archive is closed.

    Decompressing streams may hold buffered data; checking the store on every
    call makes sure none of it is returned after the archive is closed.
    """

    def __init__(
        self,
        inner: IO[bytes] | Callable[[], IO[bytes]],
        store: BackingStore,
        exception_translator: Callable[[Exception], Optional[ArchiveError]] = translate_os_error,
        entry_path: str | None = None,
    ):
        self._store = store
        super().__init__(
            inner,
            exception_translator,
            archive_path=store.archive_path,
            entry_path=entry_path,
        )

    def read(self, n: int = -1) -> bytes:
        self._store.check_open()
        return super().read(n)

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        self._store.check_open()
        return super().seek(offset, whence)
