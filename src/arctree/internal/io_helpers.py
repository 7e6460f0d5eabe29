"""Provides I/O helper functions and the exception translating stream wrapper."""

import io
import logging
from typing import (
    IO,
    Any,
    BinaryIO,
    Callable,
    NoReturn,
    Optional,
    Protocol,
    runtime_checkable,
)

from arctree.exceptions import ArchiveError, ArchiveEOFError, ArchiveIOError

logger = logging.getLogger(__name__)


@runtime_checkable
class ReadableBinaryStream(Protocol):
    def read(self, n: int = -1, /) -> bytes: ...


def read_exact(stream: ReadableBinaryStream, n: int) -> bytes:
    """Read exactly ``n`` bytes, or all available bytes if the file ends."""

    if n < 0:
        raise ValueError("n must be non-negative")

    data = bytearray()
    while len(data) < n:
        chunk = stream.read(n - len(data))
        if not chunk:
            break
        data.extend(chunk)
    return bytes(data)


def read_exact_or_raise(
    stream: ReadableBinaryStream, n: int, what: str, offset: int | None = None
) -> bytes:
    """Like :func:`read_exact`, but raise :class:`ArchiveEOFError` on a short read."""
    data = read_exact(stream, n)
    if len(data) < n:
        raise ArchiveEOFError(
            f"Unexpected end of file while reading {what} "
            f"(expected {n} bytes, got {len(data)})",
            offset,
        )
    return data


def is_seekable(stream: io.IOBase | IO[bytes]) -> bool:
    """Check if a stream is seekable."""
    if isinstance(stream, io.BufferedReader):
        return is_seekable(stream.raw)

    try:
        return stream.seekable() or False
    except AttributeError as e:
        logger.debug("Stream %s does not have a seekable method: %s", stream, e)
        return False


def translate_os_error(e: Exception) -> Optional[ArchiveError]:
    if isinstance(e, ArchiveError):
        return None
    if isinstance(e, OSError) and not isinstance(e, io.UnsupportedOperation):
        return ArchiveIOError(str(e))
    return None


class ExceptionTranslatingIO(io.RawIOBase, BinaryIO):
    """
    Wraps an I/O stream to translate specific exceptions from the underlying stream
    (file objects, decompression libraries) into ArchiveError subclasses.
    """

    def __init__(
        self,
        inner: IO[bytes] | Callable[[], IO[bytes]],
        exception_translator: Callable[[Exception], Optional[ArchiveError]],
        archive_path: str | None = None,
        entry_path: str | None = None,
    ):
        """
        Initialize the ExceptionTranslatingIO wrapper.

        Args:
            inner: The underlying binary I/O stream, or a callable that returns
                such a stream. If a callable is provided, it is called immediately
                and any exception it raises is translated too.
            exception_translator: A callable that takes an Exception instance
                (raised by the `inner` stream) and returns an Optional[ArchiveError].
                - If it returns an ArchiveError instance, that error is raised,
                  chaining the original exception.
                - If it returns None, the original exception is re-raised.
            archive_path: Stored on translated exceptions.
            entry_path: Stored on translated exceptions.
        """
        super().__init__()
        self._translate = exception_translator
        self._inner: IO[bytes]
        self.archive_path = archive_path
        self.entry_path = entry_path

        if callable(inner):
            try:
                self._inner = inner()
            except Exception as e:  # noqa: BLE001
                self._translate_exception(e)
        else:
            self._inner = inner

    def _translate_exception(self, e: Exception) -> NoReturn:
        translated = self._translate(e)
        if translated is not None:
            translated.archive_path = self.archive_path
            translated.entry_path = self.entry_path
            logger.debug(
                "Translated exception: %r -> %r",
                e,
                translated,
            )

            raise translated from e

        if not isinstance(e, (ArchiveError, ValueError)):
            logger.error("Unknown exception when reading IO: %s", e, exc_info=e)
        raise e

    def read(self, n: int = -1) -> bytes:
        if self.closed:
            raise ValueError("I/O operation on closed file.")
        try:
            return self._inner.read(n)
        except Exception as e:  # noqa: BLE001
            self._translate_exception(e)

    def readall(self) -> bytes:
        return self.read(-1)

    def readinto(self, b: bytearray | memoryview) -> int:
        data = self.read(len(b))
        b[: len(data)] = data
        return len(data)

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        try:
            return self._inner.seek(offset, whence)
        except Exception as e:  # noqa: BLE001
            self._translate_exception(e)

    def tell(self) -> int:
        return self._inner.tell()

    def readable(self) -> bool:
        return True

    def writable(self) -> bool:
        return False

    def seekable(self) -> bool:
        return is_seekable(self._inner)

    def write(self, b: Any) -> int:
        raise io.UnsupportedOperation("write")

    def close(self) -> None:
        # If the inner callable raised during __init__ there is no _inner, but
        # IOBase.__del__() will still call close().
        if not hasattr(self, "_inner"):
            return

        try:
            self._inner.close()
        except Exception as e:  # noqa: BLE001
            self._translate_exception(e)
        super().close()

    def __str__(self) -> str:
        return f"ExceptionTranslatingIO({self._inner!s})"

    def __repr__(self) -> str:
        return f"ExceptionTranslatingIO({self._inner!r})"
