"""Sequential decompressing streams for Zip entry data."""

from __future__ import annotations

import abc
import io
import logging
from typing import IO, Any, BinaryIO, Optional

from arctree.exceptions import ArchiveEOFError, RandomAccessNotSupportedError

logger = logging.getLogger(__name__)


class DecompressorStream(io.RawIOBase, BinaryIO):
    """Base class for streams that decompress data read from ``inner``.

    Only sequential reading is supported. Decompression stops when the
    decompressor reports the end of its stream or, for formats that do not mark
    the end, once ``uncompressed_size`` bytes have been produced.
    """

    def __init__(
        self,
        inner: IO[bytes],
        uncompressed_size: Optional[int] = None,
        chunk_size: int = 65536,
    ) -> None:
        super().__init__()
        self._inner = inner
        self._uncompressed_size = uncompressed_size
        self._chunk_size = chunk_size
        self._decompressor = self._create_decompressor()
        self._buffer = bytearray()
        self._eof = False
        self._produced = 0
        self._pos = 0

    @abc.abstractmethod
    def _create_decompressor(self) -> Any: ...

    @abc.abstractmethod
    def _decompress_chunk(self, chunk: bytes) -> bytes: ...

    @abc.abstractmethod
    def _flush_decompressor(self) -> bytes: ...

    @abc.abstractmethod
    def _is_decompressor_finished(self) -> bool: ...

    def readable(self) -> bool:
        return True

    def writable(self) -> bool:
        return False

    def seekable(self) -> bool:
        return False

    def _is_finished(self) -> bool:
        if self._is_decompressor_finished():
            return True
        return (
            self._uncompressed_size is not None
            and self._produced >= self._uncompressed_size
        )

    def _read_decompressed_chunk(self) -> bytes:
        if self._is_finished():
            self._eof = True
            return b""

        chunk = self._inner.read(self._chunk_size)
        if not chunk:
            self._eof = True
            leftover = self._flush_decompressor()
            self._produced += len(leftover)
            if not self._is_finished():
                raise ArchiveEOFError("Compressed data is truncated")
            return leftover

        data = self._decompress_chunk(chunk)
        self._produced += len(data)
        return data

    def readall(self) -> bytes:
        while not self._eof:
            self._buffer.extend(self._read_decompressed_chunk())
        data = bytes(self._buffer)
        self._pos += len(data)
        self._buffer.clear()
        return data

    def read(self, n: int = -1) -> bytes:
        if self.closed:
            raise ValueError("I/O operation on closed file.")
        if n == 0:
            return b""
        if n is None or n < 0:
            return self.readall()
        while len(self._buffer) < n and not self._eof:
            self._buffer.extend(self._read_decompressed_chunk())
        data = bytes(self._buffer[:n])
        del self._buffer[:n]
        self._pos += len(data)
        return data

    def readinto(self, b: bytearray | memoryview) -> int:
        data = self.read(len(b))
        b[: len(data)] = data
        return len(data)

    def close(self) -> None:
        self._inner.close()
        super().close()

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        raise RandomAccessNotSupportedError(
            f"{type(self).__name__} can only be read sequentially"
        )

    def tell(self) -> int:
        return self._pos
