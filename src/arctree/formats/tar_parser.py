"""Sequential Tar block parser.

The parser walks the archive one 512-byte block at a time. GNU long name/link
blocks and PAX extended headers are accumulated and folded into the next real
header; every real header is passed to a handler, which is positioned at the
start of the entry's data and returns how many bytes of data to skip.
"""

import io
import logging
from typing import IO, Callable

from arctree.exceptions import ArchiveEOFError
from arctree.formats.tar_header import (
    BLOCK_SIZE,
    GNU_LONGLINK_TYPE,
    GNU_LONGNAME_TYPE,
    PAX_EXTENSION_TYPES,
    HeaderExtension,
    TarHeader,
    decode_gnu_long_link,
    decode_gnu_long_name,
    decode_header_block,
    is_zero_block,
    parse_pax_records,
    read_size,
    read_type_flag,
)
from arctree.internal.io_helpers import is_seekable, read_exact

logger = logging.getLogger(__name__)


def padded_size(n: int) -> int:
    """Round ``n`` up to a whole number of blocks."""
    if n <= 0:
        return 0
    return ((n - 1) // BLOCK_SIZE + 1) * BLOCK_SIZE


class TarDataStream(io.RawIOBase):
    """Read-only wrapper that keeps track of the position in the Tar stream.

    Works on non-seekable streams; skipping then reads and discards data.
    """

    def __init__(self, inner: IO[bytes], start: int = 0):
        super().__init__()
        self._inner = inner
        self._position = start
        self._seekable = is_seekable(inner)

    @property
    def position(self) -> int:
        return self._position

    def readable(self) -> bool:
        return True

    def read(self, n: int = -1) -> bytes:
        data = self._inner.read(n)
        self._position += len(data)
        return data

    def readinto(self, b: bytearray | memoryview) -> int:
        data = self.read(len(b))
        b[: len(data)] = data
        return len(data)

    def read_block(self) -> bytes | None:
        """Return the next block, or None at a clean end of file."""
        offset = self._position
        block = read_exact(self, BLOCK_SIZE)
        if not block:
            return None
        if len(block) < BLOCK_SIZE:
            raise ArchiveEOFError(
                f"Truncated Tar header block ({len(block)} of {BLOCK_SIZE} bytes)",
                offset,
            )
        return block

    def skip(self, n: int) -> None:
        if n <= 0:
            return
        if self._seekable:
            self._inner.seek(n, io.SEEK_CUR)
            self._position += n
            return

        remaining = n
        while remaining > 0:
            chunk = self.read(min(remaining, 65536))
            if not chunk:
                raise ArchiveEOFError(
                    f"Unexpected end of file while skipping {n} bytes",
                    self._position,
                )
            remaining -= len(chunk)


TarEntryHandler = Callable[[TarHeader, TarDataStream], int]


class TarStreamParser:
    """Parses a Tar stream and calls a handler for every entry header.

    Args:
        charset: Charset of names in the fixed header fields and in GNU
            extension blocks. PAX records are always UTF-8.
    """

    def __init__(self, charset: str = "utf-8"):
        self.charset = charset

    def _read_extension_data(self, source: TarDataStream, size: int) -> bytes:
        offset = source.position
        data = read_exact(source, size)
        if len(data) < size:
            raise ArchiveEOFError(
                f"Truncated extension data ({len(data)} of {size} bytes)", offset
            )
        source.skip(padded_size(size) - size)
        return data

    def parse(self, stream: IO[bytes], handler: TarEntryHandler) -> int:
        """Parse all entries of ``stream``, which must be positioned at the start
        of the archive. Returns the number of entries passed to ``handler``.

        Parsing stops at the first all-zero block or at end of file; anything
        after the end-of-archive marker is ignored.
        """
        source = stream if isinstance(stream, TarDataStream) else TarDataStream(stream)
        pending: HeaderExtension | None = None
        count = 0

        while True:
            offset = source.position
            block = source.read_block()
            if block is None or is_zero_block(block):
                break

            type_flag = read_type_flag(block)
            if type_flag in (GNU_LONGNAME_TYPE, GNU_LONGLINK_TYPE):
                data = self._read_extension_data(source, read_size(block, offset))
                if pending is None:
                    pending = HeaderExtension()
                if type_flag == GNU_LONGNAME_TYPE:
                    pending.path, pending.path_is_directory = decode_gnu_long_name(
                        data, self.charset
                    )
                else:
                    pending.link_name = decode_gnu_long_link(data, self.charset)
                logger.debug("GNU extension %r at offset %d", type_flag, offset)
                continue

            if type_flag in PAX_EXTENSION_TYPES:
                data_offset = source.position
                data = self._read_extension_data(source, read_size(block, offset))
                if pending is None:
                    pending = HeaderExtension()
                records = parse_pax_records(data, data_offset)
                pending.pax_headers = {**(pending.pax_headers or {}), **records}
                continue

            header = decode_header_block(block, self.charset, offset)
            if pending is not None:
                header = pending.apply(header)
                pending = None

            logger.debug(
                "Tar header at offset %d: %s (type %r, %d bytes)",
                offset,
                header.path,
                header.type_flag,
                header.size,
            )

            data_start = source.position
            to_skip = handler(header, source)
            count += 1

            target = data_start + padded_size(to_skip)
            if source.position > target:
                # The handler read past the requested distance; continue at the
                # next block boundary after what it consumed.
                target = data_start + padded_size(source.position - data_start)
            source.skip(target - source.position)

        if pending is not None:
            logger.warning(
                "Tar archive ends with an extension header that has no entry"
            )
        return count


def parse_tar(stream: IO[bytes], handler: TarEntryHandler, charset: str = "utf-8") -> int:
    return TarStreamParser(charset).parse(stream, handler)
