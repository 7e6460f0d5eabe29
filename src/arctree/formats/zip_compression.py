"""Zip compression methods.

A :class:`CompressionRegistry` maps method codes to :class:`CompressionMethod`
descriptors. Archives are parsed against a registry, so methods can be added or
replaced per archive without touching global state.
"""

from __future__ import annotations

import bz2
import io
import logging
import lzma
import struct
import zlib
from dataclasses import dataclass
from typing import IO, TYPE_CHECKING, Any, Callable, Iterable, Iterator, Optional

from arctree.exceptions import (
    ArchiveCorruptedError,
    ArchiveEOFError,
    ArchiveError,
    ArchiveFormatError,
    PackageNotInstalledError,
    UnsupportedCompressionMethodError,
)
from arctree.formats.decompressors import DecompressorStream
from arctree.internal.io_helpers import read_exact, translate_os_error

if TYPE_CHECKING:
    import zstandard
else:
    try:
        import zstandard
    except ImportError:
        zstandard = None

logger = logging.getLogger(__name__)

STORED = 0
SHRUNK = 1
REDUCED_1 = 2
REDUCED_2 = 3
REDUCED_3 = 4
REDUCED_4 = 5
IMPLODED = 6
DEFLATED = 8
DEFLATE64 = 9
PKWARE_IMPLODED = 10
BZIP2 = 12
LZMA = 14
IBM_TERSE = 18
IBM_LZ77 = 19
ZSTANDARD = 93
WAVPACK = 97
PPMD = 98

StreamFactory = Callable[[IO[bytes], int, int], IO[bytes]]


class DeflateDecompressorStream(DecompressorStream):
    def _create_decompressor(self) -> "zlib._Decompress":
        # Zip stores raw deflate data, without the zlib header
        return zlib.decompressobj(-zlib.MAX_WBITS)

    def _decompress_chunk(self, chunk: bytes) -> bytes:
        return self._decompressor.decompress(chunk)

    def _flush_decompressor(self) -> bytes:
        return self._decompressor.flush()

    def _is_decompressor_finished(self) -> bool:
        return self._decompressor.eof


class Bzip2DecompressorStream(DecompressorStream):
    def _create_decompressor(self) -> bz2.BZ2Decompressor:
        return bz2.BZ2Decompressor()

    def _decompress_chunk(self, chunk: bytes) -> bytes:
        return self._decompressor.decompress(chunk)

    def _flush_decompressor(self) -> bytes:
        return b""

    def _is_decompressor_finished(self) -> bool:
        return self._decompressor.eof


def decode_lzma_properties(properties: bytes) -> dict[str, Any]:
    """Build an LZMA1 filter spec from the 5 property bytes of a Zip LZMA entry."""
    if len(properties) != 5:
        raise ArchiveFormatError(
            f"LZMA properties are {len(properties)} bytes, expected 5"
        )
    d = properties[0]
    if d >= 9 * 5 * 5:
        raise ArchiveFormatError(f"Invalid LZMA properties byte 0x{d:02x}")
    lc = d % 9
    d //= 9
    lp = d % 5
    pb = d // 5
    (dict_size,) = struct.unpack("<I", properties[1:5])
    return {
        "id": lzma.FILTER_LZMA1,
        "lc": lc,
        "lp": lp,
        "pb": pb,
        "dict_size": dict_size,
    }


class LzmaDecompressorStream(DecompressorStream):
    """LZMA data in a Zip entry: a 4-byte header (LZMA SDK version and the
    properties size, which must be 5), the properties, then raw LZMA1 data."""

    def _create_decompressor(self) -> lzma.LZMADecompressor:
        header = read_exact(self._inner, 4)
        if len(header) < 4:
            raise ArchiveEOFError("Truncated LZMA header")
        _, _, properties_size = struct.unpack("<BBH", header)
        if properties_size != 5:
            raise ArchiveFormatError(
                f"LZMA properties size is {properties_size}, expected 5"
            )
        properties = read_exact(self._inner, properties_size)
        if len(properties) < properties_size:
            raise ArchiveEOFError("Truncated LZMA properties")
        return lzma.LZMADecompressor(
            format=lzma.FORMAT_RAW, filters=[decode_lzma_properties(properties)]
        )

    def _decompress_chunk(self, chunk: bytes) -> bytes:
        return self._decompressor.decompress(chunk)

    def _flush_decompressor(self) -> bytes:
        return b""

    def _is_decompressor_finished(self) -> bool:
        return self._decompressor.eof


class ZstandardDecompressorStream(DecompressorStream):
    def _create_decompressor(self) -> Any:
        return zstandard.ZstdDecompressor().decompressobj()

    def _decompress_chunk(self, chunk: bytes) -> bytes:
        return self._decompressor.decompress(chunk)

    def _flush_decompressor(self) -> bytes:
        return b""

    def _is_decompressor_finished(self) -> bool:
        return getattr(self._decompressor, "eof", False)


def _open_stored(raw: IO[bytes], uncompressed_size: int, chunk_size: int) -> IO[bytes]:
    return raw


def _open_deflate(raw: IO[bytes], uncompressed_size: int, chunk_size: int) -> IO[bytes]:
    return DeflateDecompressorStream(raw, uncompressed_size, chunk_size)


def _open_bzip2(raw: IO[bytes], uncompressed_size: int, chunk_size: int) -> IO[bytes]:
    return Bzip2DecompressorStream(raw, uncompressed_size, chunk_size)


def _open_lzma(raw: IO[bytes], uncompressed_size: int, chunk_size: int) -> IO[bytes]:
    return LzmaDecompressorStream(raw, uncompressed_size, chunk_size)


def _open_zstandard(raw: IO[bytes], uncompressed_size: int, chunk_size: int) -> IO[bytes]:
    if zstandard is None:
        raise PackageNotInstalledError(
            "zstandard package is not installed, required for Zstandard entries"
        ) from None
    return ZstandardDecompressorStream(raw, uncompressed_size, chunk_size)


def translate_decompression_exception(e: Exception) -> Optional[ArchiveError]:
    if isinstance(e, ArchiveError):
        return None
    if isinstance(e, zlib.error):
        if "incomplete" in str(e) or "truncated" in str(e):
            return ArchiveEOFError(f"Deflate data is truncated: {repr(e)}")
        return ArchiveCorruptedError(f"Error reading deflate data: {repr(e)}")
    if isinstance(e, lzma.LZMAError):
        return ArchiveCorruptedError(f"Error reading LZMA data: {repr(e)}")
    if zstandard is not None and isinstance(e, zstandard.ZstdError):
        return ArchiveCorruptedError(f"Error reading Zstandard data: {repr(e)}")
    if isinstance(e, EOFError):
        return ArchiveEOFError(f"Compressed data is truncated: {repr(e)}")
    if isinstance(e, OSError) and "Invalid data stream" in str(e):
        return ArchiveCorruptedError(f"BZ2 data is corrupted: {repr(e)}")
    return translate_os_error(e)


@dataclass(frozen=True)
class CompressionMethod:
    """Describes a Zip compression method.

    ``stream_factory`` is None for methods that are known but cannot be decoded;
    opening such an entry raises :class:`UnsupportedCompressionMethodError`.
    """

    code: int
    name: str
    stream_factory: Optional[StreamFactory] = None
    supports_random_access: bool = False
    min_version: int = 10

    @property
    def is_supported(self) -> bool:
        return self.stream_factory is not None

    def open(
        self, raw: IO[bytes], uncompressed_size: int, chunk_size: int = 65536
    ) -> IO[bytes]:
        """Wrap ``raw`` (the stored bytes) in a stream returning uncompressed data."""
        if self.stream_factory is None:
            raise UnsupportedCompressionMethodError(
                f"Compression method {self.name} ({self.code}) is not supported",
                self.code,
            )
        if uncompressed_size == 0:
            raw.close()
            return io.BytesIO(b"")
        return self.stream_factory(raw, uncompressed_size, chunk_size)


class CompressionRegistry:
    """Maps compression method codes to :class:`CompressionMethod` descriptors."""

    def __init__(self, methods: Iterable[CompressionMethod] = ()):
        self._methods: dict[int, CompressionMethod] = {m.code: m for m in methods}

    def with_method(self, method: CompressionMethod) -> CompressionRegistry:
        return CompressionRegistry([*self._methods.values(), method])

    def get(self, code: int) -> Optional[CompressionMethod]:
        return self._methods.get(code)

    def get_or_unknown(self, code: int) -> CompressionMethod:
        method = self._methods.get(code)
        if method is None:
            return CompressionMethod(code, f"unknown_{code}")
        return method

    def __iter__(self) -> Iterator[CompressionMethod]:
        return iter(self._methods.values())

    def __contains__(self, code: object) -> bool:
        return code in self._methods


def default_compression_registry() -> CompressionRegistry:
    return CompressionRegistry(
        [
            CompressionMethod(STORED, "stored", _open_stored, supports_random_access=True),
            CompressionMethod(SHRUNK, "shrunk"),
            CompressionMethod(REDUCED_1, "reduced_1"),
            CompressionMethod(REDUCED_2, "reduced_2"),
            CompressionMethod(REDUCED_3, "reduced_3"),
            CompressionMethod(REDUCED_4, "reduced_4"),
            CompressionMethod(IMPLODED, "imploded"),
            CompressionMethod(DEFLATED, "deflate", _open_deflate, min_version=20),
            CompressionMethod(DEFLATE64, "deflate64", min_version=21),
            CompressionMethod(PKWARE_IMPLODED, "pkware_imploded", min_version=25),
            CompressionMethod(BZIP2, "bzip2", _open_bzip2, min_version=46),
            CompressionMethod(LZMA, "lzma", _open_lzma, min_version=63),
            CompressionMethod(IBM_TERSE, "ibm_terse"),
            CompressionMethod(IBM_LZ77, "ibm_lz77"),
            CompressionMethod(ZSTANDARD, "zstandard", _open_zstandard, min_version=63),
            CompressionMethod(WAVPACK, "wavpack"),
            CompressionMethod(PPMD, "ppmd", min_version=63),
        ]
    )
