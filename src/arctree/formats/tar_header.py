"""Decoding of single 512-byte Tar header blocks."""

import logging
import sys
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Mapping, Optional

from arctree.exceptions import ArchiveFormatError
from arctree.internal.utils import decode_bytes_with_fallback, join_path, split_path
from arctree.types import EntryKind

if TYPE_CHECKING:
    from enum import StrEnum
elif sys.version_info >= (3, 11):
    from enum import StrEnum
else:
    from backports.strenum import StrEnum

logger = logging.getLogger(__name__)

BLOCK_SIZE = 512

REGULAR_TYPE = "0"
ALT_REGULAR_TYPE = "\0"
HARDLINK_TYPE = "1"
SYMLINK_TYPE = "2"
CHARDEV_TYPE = "3"
BLOCKDEV_TYPE = "4"
DIRECTORY_TYPE = "5"
FIFO_TYPE = "6"
CONTIGUOUS_TYPE = "7"
GNU_LONGNAME_TYPE = "L"
GNU_LONGLINK_TYPE = "K"
PAX_HEADER_TYPE = "x"
PAX_GLOBAL_HEADER_TYPE = "X"

PAX_EXTENSION_TYPES = (PAX_HEADER_TYPE, PAX_GLOBAL_HEADER_TYPE)
FILE_TYPES = (REGULAR_TYPE, ALT_REGULAR_TYPE, CONTIGUOUS_TYPE)

USTAR_MAGIC = "ustar"

DEFAULT_DIRECTORY_MODE = 0o755

# (start, end) of each field in a header block
NAME_FIELD = (0, 100)
MODE_FIELD = (100, 108)
UID_FIELD = (108, 116)
GID_FIELD = (116, 124)
SIZE_FIELD = (124, 136)
MTIME_FIELD = (136, 148)
CHECKSUM_FIELD = (148, 156)
TYPEFLAG_OFFSET = 156
LINKNAME_FIELD = (157, 257)
MAGIC_FIELD = (257, 263)
VERSION_FIELD = (263, 265)
UNAME_FIELD = (265, 297)
GNAME_FIELD = (297, 329)
DEVMAJOR_FIELD = (329, 337)
DEVMINOR_FIELD = (337, 345)
PREFIX_FIELD = (345, 500)


class TarDialect(StrEnum):
    V7 = "v7"
    USTAR = "ustar"
    GNU = "gnu"
    PAX = "pax"


@dataclass(frozen=True)
class TarHeader:
    """A decoded Tar entry header, with any preceding extension already applied.

    ``path`` is absolute and has no trailing slash; the root itself is ``/``.
    """

    path: str
    mode: int
    uid: int
    gid: int
    size: int
    mtime: int
    checksum: int
    type_flag: str
    link_name: str
    magic: str
    is_directory: bool
    header_offset: int = 0

    # Only set for ustar (and later) headers.
    version: Optional[str] = None
    uname: Optional[str] = None
    gname: Optional[str] = None
    dev_major: Optional[int] = None
    dev_minor: Optional[int] = None

    dialect: TarDialect = TarDialect.V7
    pax_headers: Optional[Mapping[str, str]] = field(default=None, compare=False)

    @property
    def is_symlink(self) -> bool:
        return self.type_flag == SYMLINK_TYPE

    @property
    def mtime_datetime(self) -> datetime:
        return datetime.fromtimestamp(self.mtime, tz=timezone.utc)

    @property
    def segments(self) -> list[str]:
        return split_path(self.path)


def is_zero_block(block: bytes) -> bool:
    return not any(block)


def compute_checksum(block: bytes) -> int:
    """Return the header checksum, counting the checksum field itself as spaces."""
    start, end = CHECKSUM_FIELD
    return sum(block[:start]) + 8 * ord(" ") + sum(block[end:BLOCK_SIZE])


def _field(block: bytes, bounds: tuple[int, int]) -> bytes:
    data = block[bounds[0] : bounds[1]]
    nul = data.find(b"\0")
    return data if nul < 0 else data[:nul]


def _text(block: bytes, bounds: tuple[int, int], charset: str) -> str:
    return decode_bytes_with_fallback(_field(block, bounds), [charset]).strip()


def parse_numeric_field(
    block: bytes, bounds: tuple[int, int], name: str, offset: int = 0
) -> int:
    """Parse an octal number field.

    GNU tar stores values that do not fit in octal as big-endian base-256 with
    the high bit of the first byte set; those are accepted too.
    """
    raw = block[bounds[0] : bounds[1]]
    if raw and raw[0] & 0x80:
        value = raw[0] & 0x7F
        for b in raw[1:]:
            value = (value << 8) | b
        return value

    text = _field(block, bounds).strip(b" \0")
    if not text:
        return 0
    try:
        return int(text, 8)
    except ValueError:
        raise ArchiveFormatError(
            f"Invalid octal value {text!r} in {name} field", offset + bounds[0]
        ) from None


def read_type_flag(block: bytes) -> str:
    return chr(block[TYPEFLAG_OFFSET])


def read_size(block: bytes, offset: int = 0) -> int:
    return parse_numeric_field(block, SIZE_FIELD, "size", offset)


def decode_header_block(block: bytes, charset: str, offset: int = 0) -> TarHeader:
    """Decode the fixed fields of a real (non-extension) header block.

    ``offset`` is the position of the block in the archive and only serves to
    report errors.
    """
    if len(block) != BLOCK_SIZE:
        raise ArchiveFormatError(
            f"Tar header blocks are {BLOCK_SIZE} bytes, got {len(block)}", offset
        )

    type_flag = read_type_flag(block)
    name = _text(block, NAME_FIELD, charset)
    if name.endswith("/"):
        is_directory = True
    else:
        is_directory = type_flag == DIRECTORY_TYPE

    magic = _text(block, MAGIC_FIELD, charset)
    header = TarHeader(
        path="",
        mode=parse_numeric_field(block, MODE_FIELD, "mode", offset),
        uid=parse_numeric_field(block, UID_FIELD, "uid", offset),
        gid=parse_numeric_field(block, GID_FIELD, "gid", offset),
        size=read_size(block, offset),
        mtime=parse_numeric_field(block, MTIME_FIELD, "mtime", offset),
        checksum=parse_numeric_field(block, CHECKSUM_FIELD, "checksum", offset),
        type_flag=type_flag,
        link_name=_text(block, LINKNAME_FIELD, charset),
        magic=magic,
        is_directory=is_directory,
        header_offset=offset,
    )

    if magic == USTAR_MAGIC:
        # GNU tar writes "ustar  \0" and keeps other data where POSIX has the prefix
        is_posix = block[MAGIC_FIELD[0] : MAGIC_FIELD[1]] == b"ustar\0"
        if is_posix:
            prefix = _text(block, PREFIX_FIELD, charset)
            if prefix:
                name = prefix + "/" + name
        header = replace(
            header,
            version=_text(block, VERSION_FIELD, charset),
            uname=_text(block, UNAME_FIELD, charset),
            gname=_text(block, GNAME_FIELD, charset),
            dev_major=parse_numeric_field(block, DEVMAJOR_FIELD, "devmajor", offset),
            dev_minor=parse_numeric_field(block, DEVMINOR_FIELD, "devminor", offset),
            dialect=TarDialect.USTAR if is_posix else TarDialect.GNU,
        )

    return replace(header, path=join_path(split_path(name)))


def _pax_number(value: str, key: str, header: TarHeader) -> int:
    # mtime may have a fractional part; whole seconds are kept
    try:
        return int(float(value)) if key == "mtime" else int(value)
    except ValueError:
        raise ArchiveFormatError(
            f"Invalid PAX {key} value {value!r} for {header.path}",
            header.header_offset,
        ) from None


@dataclass
class HeaderExtension:
    """Data from GNU or PAX extension blocks waiting for the next real header."""

    path: Optional[str] = None
    path_is_directory: bool = False
    link_name: Optional[str] = None
    pax_headers: Optional[dict[str, str]] = None

    def apply(self, header: TarHeader) -> TarHeader:
        """Return ``header`` with the overrides from this extension applied."""
        changes: dict = {}
        if self.path is not None:
            changes["path"] = self.path
            changes["is_directory"] = (
                self.path_is_directory or header.type_flag == DIRECTORY_TYPE
            )
            changes["dialect"] = TarDialect.GNU
        if self.link_name is not None:
            changes["link_name"] = self.link_name
            changes["dialect"] = TarDialect.GNU

        if self.pax_headers is not None:
            changes["pax_headers"] = dict(self.pax_headers)
            changes["dialect"] = TarDialect.PAX
            path = self.pax_headers.get("path")
            if path is not None:
                changes["path"] = join_path(split_path(path))
                if path.endswith("/"):
                    changes["is_directory"] = True
            link_path = self.pax_headers.get("linkpath")
            if link_path is not None:
                changes["link_name"] = link_path
            for key in ("uname", "gname"):
                if key in self.pax_headers:
                    changes[key] = self.pax_headers[key]
            for key in ("size", "uid", "gid", "mtime"):
                if key in self.pax_headers:
                    changes[key] = _pax_number(self.pax_headers[key], key, header)

        return replace(header, **changes)


def decode_gnu_long_name(data: bytes, charset: str) -> tuple[str, bool]:
    """Return the absolute path stored in a GNU long name block, and whether it
    names a directory."""
    name = decode_bytes_with_fallback(data.split(b"\0", 1)[0], [charset]).strip()
    is_directory = name.endswith("/")
    return join_path(split_path(name)), is_directory


def decode_gnu_long_link(data: bytes, charset: str) -> str:
    link = decode_bytes_with_fallback(data.split(b"\0", 1)[0], [charset]).strip()
    return link.rstrip("/") or link


def parse_pax_records(data: bytes, offset: int = 0) -> dict[str, str]:
    """Parse ``"<len> <key>=<value>\\n"`` records. Records are always UTF-8."""
    records: dict[str, str] = {}
    pos = 0
    while pos < len(data):
        if data[pos] == 0:
            # Padding after the last record
            break
        space = data.find(b" ", pos)
        if space < 0:
            raise ArchiveFormatError("PAX record without length", offset + pos)
        try:
            length = int(data[pos:space])
        except ValueError:
            raise ArchiveFormatError(
                f"Invalid PAX record length {data[pos:space]!r}", offset + pos
            ) from None
        if length <= space - pos or pos + length > len(data):
            raise ArchiveFormatError(
                f"PAX record length {length} is out of bounds", offset + pos
            )

        record = data[space + 1 : pos + length]
        if record.endswith(b"\n"):
            record = record[:-1]
        key, sep, value = record.partition(b"=")
        if not sep:
            raise ArchiveFormatError(
                f"PAX record {record!r} has no '=' separator", offset + pos
            )
        records[key.decode("utf-8", errors="replace")] = value.decode(
            "utf-8", errors="replace"
        )
        pos += length

    logger.debug("Parsed PAX records: %r", records)
    return records


def classify_header(header: TarHeader) -> EntryKind:
    """Return the kind of entry a header describes.

    Type flags other than regular file, directory and symlink (hard links,
    devices, FIFOs, unknown flags) are logged and read as regular files.
    """
    if header.is_directory:
        return EntryKind.DIR
    if header.type_flag == SYMLINK_TYPE:
        return EntryKind.SYMLINK
    if header.type_flag not in FILE_TYPES:
        logger.warning(
            "Entry %s has unsupported type flag %r; treating it as a regular file",
            header.path,
            header.type_flag,
        )
    return EntryKind.FILE
