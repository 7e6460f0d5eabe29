"""Interpretation of Zip external file attributes.

The meaning of the 32-bit external attributes depends on the platform stored in
the "version made by" field. Each platform dialect has its own parser; the
parser for an entry is looked up in an :class:`AttributeDialectRegistry`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import IntEnum, IntFlag
from typing import Callable, Mapping, Optional

from arctree.types import CreateSystem, EntryKind

logger = logging.getLogger(__name__)


class MsDosAttribute(IntFlag):
    READ_ONLY = 0x01
    HIDDEN = 0x02
    SYSTEM = 0x04
    VOLUME_LABEL = 0x08
    DIRECTORY = 0x10
    ARCHIVE = 0x20


class NtfsAttribute(IntFlag):
    READ_ONLY = 0x0001
    HIDDEN = 0x0002
    SYSTEM = 0x0004
    DIRECTORY = 0x0010
    ARCHIVE = 0x0020
    DEVICE = 0x0040
    NORMAL = 0x0080
    TEMPORARY = 0x0100
    SPARSE_FILE = 0x0200
    REPARSE_POINT = 0x0400
    COMPRESSED = 0x0800
    OFFLINE = 0x1000
    NOT_CONTENT_INDEXED = 0x2000
    ENCRYPTED = 0x4000


class UnixFileType(IntEnum):
    """The file type nibble of ``st_mode``, as an octal value."""

    UNSPECIFIED = 0o00
    FIFO = 0o01
    CHARACTER_DEVICE = 0o02
    DIRECTORY = 0o04
    BLOCK_DEVICE = 0o06
    REGULAR_FILE = 0o10
    SYMBOLIC_LINK = 0o12
    SOCKET = 0o14


@dataclass(frozen=True)
class ExternalAttributes:
    """Decoded external attributes.

    ``kind`` is None when the attributes do not say what kind of entry this is;
    the entry name then decides.
    """

    raw: int
    kind: Optional[EntryKind] = None
    mode: Optional[int] = None


@dataclass(frozen=True)
class MsDosAttributes(ExternalAttributes):
    flags: MsDosAttribute = MsDosAttribute(0)


@dataclass(frozen=True)
class UnixAttributes(ExternalAttributes):
    file_type: UnixFileType = UnixFileType.UNSPECIFIED


@dataclass(frozen=True)
class NtfsAttributes(ExternalAttributes):
    flags: NtfsAttribute = NtfsAttribute(0)


@dataclass(frozen=True)
class UnparsedAttributes(ExternalAttributes):
    pass


AttributeParser = Callable[[int], ExternalAttributes]


def parse_msdos_attributes(raw: int) -> ExternalAttributes:
    flags = MsDosAttribute(raw & 0x3F)
    kind = EntryKind.DIR if flags & MsDosAttribute.DIRECTORY else EntryKind.FILE
    return MsDosAttributes(raw, kind, None, flags)


def parse_unix_attributes(raw: int) -> ExternalAttributes:
    st_mode = (raw >> 16) & 0xFFFF
    if st_mode == 0:
        # Written by a tool that did not record any Unix attributes
        return UnixAttributes(raw)

    type_code = (st_mode >> 12) & 0o17
    try:
        file_type = UnixFileType(type_code)
    except ValueError:
        logger.warning("Unknown Unix file type 0o%o in external attributes", type_code)
        file_type = UnixFileType.UNSPECIFIED

    if file_type == UnixFileType.DIRECTORY:
        kind: Optional[EntryKind] = EntryKind.DIR
    elif file_type == UnixFileType.SYMBOLIC_LINK:
        kind = EntryKind.SYMLINK
    elif file_type == UnixFileType.UNSPECIFIED:
        kind = None
    else:
        # Regular files, and devices, FIFOs and sockets, which are read as files
        kind = EntryKind.FILE
    return UnixAttributes(raw, kind, st_mode & 0o7777, file_type)


def parse_ntfs_attributes(raw: int) -> ExternalAttributes:
    flags = NtfsAttribute(raw & 0x7FFF)
    kind = EntryKind.DIR if flags & NtfsAttribute.DIRECTORY else EntryKind.FILE
    return NtfsAttributes(raw, kind, None, flags)


def parse_unknown_attributes(raw: int) -> ExternalAttributes:
    return UnparsedAttributes(raw)


class AttributeDialectRegistry:
    """Maps "version made by" platforms to external attribute parsers."""

    def __init__(
        self,
        parsers: Mapping[int, AttributeParser] | None = None,
        fallback: AttributeParser = parse_unknown_attributes,
    ):
        self._parsers: dict[int, AttributeParser] = dict(parsers or {})
        self._fallback = fallback

    def with_parser(self, platform: int, parser: AttributeParser) -> AttributeDialectRegistry:
        return AttributeDialectRegistry({**self._parsers, platform: parser}, self._fallback)

    def get(self, platform: int) -> AttributeParser:
        return self._parsers.get(platform, self._fallback)

    def parse(self, platform: int, raw: int) -> ExternalAttributes:
        return self.get(platform)(raw)


def default_attribute_dialects() -> AttributeDialectRegistry:
    return AttributeDialectRegistry(
        {
            CreateSystem.MSDOS: parse_msdos_attributes,
            CreateSystem.VFAT: parse_msdos_attributes,
            CreateSystem.UNIX: parse_unix_attributes,
            CreateSystem.OSX: parse_unix_attributes,
            CreateSystem.NTFS: parse_ntfs_attributes,
        }
    )
