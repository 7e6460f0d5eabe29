"""Parsers for Zip extra fields.

Each extra field is a ``(header id, data size, data)`` triple. The data of most
fields differs between the local header and the central directory copy, so
parsers are told which one they are looking at.
"""

from __future__ import annotations

import logging
import struct
import zlib
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Mapping, Optional

from arctree.exceptions import ArchiveFormatError

logger = logging.getLogger(__name__)

EXTENDED_TIMESTAMP_ID = 0x5455
INFOZIP_UNIX_OLD_ID = 0x5855
INFOZIP_UNIX_NEW_ID = 0x7855
NTFS_ID = 0x000A
UNICODE_PATH_ID = 0x7075
UNICODE_COMMENT_ID = 0x6375

_WINDOWS_EPOCH = datetime(1601, 1, 1, tzinfo=timezone.utc)


def _unix_time(value: int) -> Optional[datetime]:
    if value <= 0:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


def _windows_time(value: int) -> Optional[datetime]:
    # FILETIME counts 100 ns intervals since 1601-01-01
    if value <= 0:
        return None
    return _WINDOWS_EPOCH + timedelta(microseconds=value // 10)


@dataclass(frozen=True)
class ExtraField:
    header_id: int


@dataclass(frozen=True)
class UnparsedExtraField(ExtraField):
    data: bytes


@dataclass(frozen=True)
class ExtendedTimestampExtraField(ExtraField):
    mtime: Optional[datetime] = None
    atime: Optional[datetime] = None
    ctime: Optional[datetime] = None


@dataclass(frozen=True)
class InfoZipUnixExtraField(ExtraField):
    """The old Info-ZIP Unix field. uid and gid are only in the local header."""

    atime: Optional[datetime] = None
    mtime: Optional[datetime] = None
    uid: Optional[int] = None
    gid: Optional[int] = None


@dataclass(frozen=True)
class InfoZipUnixNewExtraField(ExtraField):
    """The newer Info-ZIP Unix field. Empty in the central directory."""

    uid: Optional[int] = None
    gid: Optional[int] = None


@dataclass(frozen=True)
class NtfsExtraField(ExtraField):
    mtime: Optional[datetime] = None
    atime: Optional[datetime] = None
    ctime: Optional[datetime] = None


@dataclass(frozen=True)
class UnicodePathExtraField(ExtraField):
    version: int
    name_crc32: int
    path: str
    is_directory: bool


@dataclass(frozen=True)
class UnicodeCommentExtraField(ExtraField):
    version: int
    comment_crc32: int
    comment: Optional[str]


ExtraFieldParser = Callable[[int, bytes, bool], ExtraField]


def parse_extended_timestamp(header_id: int, data: bytes, local: bool) -> ExtraField:
    if not data:
        logger.warning("Extended timestamp field 0x5455 has no flags byte")
        return UnparsedExtraField(header_id, data)

    flags = data[0]
    times: dict[str, Optional[datetime]] = {}
    pos = 1
    # The central directory copy only ever holds the modification time
    names = ("mtime", "atime", "ctime") if local else ("mtime",)
    for bit, name in enumerate(names):
        if not flags & (1 << bit):
            continue
        if len(data) < pos + 4:
            logger.warning(
                "Extended timestamp field 0x5455: not enough data for %s", name
            )
            break
        (value,) = struct.unpack("<i", data[pos : pos + 4])
        times[name] = _unix_time(value)
        pos += 4
    return ExtendedTimestampExtraField(header_id, **times)


def parse_infozip_unix_old(header_id: int, data: bytes, local: bool) -> ExtraField:
    if len(data) < 8:
        raise ArchiveFormatError(
            f"Info-ZIP Unix extra field is {len(data)} bytes, expected at least 8"
        )
    atime, mtime = struct.unpack("<II", data[:8])
    uid = gid = None
    if local and len(data) >= 12:
        uid, gid = struct.unpack("<HH", data[8:12])
    return InfoZipUnixExtraField(
        header_id, _unix_time(atime), _unix_time(mtime), uid, gid
    )


def parse_infozip_unix_new(header_id: int, data: bytes, local: bool) -> ExtraField:
    if not local or not data:
        return InfoZipUnixNewExtraField(header_id)

    if len(data) == 4:
        # Old layout: 16-bit uid and gid
        uid, gid = struct.unpack("<HH", data)
        return InfoZipUnixNewExtraField(header_id, uid, gid)

    # Version 1 layout: version, then variable-size uid and gid
    if data[0] != 1 or len(data) < 2:
        raise ArchiveFormatError(
            f"Unsupported Info-ZIP Unix extra field version {data[0]}"
        )
    pos = 1
    values = []
    for _ in range(2):
        if len(data) < pos + 1:
            raise ArchiveFormatError("Truncated Info-ZIP Unix extra field")
        size = data[pos]
        pos += 1
        if len(data) < pos + size:
            raise ArchiveFormatError("Truncated Info-ZIP Unix extra field")
        values.append(int.from_bytes(data[pos : pos + size], "little"))
        pos += size
    return InfoZipUnixNewExtraField(header_id, values[0], values[1])


def parse_ntfs(header_id: int, data: bytes, local: bool) -> ExtraField:
    # 4 reserved bytes, then (tag, size, data) attributes
    pos = 4
    while pos + 4 <= len(data):
        tag, size = struct.unpack("<HH", data[pos : pos + 4])
        pos += 4
        if tag == 1:
            if size != 24 or len(data) < pos + 24:
                raise ArchiveFormatError(
                    f"NTFS timestamp attribute has size {size}, expected 24"
                )
            mtime, atime, ctime = struct.unpack("<QQQ", data[pos : pos + 24])
            return NtfsExtraField(
                header_id, _windows_time(mtime), _windows_time(atime), _windows_time(ctime)
            )
        pos += size
    logger.debug("NTFS extra field without timestamps")
    return NtfsExtraField(header_id)


def parse_unicode_path(header_id: int, data: bytes, local: bool) -> ExtraField:
    if len(data) < 5:
        raise ArchiveFormatError(
            f"Unicode path extra field is {len(data)} bytes, expected at least 5"
        )
    version = data[0]
    (crc,) = struct.unpack("<I", data[1:5])
    path = data[5:].decode("utf-8", errors="replace").replace("\\", "/")
    is_directory = path.endswith("/")
    return UnicodePathExtraField(header_id, version, crc, path.rstrip("/"), is_directory)


def parse_unicode_comment(header_id: int, data: bytes, local: bool) -> ExtraField:
    if len(data) < 5:
        raise ArchiveFormatError(
            f"Unicode comment extra field is {len(data)} bytes, expected at least 5"
        )
    version = data[0]
    (crc,) = struct.unpack("<I", data[1:5])
    comment = data[5:].decode("utf-8", errors="replace") if len(data) > 5 else None
    return UnicodeCommentExtraField(header_id, version, crc, comment)


class ExtraFieldRegistry:
    """Maps extra field header ids to parsers. Unknown ids are kept unparsed.

    Registries are immutable; :meth:`with_parser` returns a modified copy.
    """

    def __init__(self, parsers: Mapping[int, ExtraFieldParser] | None = None):
        self._parsers: dict[int, ExtraFieldParser] = dict(parsers or {})

    def with_parser(
        self, header_id: int, parser: ExtraFieldParser
    ) -> ExtraFieldRegistry:
        return ExtraFieldRegistry({**self._parsers, header_id: parser})

    def get(self, header_id: int) -> Optional[ExtraFieldParser]:
        return self._parsers.get(header_id)

    def __contains__(self, header_id: object) -> bool:
        return header_id in self._parsers

    def parse_block(
        self, data: bytes, local: bool, offset: Optional[int] = None
    ) -> list[ExtraField]:
        """Parse all extra fields in ``data``.

        ``offset`` is the position of ``data`` in the archive, used in error
        messages.

        Raises:
            ArchiveFormatError: If a field runs past the end of the block, or a
                known field is malformed.
        """
        fields: list[ExtraField] = []
        pos = 0
        while pos < len(data):
            field_offset = None if offset is None else offset + pos
            if len(data) - pos < 4:
                # Some writers pad the block with a few zero bytes
                if any(data[pos:]):
                    raise ArchiveFormatError(
                        "Truncated extra field header", field_offset
                    )
                break
            header_id, size = struct.unpack("<HH", data[pos : pos + 4])
            pos += 4
            if pos + size > len(data):
                raise ArchiveFormatError(
                    f"Extra field 0x{header_id:04x} of {size} bytes runs past the "
                    f"end of the extra data",
                    field_offset,
                )
            field_data = data[pos : pos + size]
            pos += size

            parser = self._parsers.get(header_id)
            if parser is None:
                fields.append(UnparsedExtraField(header_id, field_data))
                continue
            try:
                fields.append(parser(header_id, field_data, local))
            except ArchiveFormatError as e:
                raise ArchiveFormatError(
                    f"Invalid extra field 0x{header_id:04x}: {e.message}",
                    field_offset,
                ) from e
        return fields


def default_extra_field_registry() -> ExtraFieldRegistry:
    return ExtraFieldRegistry(
        {
            EXTENDED_TIMESTAMP_ID: parse_extended_timestamp,
            INFOZIP_UNIX_OLD_ID: parse_infozip_unix_old,
            INFOZIP_UNIX_NEW_ID: parse_infozip_unix_new,
            NTFS_ID: parse_ntfs,
            UNICODE_PATH_ID: parse_unicode_path,
            UNICODE_COMMENT_ID: parse_unicode_comment,
        }
    )


def verify_unicode_name(field: UnicodePathExtraField, raw_name: bytes) -> bool:
    """Check that a Unicode path field belongs to the name it was stored with."""
    return zlib.crc32(raw_name) & 0xFFFFFFFF == field.name_crc32
