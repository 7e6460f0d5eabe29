"""Decoding of Zip central directory records and local file headers."""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass, field
from datetime import datetime
from enum import IntFlag
from typing import IO, Callable, Optional

from arctree.exceptions import ArchiveFormatError
from arctree.formats.zip_attributes import ExternalAttributes
from arctree.formats.zip_compression import CompressionMethod
from arctree.formats.zip_extra_fields import (
    ExtendedTimestampExtraField,
    ExtraField,
    ExtraFieldRegistry,
    InfoZipUnixExtraField,
    InfoZipUnixNewExtraField,
    NtfsExtraField,
    UnicodeCommentExtraField,
    UnicodePathExtraField,
    verify_unicode_name,
)
from arctree.internal.io_helpers import read_exact, read_exact_or_raise
from arctree.internal.utils import decode_bytes_with_fallback, normalize_path
from arctree.types import CreateSystem, DataRange

logger = logging.getLogger(__name__)

CENTRAL_DIRECTORY_SIGNATURE = 0x02014B50
LOCAL_HEADER_SIGNATURE = 0x04034B50

# signature, version made by (version, platform), version needed, flags, method,
# time, date, crc32, compressed size, uncompressed size, name length, extra length,
# comment length, disk number start, internal attributes, external attributes,
# local header offset
CENTRAL_DIRECTORY_STRUCT = struct.Struct("<IBBHHHHHIIIHHHHHII")

# signature, version needed, flags, method, time, date, crc32, compressed size,
# uncompressed size, name length, extra length
LOCAL_HEADER_STRUCT = struct.Struct("<IHHHHHIIIHH")


class GeneralPurposeFlags(IntFlag):
    ENCRYPTED = 0x0001
    OPTION_1 = 0x0002
    OPTION_2 = 0x0004
    DATA_DESCRIPTOR = 0x0008
    ENHANCED_DEFLATE = 0x0010
    PATCHED_DATA = 0x0020
    STRONG_ENCRYPTION = 0x0040
    UTF8 = 0x0800
    MASKED_LOCAL_HEADER = 0x2000


@dataclass(frozen=True)
class VersionMadeBy:
    version: int
    platform: CreateSystem

    @property
    def version_string(self) -> str:
        return f"{self.version // 10}.{self.version % 10}"

    def __str__(self) -> str:
        return f"{self.version_string} ({self.platform.name})"


def dos_datetime(date: int, time: int) -> Optional[datetime]:
    """Decode an MS-DOS date and time; returns None if the fields are invalid."""
    try:
        return datetime(
            1980 + (date >> 9),
            (date >> 5) & 0x0F,
            date & 0x1F,
            time >> 11,
            (time >> 5) & 0x3F,
            (time & 0x1F) * 2,
        )
    except ValueError:
        return None


@dataclass(frozen=True)
class CentralDirectoryRecord:
    offset: int
    record_size: int
    version_made_by: VersionMadeBy
    version_needed: int
    flags: GeneralPurposeFlags
    compression_method: int
    dos_time: int
    dos_date: int
    crc32: int
    compressed_size: int
    uncompressed_size: int
    disk_number_start: int
    internal_attributes: int
    external_attributes: int
    local_header_offset: int
    raw_name: bytes
    name: str
    comment: str
    extra_fields: tuple[ExtraField, ...] = field(default=(), compare=False)

    @property
    def is_directory(self) -> bool:
        """True if the stored name ends with a slash."""
        return self.name.endswith("/")

    @property
    def path(self) -> str:
        return normalize_path(self.name)

    @property
    def is_text(self) -> bool:
        return bool(self.internal_attributes & 0x01)

    @property
    def is_encrypted(self) -> bool:
        return bool(
            self.flags
            & (GeneralPurposeFlags.ENCRYPTED | GeneralPurposeFlags.STRONG_ENCRYPTION)
        )


@dataclass(frozen=True)
class LocalHeader:
    offset: int
    flags: GeneralPurposeFlags
    compression_method: int
    raw_name: bytes
    extra_fields: tuple[ExtraField, ...]
    data_offset: int


def _decode_text(raw: bytes, utf8: bool, charset: str) -> str:
    if utf8:
        return decode_bytes_with_fallback(raw, ["utf-8", charset])
    return decode_bytes_with_fallback(raw, [charset])


def read_central_directory_record(
    stream: IO[bytes],
    offset: int,
    extra_fields: ExtraFieldRegistry,
    charset: str,
    comment_charset: Optional[str] = None,
) -> Optional[CentralDirectoryRecord]:
    """Read one central directory record at the current position of ``stream``.

    ``offset`` is that position in the archive. Returns None when the next bytes
    are not a central directory record, which ends the central directory.
    """
    signature = read_exact(stream, 4)
    if len(signature) < 4 or struct.unpack("<I", signature)[0] != CENTRAL_DIRECTORY_SIGNATURE:
        return None

    fixed = signature + read_exact_or_raise(
        stream, CENTRAL_DIRECTORY_STRUCT.size - 4, "central directory record", offset
    )
    (
        _,
        version,
        platform,
        version_needed,
        flags,
        method,
        dos_time,
        dos_date,
        crc32,
        compressed_size,
        uncompressed_size,
        name_length,
        extra_length,
        comment_length,
        disk_number_start,
        internal_attributes,
        external_attributes,
        local_header_offset,
    ) = CENTRAL_DIRECTORY_STRUCT.unpack(fixed)

    name_offset = offset + CENTRAL_DIRECTORY_STRUCT.size
    extra_offset = name_offset + name_length
    raw_name = read_exact_or_raise(stream, name_length, "entry name", name_offset)
    raw_extra = read_exact_or_raise(stream, extra_length, "extra fields", extra_offset)
    raw_comment = read_exact_or_raise(
        stream, comment_length, "entry comment", extra_offset + extra_length
    )

    gp_flags = GeneralPurposeFlags(flags)
    utf8 = bool(gp_flags & GeneralPurposeFlags.UTF8)
    name = _decode_text(raw_name, utf8, charset)
    comment = _decode_text(raw_comment, utf8, comment_charset or charset)

    fields = tuple(extra_fields.parse_block(raw_extra, local=False, offset=extra_offset))
    for extra in fields:
        if isinstance(extra, UnicodePathExtraField) and not utf8:
            if verify_unicode_name(extra, raw_name):
                name = extra.path + ("/" if extra.is_directory else "")
            else:
                logger.warning(
                    "Ignoring Unicode path field for %r at offset %d: it was written "
                    "for a different name",
                    name,
                    offset,
                )
        elif isinstance(extra, UnicodeCommentExtraField) and not utf8:
            if extra.comment is not None:
                comment = extra.comment

    return CentralDirectoryRecord(
        offset=offset,
        record_size=CENTRAL_DIRECTORY_STRUCT.size
        + name_length
        + extra_length
        + comment_length,
        version_made_by=VersionMadeBy(version, CreateSystem.from_code(platform)),
        version_needed=version_needed,
        flags=gp_flags,
        compression_method=method,
        dos_time=dos_time,
        dos_date=dos_date,
        crc32=crc32,
        compressed_size=compressed_size,
        uncompressed_size=uncompressed_size,
        disk_number_start=disk_number_start,
        internal_attributes=internal_attributes,
        external_attributes=external_attributes,
        local_header_offset=local_header_offset,
        raw_name=raw_name,
        name=name,
        comment=comment,
        extra_fields=fields,
    )


def read_central_directory(
    stream: IO[bytes],
    offset: int,
    extra_fields: ExtraFieldRegistry,
    charset: str,
    comment_charset: Optional[str] = None,
) -> list[CentralDirectoryRecord]:
    """Read records from ``stream`` until something other than a central
    directory record (normally the end of central directory record) follows.

    Records named exactly ``/`` are consumed but not returned.
    """
    records: list[CentralDirectoryRecord] = []
    position = offset
    while True:
        record = read_central_directory_record(
            stream, position, extra_fields, charset, comment_charset
        )
        if record is None:
            break
        position += record.record_size
        if record.name == "/":
            logger.debug("Ignoring root directory record at offset %d", record.offset)
            continue
        logger.debug("Central directory record at offset %d: %r", record.offset, record.name)
        records.append(record)
    return records


def decode_local_header(
    data: bytes,
    offset: int,
    extra_fields: ExtraFieldRegistry,
    read_extra: Callable[[int, int], bytes],
) -> LocalHeader:
    """Decode the local header at ``offset`` whose fixed part is ``data``.

    ``read_extra(position, length)`` returns raw bytes from the archive; it is used
    to fetch the variable-length name and extra fields.
    """
    if len(data) < LOCAL_HEADER_STRUCT.size:
        raise ArchiveFormatError("Truncated local file header", offset)
    (
        signature,
        _version_needed,
        flags,
        method,
        _dos_time,
        _dos_date,
        _crc32,
        _compressed_size,
        _uncompressed_size,
        name_length,
        extra_length,
    ) = LOCAL_HEADER_STRUCT.unpack(data[: LOCAL_HEADER_STRUCT.size])
    if signature != LOCAL_HEADER_SIGNATURE:
        raise ArchiveFormatError(
            f"Bad local file header signature 0x{signature:08x}", offset
        )

    name_offset = offset + LOCAL_HEADER_STRUCT.size
    extra_offset = name_offset + name_length
    raw_name = read_extra(name_offset, name_length)
    raw_extra = read_extra(extra_offset, extra_length)
    fields = tuple(extra_fields.parse_block(raw_extra, local=True, offset=extra_offset))
    return LocalHeader(
        offset=offset,
        flags=GeneralPurposeFlags(flags),
        compression_method=method,
        raw_name=raw_name,
        extra_fields=fields,
        data_offset=extra_offset + extra_length,
    )


@dataclass(frozen=True)
class ZipEntryInfo:
    """Everything known about a Zip entry, from both of its headers.

    This is the ``metadata`` of Zip entries; the entry accessors (``mode``,
    ``mtime``, ``uid`` and so on) read the properties defined here.
    """

    central: CentralDirectoryRecord
    local: LocalHeader
    attributes: ExternalAttributes
    compression: CompressionMethod

    def _find_extra(self, kind: type) -> Optional[ExtraField]:
        for extra in self.local.extra_fields + self.central.extra_fields:
            if isinstance(extra, kind):
                return extra
        return None

    @property
    def data_range(self) -> DataRange:
        return DataRange(self.local.data_offset, self.central.compressed_size)

    @property
    def mode(self) -> Optional[int]:
        return self.attributes.mode

    @property
    def mtime_datetime(self) -> Optional[datetime]:
        """Modification time, preferring the extra fields over the DOS timestamp.

        DOS timestamps have no time zone, so they are returned as naive datetimes;
        the extra field timestamps are in UTC.
        """
        timestamp = self._find_extra(ExtendedTimestampExtraField)
        if timestamp is not None and timestamp.mtime is not None:
            return timestamp.mtime
        ntfs = self._find_extra(NtfsExtraField)
        if ntfs is not None and ntfs.mtime is not None:
            return ntfs.mtime
        unix = self._find_extra(InfoZipUnixExtraField)
        if unix is not None and unix.mtime is not None:
            return unix.mtime
        return dos_datetime(self.central.dos_date, self.central.dos_time)

    @property
    def uid(self) -> Optional[int]:
        for kind in (InfoZipUnixNewExtraField, InfoZipUnixExtraField):
            extra = self._find_extra(kind)
            if extra is not None and extra.uid is not None:
                return extra.uid
        return None

    @property
    def gid(self) -> Optional[int]:
        for kind in (InfoZipUnixNewExtraField, InfoZipUnixExtraField):
            extra = self._find_extra(kind)
            if extra is not None and extra.gid is not None:
                return extra.gid
        return None

    @property
    def crc32(self) -> int:
        return self.central.crc32

    @property
    def comment(self) -> Optional[str]:
        return self.central.comment or None

    @property
    def compression_method_name(self) -> str:
        return self.compression.name

    @property
    def compressed_size(self) -> int:
        return self.central.compressed_size

    @property
    def uncompressed_size(self) -> int:
        return self.central.uncompressed_size

    @property
    def is_text(self) -> bool:
        return self.central.is_text

    @property
    def is_encrypted(self) -> bool:
        return self.central.is_encrypted

    @property
    def flags(self) -> GeneralPurposeFlags:
        return self.central.flags

    @property
    def version_made_by(self) -> VersionMadeBy:
        return self.central.version_made_by
