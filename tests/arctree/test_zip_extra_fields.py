import struct
import zlib
from datetime import datetime, timezone

import pytest

from arctree.exceptions import ArchiveFormatError
from arctree.formats.zip_extra_fields import (
    EXTENDED_TIMESTAMP_ID,
    INFOZIP_UNIX_NEW_ID,
    INFOZIP_UNIX_OLD_ID,
    NTFS_ID,
    UNICODE_COMMENT_ID,
    UNICODE_PATH_ID,
    ExtendedTimestampExtraField,
    ExtraField,
    ExtraFieldRegistry,
    InfoZipUnixExtraField,
    InfoZipUnixNewExtraField,
    NtfsExtraField,
    UnicodeCommentExtraField,
    UnicodePathExtraField,
    UnparsedExtraField,
    default_extra_field_registry,
    verify_unicode_name,
)
from tests.create_archives import extra_field

T1 = 1_600_000_000
T2 = 1_600_000_100
T3 = 1_600_000_200


def _utc(ts: int) -> datetime:
    return datetime.fromtimestamp(ts, tz=timezone.utc)


@pytest.fixture
def registry() -> ExtraFieldRegistry:
    return default_extra_field_registry()


def test_extended_timestamp_local(registry):
    data = extra_field(EXTENDED_TIMESTAMP_ID, struct.pack("<Biii", 0b111, T1, T2, T3))
    (field,) = registry.parse_block(data, local=True)
    assert field == ExtendedTimestampExtraField(
        EXTENDED_TIMESTAMP_ID, mtime=_utc(T1), atime=_utc(T2), ctime=_utc(T3)
    )


def test_extended_timestamp_central_has_only_mtime(registry):
    # Flags still announce all three times, but only mtime is stored
    data = extra_field(EXTENDED_TIMESTAMP_ID, struct.pack("<Bi", 0b111, T1))
    (field,) = registry.parse_block(data, local=False)
    assert field.mtime == _utc(T1)
    assert field.atime is None


def test_extended_timestamp_without_flags(registry, caplog):
    (field,) = registry.parse_block(extra_field(EXTENDED_TIMESTAMP_ID, b""), local=True)
    assert isinstance(field, UnparsedExtraField)
    assert "no flags byte" in caplog.text


def test_infozip_unix_old(registry):
    data = extra_field(INFOZIP_UNIX_OLD_ID, struct.pack("<IIHH", T2, T1, 501, 20))
    (local,) = registry.parse_block(data, local=True)
    assert local == InfoZipUnixExtraField(
        INFOZIP_UNIX_OLD_ID, atime=_utc(T2), mtime=_utc(T1), uid=501, gid=20
    )
    (central,) = registry.parse_block(data, local=False)
    assert central.uid is None


def test_infozip_unix_new(registry):
    # version 1, 4-byte uid, 2-byte gid
    v1_data = b"\x01\x04" + struct.pack("<I", 70000) + b"\x02\x14\x00"
    v1 = extra_field(INFOZIP_UNIX_NEW_ID, v1_data)
    assert registry.parse_block(v1, local=True) == [
        InfoZipUnixNewExtraField(INFOZIP_UNIX_NEW_ID, uid=70000, gid=20)
    ]
    old = extra_field(INFOZIP_UNIX_NEW_ID, struct.pack("<HH", 1000, 100))
    assert registry.parse_block(old, local=True)[0].uid == 1000
    assert registry.parse_block(extra_field(INFOZIP_UNIX_NEW_ID, b""), local=False) == [
        InfoZipUnixNewExtraField(INFOZIP_UNIX_NEW_ID)
    ]


def test_ntfs_timestamps(registry):
    # 2020-09-13T12:26:40Z in 100 ns units since 1601
    filetime = (T1 + 11644473600) * 10_000_000
    attribute = struct.pack("<HHQQQ", 1, 24, filetime, filetime, filetime)
    (field,) = registry.parse_block(
        extra_field(NTFS_ID, b"\0" * 4 + attribute), local=True
    )
    assert isinstance(field, NtfsExtraField)
    assert field.mtime == _utc(T1)


def test_unicode_path(registry):
    raw_name = b"caf\x82.txt"
    data = struct.pack("<BI", 1, zlib.crc32(raw_name)) + "café.txt".encode()
    (field,) = registry.parse_block(extra_field(UNICODE_PATH_ID, data), local=False)
    assert isinstance(field, UnicodePathExtraField)
    assert field.path == "café.txt"
    assert not field.is_directory
    assert verify_unicode_name(field, raw_name)
    assert not verify_unicode_name(field, b"other")


def test_unicode_comment(registry):
    data = struct.pack("<BI", 1, 0) + "ünïcode".encode()
    (field,) = registry.parse_block(extra_field(UNICODE_COMMENT_ID, data), local=False)
    assert field == UnicodeCommentExtraField(UNICODE_COMMENT_ID, 1, 0, "ünïcode")


def test_unknown_fields_are_kept(registry):
    data = extra_field(0xCAFE, b"\x01\x02\x03") + extra_field(0x0001, b"")
    assert registry.parse_block(data, local=True) == [
        UnparsedExtraField(0xCAFE, b"\x01\x02\x03"),
        UnparsedExtraField(0x0001, b""),
    ]


def test_zero_padding_is_ignored(registry):
    assert registry.parse_block(b"\0\0\0", local=True) == []


def test_field_running_past_block(registry):
    data = struct.pack("<HH", 0xCAFE, 10) + b"abc"
    with pytest.raises(ArchiveFormatError, match="runs past") as exc_info:
        registry.parse_block(data, local=True, offset=100)
    assert exc_info.value.offset == 100


def test_malformed_known_field_reports_offset(registry):
    data = extra_field(0xCAFE, b"") + extra_field(INFOZIP_UNIX_OLD_ID, b"\0\0")
    with pytest.raises(ArchiveFormatError, match="0x5855") as exc_info:
        registry.parse_block(data, local=True, offset=1000)
    assert exc_info.value.offset == 1004


def test_registry_with_parser_returns_copy(registry):
    def parse_custom(header_id: int, data: bytes, local: bool) -> ExtraField:
        return UnparsedExtraField(header_id, data[::-1])

    custom = registry.with_parser(0xCAFE, parse_custom)
    assert 0xCAFE in custom
    assert 0xCAFE not in registry
    assert custom.parse_block(extra_field(0xCAFE, b"ab"), local=True) == [
        UnparsedExtraField(0xCAFE, b"ba")
    ]
