import logging

import pytest

from arctree.formats.zip_attributes import (
    MsDosAttribute,
    MsDosAttributes,
    NtfsAttributes,
    UnixAttributes,
    UnixFileType,
    UnparsedAttributes,
    default_attribute_dialects,
)
from arctree.types import CreateSystem, EntryKind


@pytest.fixture
def dialects():
    return default_attribute_dialects()


@pytest.mark.parametrize(
    "st_mode, kind, file_type",
    [
        (0o100644, EntryKind.FILE, UnixFileType.REGULAR_FILE),
        (0o040755, EntryKind.DIR, UnixFileType.DIRECTORY),
        (0o120777, EntryKind.SYMLINK, UnixFileType.SYMBOLIC_LINK),
        (0o010644, EntryKind.FILE, UnixFileType.FIFO),
        (0o000644, None, UnixFileType.UNSPECIFIED),
    ],
)
def test_unix_attributes(dialects, st_mode, kind, file_type):
    attributes = dialects.parse(CreateSystem.UNIX, (st_mode << 16) | 0x20)
    assert isinstance(attributes, UnixAttributes)
    assert attributes.kind == kind
    assert attributes.file_type == file_type
    assert attributes.mode == st_mode & 0o7777


def test_unix_attributes_without_mode(dialects):
    attributes = dialects.parse(CreateSystem.UNIX, 0x10)
    assert attributes.kind is None
    assert attributes.mode is None


def test_unknown_unix_file_type(dialects, caplog):
    with caplog.at_level(logging.WARNING):
        attributes = dialects.parse(CreateSystem.UNIX, 0o160644 << 16)
    assert attributes.kind is None
    assert "Unknown Unix file type" in caplog.text


def test_macos_uses_unix_attributes(dialects):
    assert dialects.parse(CreateSystem.OSX, 0o100600 << 16).mode == 0o600


@pytest.mark.parametrize("platform", [CreateSystem.MSDOS, CreateSystem.VFAT])
def test_msdos_attributes(dialects, platform):
    directory = dialects.parse(platform, 0x10)
    assert isinstance(directory, MsDosAttributes)
    assert directory.kind == EntryKind.DIR
    assert directory.mode is None

    hidden = dialects.parse(platform, 0x23)
    assert hidden.kind == EntryKind.FILE
    assert hidden.flags == (
        MsDosAttribute.READ_ONLY | MsDosAttribute.HIDDEN | MsDosAttribute.ARCHIVE
    )


def test_ntfs_attributes(dialects):
    attributes = dialects.parse(CreateSystem.NTFS, 0x10)
    assert isinstance(attributes, NtfsAttributes)
    assert attributes.kind == EntryKind.DIR


def test_unknown_platform(dialects):
    attributes = dialects.parse(CreateSystem.ACORN_RISCOS, 0o100644 << 16)
    assert isinstance(attributes, UnparsedAttributes)
    assert attributes.kind is None
    assert attributes.raw == 0o100644 << 16


def test_with_parser_returns_copy(dialects):
    def parse_amiga(raw: int) -> UnparsedAttributes:
        return UnparsedAttributes(raw, EntryKind.FILE, 0o400)

    custom = dialects.with_parser(CreateSystem.AMIGA, parse_amiga)
    assert custom.parse(CreateSystem.AMIGA, 0).mode == 0o400
    assert dialects.parse(CreateSystem.AMIGA, 0).mode is None
    assert custom.parse(CreateSystem.UNIX, 0o100644 << 16).mode == 0o644
