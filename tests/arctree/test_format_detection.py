import io

import pytest

from arctree import ArchiveFormat, ArchiveNotSupportedError, open_archive
from arctree.backing_store import BackingStore
from arctree.formats.format_detection import detect_archive_format
from tests.create_archives import (
    ZipMember,
    build_tar,
    build_zip,
    empty_zip,
    end_of_tar,
    tar_entry,
)


@pytest.mark.parametrize(
    "data, expected",
    [
        (build_zip([ZipMember("a", b"x")]), ArchiveFormat.ZIP),
        (empty_zip(), ArchiveFormat.ZIP),
        (build_zip([ZipMember("a")], prefix=b"MZ" + b"\0" * 200), ArchiveFormat.ZIP),
        (build_tar(tar_entry("a", b"x")), ArchiveFormat.TAR),
        (build_tar(tar_entry("v7", b"x", magic=b"")), ArchiveFormat.TAR),
        (end_of_tar(), ArchiveFormat.TAR),
        (b"hello world" * 100, ArchiveFormat.UNKNOWN),
        (b"", ArchiveFormat.UNKNOWN),
        (b"\0" * 700, ArchiveFormat.UNKNOWN),
    ],
    ids=[
        "zip",
        "empty_zip",
        "zip_with_prefix",
        "ustar",
        "v7",
        "empty_tar",
        "text",
        "empty_file",
        "zeros",
    ],
)
def test_detect(data, expected):
    assert detect_archive_format(BackingStore(io.BytesIO(data))) == expected


def test_corrupted_v7_checksum_is_unknown():
    block = bytearray(tar_entry("v7", b"x", magic=b""))
    block[0] = ord("w")
    assert detect_archive_format(BackingStore(io.BytesIO(bytes(block)))) == (
        ArchiveFormat.UNKNOWN
    )


def test_open_unknown_format(write_bytes):
    path = write_bytes(b"hello world" * 100)
    with pytest.raises(ArchiveNotSupportedError, match="Unknown archive") as exc_info:
        open_archive(path)
    assert exc_info.value.archive_path == path


def test_explicit_format_skips_detection(write_bytes):
    path = write_bytes(build_tar(tar_entry("v7", b"x", magic=b"")))
    with open_archive(path, format=ArchiveFormat.TAR) as archive:
        assert archive.get_entry("/v7").read() == b"x"


def test_v7_tar_ending_with_zip_member(write_bytes):
    inner = build_zip([ZipMember("inside.txt", b"zipped")])
    path = write_bytes(build_tar(tar_entry("inner.zip", inner, magic=b"")))
    with open_archive(path) as archive:
        assert archive.format == ArchiveFormat.TAR
        assert archive.get_entry("/inner.zip").read() == inner
