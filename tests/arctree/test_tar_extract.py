import io
import os
import stat

import pytest

from arctree import (
    ArchiveFileExistsError,
    ArchiveFormatError,
    OverwriteMode,
    default_config,
    extract_tar_stream,
    name_glob_filter,
)
from tests.create_archives import NonSeekableBytesIO, build_tar, tar_entry


def _archive() -> bytes:
    return build_tar(
        tar_entry("top/", type_flag=b"5", mode=0o700, mtime=1_500_000_000),
        tar_entry("top/file.txt", b"file data", mode=0o600, mtime=1_500_000_100),
        tar_entry("top/sub/deep.bin", b"\x00\x01" * 3000),
        tar_entry("top/link", type_flag=b"2", link_name="file.txt"),
    )


def test_extract_nonseekable_stream(tmp_path):
    dest = tmp_path / "out"
    extracted = extract_tar_stream(NonSeekableBytesIO(_archive()), str(dest))

    root = os.path.realpath(dest)
    assert sorted(os.path.relpath(p, root) for p in extracted) == sorted(
        ["top", "top/file.txt", "top/sub/deep.bin", "top/link"]
    )
    assert (dest / "top" / "file.txt").read_bytes() == b"file data"
    assert (dest / "top" / "sub" / "deep.bin").read_bytes() == b"\x00\x01" * 3000
    assert os.readlink(dest / "top" / "link") == "file.txt"
    assert (dest / "top" / "link").read_bytes() == b"file data"


def test_metadata_is_applied(tmp_path):
    extract_tar_stream(io.BytesIO(_archive()), str(tmp_path))

    file_stat = os.stat(tmp_path / "top" / "file.txt")
    assert stat.S_IMODE(file_stat.st_mode) == 0o600
    assert int(file_stat.st_mtime) == 1_500_000_100

    dir_stat = os.stat(tmp_path / "top")
    assert stat.S_IMODE(dir_stat.st_mode) == 0o700
    assert int(dir_stat.st_mtime) == 1_500_000_000


def test_filter_skips_entries(tmp_path):
    extracted = extract_tar_stream(
        NonSeekableBytesIO(_archive()),
        str(tmp_path),
        entry_filter=lambda header: not header.path.endswith(".bin"),
    )
    assert not (tmp_path / "top" / "sub" / "deep.bin").exists()
    assert (tmp_path / "top" / "file.txt").exists()
    assert len(extracted) == 3


def test_name_glob_filter(tmp_path):
    extracted = extract_tar_stream(
        NonSeekableBytesIO(_archive()),
        str(tmp_path),
        entry_filter=name_glob_filter("*.txt"),
    )
    assert extracted == [os.path.join(os.path.realpath(tmp_path), "top", "file.txt")]
    assert not (tmp_path / "top" / "link").exists()
    assert not (tmp_path / "top" / "sub").exists()


def test_existing_file_error(tmp_path):
    (tmp_path / "top").mkdir()
    (tmp_path / "top" / "file.txt").write_bytes(b"old")
    with pytest.raises(ArchiveFileExistsError):
        extract_tar_stream(io.BytesIO(_archive()), str(tmp_path))


def test_existing_file_skip(tmp_path):
    (tmp_path / "top").mkdir()
    (tmp_path / "top" / "file.txt").write_bytes(b"old")
    extract_tar_stream(
        io.BytesIO(_archive()), str(tmp_path), overwrite_mode=OverwriteMode.SKIP
    )
    assert (tmp_path / "top" / "file.txt").read_bytes() == b"old"
    assert (tmp_path / "top" / "sub" / "deep.bin").exists()


def test_existing_file_overwrite_from_config(tmp_path):
    (tmp_path / "top").mkdir()
    (tmp_path / "top" / "file.txt").write_bytes(b"old")
    with default_config(overwrite_mode=OverwriteMode.OVERWRITE):
        extract_tar_stream(io.BytesIO(_archive()), str(tmp_path))
    assert (tmp_path / "top" / "file.txt").read_bytes() == b"file data"


def test_repeated_entry_overwrites_within_extraction(tmp_path):
    data = build_tar(tar_entry("a.txt", b"first"), tar_entry("a.txt", b"second"))
    extract_tar_stream(io.BytesIO(data), str(tmp_path))
    assert (tmp_path / "a.txt").read_bytes() == b"second"


def test_dot_dot_stays_inside_destination(tmp_path):
    dest = tmp_path / "dest"
    data = build_tar(tar_entry("../../escaped.txt", b"x"))
    extract_tar_stream(io.BytesIO(data), str(dest))
    assert (dest / "escaped.txt").read_bytes() == b"x"
    assert not (tmp_path / "escaped.txt").exists()


def test_write_through_symlink_is_rejected(tmp_path):
    dest = tmp_path / "dest"
    outside = tmp_path / "outside"
    outside.mkdir()
    data = build_tar(
        tar_entry("evil", type_flag=b"2", link_name="../outside"),
        tar_entry("evil/payload.txt", b"x"),
    )
    with pytest.raises(ArchiveFormatError, match="outside"):
        extract_tar_stream(io.BytesIO(data), str(dest))
    assert not (outside / "payload.txt").exists()
