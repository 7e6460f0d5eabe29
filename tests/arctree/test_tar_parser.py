import io
import logging

import pytest

from arctree.exceptions import ArchiveEOFError
from arctree.formats.tar_header import TarDialect, TarHeader
from arctree.formats.tar_parser import TarDataStream, padded_size, parse_tar
from tests.create_archives import (
    NonSeekableBytesIO,
    build_tar,
    end_of_tar,
    gnu_long_name,
    pad,
    pax_header,
    tar_entry,
    tar_header,
)


class Collector:
    """Handler that records headers and, optionally, reads file data."""

    def __init__(self, read_data: bool = False):
        self.read_data = read_data
        self.headers: list[TarHeader] = []
        self.data: dict[str, bytes] = {}
        self.data_offsets: dict[str, int] = {}

    def __call__(self, header: TarHeader, data: TarDataStream) -> int:
        self.headers.append(header)
        self.data_offsets[header.path] = data.position
        if self.read_data:
            self.data[header.path] = data.read(header.size)
        return header.size

    @property
    def paths(self) -> list[str]:
        return [h.path for h in self.headers]


@pytest.mark.parametrize("n, expected", [(0, 0), (1, 512), (512, 512), (513, 1024)])
def test_padded_size(n, expected):
    assert padded_size(n) == expected


@pytest.mark.parametrize("seekable", [True, False], ids=["seekable", "nonseekable"])
@pytest.mark.parametrize("read_data", [True, False], ids=["read", "skip"])
def test_parse_entries_and_offsets(seekable, read_data):
    archive = build_tar(
        tar_entry("a.txt", b"A" * 10),
        tar_entry("dir/", type_flag=b"5"),
        tar_entry("dir/b.bin", b"B" * 1000),
        tar_entry("c.txt", b"C" * 512),
    )
    stream = io.BytesIO(archive) if seekable else NonSeekableBytesIO(archive)
    collector = Collector(read_data)

    assert parse_tar(stream, collector) == 4
    assert collector.paths == ["/a.txt", "/dir", "/dir/b.bin", "/c.txt"]
    assert collector.data_offsets == {
        "/a.txt": 512,
        "/dir": 1536,
        "/dir/b.bin": 2048,
        "/c.txt": 3584,
    }
    if read_data:
        assert collector.data["/dir/b.bin"] == b"B" * 1000
        assert collector.data["/c.txt"] == b"C" * 512


def test_handler_may_consume_less_than_it_skips():
    archive = build_tar(tar_entry("a", b"x" * 2000), tar_entry("b", b"y"))

    def handler(header, data):
        data.read(10)
        return header.size

    assert parse_tar(io.BytesIO(archive), handler) == 2


def test_trailing_garbage_after_end_marker_is_ignored():
    archive = build_tar(tar_entry("a", b"data")) + b"garbage" * 100
    collector = Collector()
    parse_tar(io.BytesIO(archive), collector)
    assert collector.paths == ["/a"]


def test_missing_end_marker():
    archive = tar_entry("a", b"data")
    collector = Collector()
    assert parse_tar(io.BytesIO(archive), collector) == 1


def test_empty_archive():
    assert parse_tar(io.BytesIO(end_of_tar()), Collector()) == 0


def test_truncated_header_block():
    archive = tar_entry("a", b"data") + b"x" * 100
    with pytest.raises(ArchiveEOFError) as exc_info:
        parse_tar(io.BytesIO(archive), Collector())
    assert exc_info.value.offset == 1024


def test_truncated_file_data_on_nonseekable_stream():
    archive = tar_entry("a", b"data" * 1000)[:2048]
    with pytest.raises(ArchiveEOFError):
        parse_tar(NonSeekableBytesIO(archive), Collector())


def test_gnu_long_name_replaces_inline_name():
    long_name = "deep/" * 30 + "file.txt"
    collector = Collector(read_data=True)
    parse_tar(
        io.BytesIO(build_tar(gnu_long_name(long_name), tar_entry("truncated", b"x"))),
        collector,
    )
    assert collector.paths == ["/" + long_name]
    assert collector.headers[0].dialect == TarDialect.GNU
    assert collector.data["/" + long_name] == b"x"


def test_gnu_long_name_and_long_link_chain():
    target = "t" * 200
    collector = Collector()
    parse_tar(
        io.BytesIO(
            build_tar(
                gnu_long_name("n" * 150),
                gnu_long_name(target, type_flag=b"K"),
                tar_entry("short", type_flag=b"2", link_name="short-target"),
            )
        ),
        collector,
    )
    (header,) = collector.headers
    assert header.path == "/" + "n" * 150
    assert header.link_name == target
    assert header.is_symlink


def test_gnu_long_name_with_trailing_slash_is_directory():
    collector = Collector()
    parse_tar(
        io.BytesIO(build_tar(gnu_long_name("a/" + "d" * 120 + "/"), tar_entry("x"))),
        collector,
    )
    assert collector.headers[0].is_directory


@pytest.mark.parametrize("type_flag", [b"x", b"X"])
def test_pax_path_overrides_gnu_long_name(type_flag):
    collector = Collector()
    parse_tar(
        io.BytesIO(
            build_tar(
                gnu_long_name("from/gnu.txt"),
                pax_header({"path": "from/pax.txt"}, type_flag=type_flag),
                tar_entry("inline.txt", b"data"),
            )
        ),
        collector,
    )
    assert collector.paths == ["/from/pax.txt"]
    assert collector.headers[0].dialect == TarDialect.PAX


def test_pax_size_override_controls_skipping():
    # The inline size field is wrong; the PAX size is authoritative.
    archive = build_tar(
        pax_header({"size": "600"}),
        tar_header("big", size=0),
        pad(b"z" * 600),
        tar_entry("next", b"n"),
    )
    collector = Collector(read_data=True)
    parse_tar(io.BytesIO(archive), collector)
    assert collector.paths == ["/big", "/next"]
    assert collector.data["/big"] == b"z" * 600


def test_extension_applies_only_to_next_entry():
    collector = Collector()
    parse_tar(
        io.BytesIO(
            build_tar(
                pax_header({"path": "renamed"}),
                tar_entry("first"),
                tar_entry("second"),
            )
        ),
        collector,
    )
    assert collector.paths == ["/renamed", "/second"]


def test_dangling_extension_is_logged(caplog):
    with caplog.at_level(logging.WARNING):
        count = parse_tar(io.BytesIO(build_tar(gnu_long_name("orphan"))), Collector())
    assert count == 0
    assert "extension header that has no entry" in caplog.text
