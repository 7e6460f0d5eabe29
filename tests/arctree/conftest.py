import pathlib

import pytest

from arctree import open_tar, open_zip
from tests.create_archives import (
    ZipMember,
    build_tar,
    build_zip,
    gnu_long_name,
    pax_header,
    tar_entry,
)


@pytest.fixture
def write_bytes(tmp_path: pathlib.Path):
    """Return a function that writes data to a new file and returns its path."""
    counter = iter(range(1_000_000))

    def _write(data: bytes, suffix: str = ".bin") -> str:
        path = tmp_path / f"archive_{next(counter)}{suffix}"
        path.write_bytes(data)
        return str(path)

    return _write


@pytest.fixture
def basic_tar_bytes() -> bytes:
    return build_tar(
        tar_entry("docs/", type_flag=b"5", mode=0o750),
        tar_entry("docs/readme.txt", b"hello world\n"),
        tar_entry("docs/link", type_flag=b"2", link_name="readme.txt", mode=0o777),
        tar_entry("src/pkg/module.py", b"print('hi')\n" * 100),
        gnu_long_name("long/" + "n" * 150 + ".txt"),
        tar_entry("long/short.txt", b"long name data"),
        pax_header({"path": "pax/ünïcode.txt", "mtime": "1600000001.5"}),
        tar_entry("pax/placeholder.txt", b"pax data"),
    )


@pytest.fixture
def basic_tar(basic_tar_bytes, write_bytes):
    archive = open_tar(write_bytes(basic_tar_bytes, ".tar"))
    yield archive
    archive.close()


@pytest.fixture
def basic_zip_bytes() -> bytes:
    return build_zip(
        [
            ZipMember("docs/", external_attributes=(0o40755 << 16) | 0x10),
            ZipMember("docs/readme.txt", b"hello zip\n", comment=b"the readme"),
            ZipMember(
                "docs/link",
                b"readme.txt",
                external_attributes=0o120777 << 16,
            ),
            ZipMember("src/pkg/module.py", b"print('hi')\n" * 100),
        ],
        comment=b"archive comment",
    )


@pytest.fixture
def basic_zip(basic_zip_bytes, write_bytes):
    archive = open_zip(write_bytes(basic_zip_bytes, ".zip"))
    yield archive
    archive.close()
