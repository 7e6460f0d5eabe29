import pytest

from arctree import (
    ArctreeConfig,
    OverwriteMode,
    default_config,
    get_default_config,
    open_tar,
    open_zip,
    set_default_config,
    set_default_config_fields,
)
from tests.create_archives import ZipMember, build_tar, build_zip, tar_entry


@pytest.fixture(autouse=True)
def restore_default_config():
    original = get_default_config()
    yield
    set_default_config(original)


def test_defaults():
    config = ArctreeConfig()
    assert config.tar_name_charset == "utf-8"
    assert config.zip_name_charset == "cp437"
    assert config.zip_comment_charset is None
    assert config.tar_strict_directories
    assert config.overwrite_mode == OverwriteMode.ERROR


def test_context_manager_is_scoped():
    assert get_default_config().zip_name_charset == "cp437"
    with default_config(zip_name_charset="latin-1") as config:
        assert config.zip_name_charset == "latin-1"
        assert get_default_config() is config
    assert get_default_config().zip_name_charset == "cp437"


def test_set_default_config_fields():
    set_default_config_fields(tar_strict_directories=False)
    assert not get_default_config().tar_strict_directories
    assert get_default_config().zip_name_charset == "cp437"


def test_default_config_is_used_when_opening(write_bytes):
    tar = write_bytes(build_tar(tar_entry("caf\xe9", b"x", encoding="latin-1")))
    with default_config(tar_name_charset="latin-1"):
        with open_tar(tar) as archive:
            assert "/caf\xe9" in archive


def test_explicit_config_wins(write_bytes):
    data = build_zip([ZipMember("x", raw_name=b"caf\xe9")], comment=b"\xe9t\xe9")
    config = ArctreeConfig(zip_name_charset="latin-1", zip_comment_charset="cp1252")
    with default_config(zip_name_charset="cp437"):
        with open_zip(write_bytes(data), config=config) as archive:
            assert "/caf\xe9" in archive
            assert archive.comment == "\xe9t\xe9"
