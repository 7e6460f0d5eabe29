"""Opening Tar and Zip archives."""

import logging
from typing import Optional

from arctree.archive import Archive
from arctree.backing_store import ArchiveSource, BackingStore
from arctree.config import ArctreeConfig, get_default_config
from arctree.exceptions import ArchiveError, ArchiveNotSupportedError
from arctree.formats.format_detection import detect_archive_format
from arctree.formats.tar_tree import build_tar_tree
from arctree.formats.zip_attributes import AttributeDialectRegistry
from arctree.formats.zip_compression import CompressionRegistry
from arctree.formats.zip_extra_fields import ExtraFieldRegistry
from arctree.formats.zip_tree import build_zip_tree
from arctree.types import ArchiveFormat

logger = logging.getLogger(__name__)


def _open_tar_store(store: BackingStore, config: ArctreeConfig) -> Archive:
    root, index = build_tar_tree(
        store, config.tar_name_charset, config.tar_strict_directories
    )
    return Archive(store, ArchiveFormat.TAR, root, index)


def _open_zip_store(
    store: BackingStore,
    config: ArctreeConfig,
    compression_methods: Optional[CompressionRegistry] = None,
    extra_fields: Optional[ExtraFieldRegistry] = None,
    attribute_dialects: Optional[AttributeDialectRegistry] = None,
) -> Archive:
    root, index, comment = build_zip_tree(
        store, config, compression_methods, extra_fields, attribute_dialects
    )
    return Archive(store, ArchiveFormat.ZIP, root, index, comment or None)


def _open_with_store(source: ArchiveSource, archive_path: Optional[str], opener) -> Archive:
    store = BackingStore(source, archive_path)
    try:
        return opener(store)
    except ArchiveError as e:
        if e.archive_path is None:
            e.archive_path = store.archive_path
        store.close()
        raise
    except BaseException:
        store.close()
        raise


def open_tar(
    source: ArchiveSource,
    *,
    config: Optional[ArctreeConfig] = None,
    archive_path: Optional[str] = None,
) -> Archive:
    """Open an uncompressed Tar archive (V7, ustar, GNU or PAX).

    Raises:
        ArchiveFormatError: If a header is malformed.
        ArchiveIOError: If the file cannot be read.
    """
    config = config or get_default_config()
    return _open_with_store(
        source, archive_path, lambda store: _open_tar_store(store, config)
    )


def open_zip(
    source: ArchiveSource,
    *,
    config: Optional[ArctreeConfig] = None,
    archive_path: Optional[str] = None,
    compression_methods: Optional[CompressionRegistry] = None,
    extra_fields: Optional[ExtraFieldRegistry] = None,
    attribute_dialects: Optional[AttributeDialectRegistry] = None,
) -> Archive:
    """Open a Zip archive.

    The registries default to the built-in compression methods, extra fields and
    attribute dialects; pass modified copies to add or replace decoders.

    Raises:
        NotAZipFileError: If no end of central directory record is found.
        ArchiveNotSupportedError: For multi-volume and Zip64 archives.
        ArchiveFormatError: If a header is malformed.
    """
    config = config or get_default_config()
    return _open_with_store(
        source,
        archive_path,
        lambda store: _open_zip_store(
            store, config, compression_methods, extra_fields, attribute_dialects
        ),
    )


def open_archive(
    source: ArchiveSource,
    *,
    format: Optional[ArchiveFormat] = None,
    config: Optional[ArctreeConfig] = None,
    archive_path: Optional[str] = None,
) -> Archive:
    """
    Open a Tar or Zip archive and parse its entry tree.

    Args:
        source: Path to the archive, or a seekable binary stream. Streams are not
            closed when the archive is closed.
        format: The archive format. Detected from the contents if not given.
        config: Optional ArctreeConfig. If None, the default configuration is used.
        archive_path: Name used in error messages; defaults to the path or the
            stream's ``name``.

    Returns:
        An open Archive; close it, or use it as a context manager.

    Raises:
        ArchiveNotSupportedError: If the format cannot be determined, or is not
            Tar or Zip.
        ArchiveFormatError: If the archive is malformed.
        ArchiveIOError: If the file cannot be opened or read.

    Example:
        ```python
        from arctree import open_archive

        with open_archive("data.zip") as archive:
            for entry in archive.root():
                print(entry.path)
        ```
    """
    config = config or get_default_config()

    def _open(store: BackingStore) -> Archive:
        detected = format or detect_archive_format(store)
        logger.debug("Opening %s as %s", store.archive_path, detected)
        if detected == ArchiveFormat.TAR:
            return _open_tar_store(store, config)
        if detected == ArchiveFormat.ZIP:
            return _open_zip_store(store, config)
        raise ArchiveNotSupportedError(
            f"Unknown archive format for {store.archive_path}"
        )

    return _open_with_store(source, archive_path, _open)
