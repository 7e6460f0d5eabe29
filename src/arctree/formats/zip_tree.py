"""Builds the entry tree of a Zip archive from its central directory."""

import io
import logging
from dataclasses import dataclass
from typing import BinaryIO, Optional

from arctree.backing_store import BackingStore, GuardedStream
from arctree.config import ArctreeConfig
from arctree.entries import (
    ArchiveEntry,
    DataEntry,
    DirectoryEntry,
    FileEntry,
    SymlinkEntry,
)
from arctree.exceptions import (
    ArchiveError,
    ArchiveFormatError,
    ArchiveNotSupportedError,
    PackageNotInstalledError,
    RandomAccessNotSupportedError,
)
from arctree.formats.zip_attributes import (
    AttributeDialectRegistry,
    default_attribute_dialects,
)
from arctree.formats.zip_compression import (
    CompressionRegistry,
    default_compression_registry,
    translate_decompression_exception,
)
from arctree.formats.zip_eocd import EndOfCentralDirectory, find_end_of_central_directory
from arctree.formats.zip_extra_fields import (
    ExtraFieldRegistry,
    default_extra_field_registry,
)
from arctree.formats.zip_headers import (
    LOCAL_HEADER_STRUCT,
    CentralDirectoryRecord,
    GeneralPurposeFlags,
    ZipEntryInfo,
    decode_local_header,
    read_central_directory,
)
from arctree.internal.path_tree import PathNode, PathTree
from arctree.internal.utils import decode_bytes_with_fallback, split_path
from arctree.types import EntryKind

logger = logging.getLogger(__name__)

ZIP64_MARKER_32 = 0xFFFFFFFF
ZIP64_MARKER_16 = 0xFFFF


class ZipEntryOpener:
    """Opens entry data through the compression method registered for it."""

    def __init__(self, store: BackingStore, chunk_size: int = 65536):
        self._store = store
        self._chunk_size = chunk_size

    def open_info(
        self, info: ZipEntryInfo, random_access: bool = False, entry_path: Optional[str] = None
    ) -> BinaryIO:
        if info.is_encrypted:
            raise ArchiveNotSupportedError(
                f"Entry {entry_path} is encrypted; encrypted entries are not supported"
            )
        method = info.compression
        if random_access and not method.supports_random_access:
            raise RandomAccessNotSupportedError(
                f"Entry {entry_path} is compressed with {method.name}, which can only "
                f"be read sequentially"
            )
        if not method.is_supported:
            # Raises UnsupportedCompressionMethodError
            method.open(io.BytesIO(b""), info.uncompressed_size)

        data_range = info.data_range

        def _open() -> BinaryIO:
            raw = self._store.open_range(data_range.start, data_range.length)
            try:
                return method.open(raw, info.uncompressed_size, self._chunk_size)
            except BaseException:
                raw.close()
                raise

        return GuardedStream(
            _open,
            self._store,
            exception_translator=translate_decompression_exception,
            entry_path=entry_path,
        )

    def open_entry(self, entry: DataEntry, random_access: bool) -> BinaryIO:
        return self.open_info(entry.metadata, random_access, entry.path)


@dataclass
class _ZipRecord:
    info: ZipEntryInfo
    kind: EntryKind


class ZipTreeBuilder:
    """Reads the central directory and local headers of a Zip archive and turns
    them into an entry tree."""

    def __init__(
        self,
        store: BackingStore,
        config: ArctreeConfig,
        compression_methods: Optional[CompressionRegistry] = None,
        extra_fields: Optional[ExtraFieldRegistry] = None,
        attribute_dialects: Optional[AttributeDialectRegistry] = None,
    ):
        self._store = store
        self._config = config
        self._compression_methods = compression_methods or default_compression_registry()
        self._extra_fields = extra_fields or default_extra_field_registry()
        self._attribute_dialects = attribute_dialects or default_attribute_dialects()
        self._opener = ZipEntryOpener(store, config.chunk_size)
        self._tree: PathTree[_ZipRecord] = PathTree()
        self.end_of_central_directory: Optional[EndOfCentralDirectory] = None

    def _check_zip64(self, eocd: EndOfCentralDirectory) -> None:
        if (
            eocd.central_directory_offset == ZIP64_MARKER_32
            or eocd.central_directory_size == ZIP64_MARKER_32
            or eocd.total_entries == ZIP64_MARKER_16
        ):
            raise ArchiveNotSupportedError("Zip64 archives are not supported")

    def read_records(self) -> list[CentralDirectoryRecord]:
        eocd = find_end_of_central_directory(
            self._store,
            self._config.zip_comment_charset or self._config.zip_name_charset,
        )
        self._check_zip64(eocd)
        self.end_of_central_directory = eocd

        cd_offset = eocd.central_directory_offset
        if cd_offset > eocd.offset:
            raise ArchiveFormatError(
                f"Central directory offset {cd_offset} is past the end of central "
                f"directory record",
                eocd.offset,
            )
        with io.BufferedReader(
            self._store.open_range(cd_offset, self._store.size - cd_offset),
            buffer_size=65536,
        ) as reader:
            records = read_central_directory(
                reader,
                cd_offset,
                self._extra_fields,
                self._config.zip_name_charset,
                self._config.zip_comment_charset,
            )

        if len(records) != eocd.total_entries:
            logger.debug(
                "Central directory has %d usable records, end record says %d",
                len(records),
                eocd.total_entries,
            )
        return records

    def _read_info(self, record: CentralDirectoryRecord) -> ZipEntryInfo:
        offset = record.local_header_offset
        for value in (offset, record.compressed_size, record.uncompressed_size):
            if value == ZIP64_MARKER_32:
                raise ArchiveNotSupportedError(
                    f"Entry {record.name} uses Zip64 extensions, which are not supported"
                )
        local = decode_local_header(
            self._store.read_at(offset, LOCAL_HEADER_STRUCT.size),
            offset,
            self._extra_fields,
            self._store.read_at,
        )
        if local.data_offset + record.compressed_size > self._store.size:
            raise ArchiveFormatError(
                f"Data of entry {record.name} runs past the end of the archive",
                local.data_offset,
            )
        attributes = self._attribute_dialects.parse(
            record.version_made_by.platform, record.external_attributes
        )
        return ZipEntryInfo(
            central=record,
            local=local,
            attributes=attributes,
            compression=self._compression_methods.get_or_unknown(
                record.compression_method
            ),
        )

    def add_record(self, record: CentralDirectoryRecord) -> None:
        info = self._read_info(record)
        if record.is_directory:
            kind = EntryKind.DIR
        else:
            kind = info.attributes.kind or EntryKind.FILE
        self._tree.add(split_path(record.path), _ZipRecord(info, kind))

    def _read_symlink_target(self, path: str, info: ZipEntryInfo) -> Optional[str]:
        """Return the target of a symlink entry, or None if its data cannot be
        decoded; opening the entry then raises the same error."""
        try:
            with self._opener.open_info(info, entry_path=path) as stream:
                raw = stream.read()
        except (ArchiveNotSupportedError, PackageNotInstalledError) as e:
            logger.warning("Cannot read the target of symlink %s: %s", path, e)
            return None
        utf8 = bool(info.flags & GeneralPurposeFlags.UTF8)
        charsets = ["utf-8"] if utf8 else [self._config.zip_name_charset]
        return decode_bytes_with_fallback(raw, charsets)

    def _build_node(
        self,
        path: str,
        node: PathNode[_ZipRecord],
        children: dict[str, ArchiveEntry],
    ) -> ArchiveEntry:
        record = node.record
        if record is None:
            return DirectoryEntry(path, children, synthetic=True)

        info = record.info
        if children:
            if record.kind != EntryKind.DIR:
                if info.uncompressed_size > 0:
                    logger.warning(
                        "Entry %s has child entries and file data; the data is ignored",
                        path,
                    )
                else:
                    logger.debug("Entry %s has child entries; treating it as a directory", path)
            return DirectoryEntry(path, children, metadata=info)

        if record.kind == EntryKind.DIR:
            if info.uncompressed_size > 0:
                logger.warning(
                    "Directory %s has %d bytes of data, which are ignored",
                    path,
                    info.uncompressed_size,
                )
            return DirectoryEntry(path, children, metadata=info)

        if record.kind == EntryKind.SYMLINK:
            target = self._read_symlink_target(path, info)
            return SymlinkEntry(
                path,
                target or "",
                info.data_range,
                self._opener,
                metadata=info,
                size=info.uncompressed_size,
                has_target=target is not None,
            )

        return FileEntry(
            path,
            info.data_range,
            info.uncompressed_size,
            self._opener,
            metadata=info,
        )

    def build(self) -> tuple[DirectoryEntry, dict[str, ArchiveEntry]]:
        for record in self.read_records():
            self.add_record(record)
        root, index = self._tree.materialize(self._build_node)
        if not isinstance(root, DirectoryEntry):
            raise ArchiveFormatError("The archive root is not a directory")
        return root, index


def build_zip_tree(
    store: BackingStore,
    config: ArctreeConfig,
    compression_methods: Optional[CompressionRegistry] = None,
    extra_fields: Optional[ExtraFieldRegistry] = None,
    attribute_dialects: Optional[AttributeDialectRegistry] = None,
) -> tuple[DirectoryEntry, dict[str, ArchiveEntry], str]:
    """Parse the Zip archive in ``store``.

    Returns the root directory, the path index and the archive comment.

    Raises:
        NotAZipFileError: If no end of central directory record is found.
        ArchiveFormatError: If a header is malformed; the error carries the offset.
        ArchiveNotSupportedError: For multi-volume and Zip64 archives.
    """
    builder = ZipTreeBuilder(
        store, config, compression_methods, extra_fields, attribute_dialects
    )
    try:
        root, index = builder.build()
    except ArchiveError as e:
        e.archive_path = store.archive_path
        raise
    assert builder.end_of_central_directory is not None
    return root, index, builder.end_of_central_directory.comment
