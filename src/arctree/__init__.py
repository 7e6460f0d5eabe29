from arctree.archive import Archive
from arctree.config import (
    ArctreeConfig,
    OverwriteMode,
    default_config,
    get_default_config,
    set_default_config,
    set_default_config_fields,
)
from arctree.core import open_archive, open_tar, open_zip
from arctree.entries import (
    ArchiveEntry,
    DataEntry,
    DirectoryEntry,
    FileEntry,
    SymlinkEntry,
)
from arctree.exceptions import (
    ArchiveClosedError,
    ArchiveCorruptedError,
    ArchiveEntryNotFoundError,
    ArchiveEOFError,
    ArchiveError,
    ArchiveFileExistsError,
    ArchiveFormatError,
    ArchiveIOError,
    ArchiveNotSupportedError,
    NotAZipFileError,
    PackageNotInstalledError,
    RandomAccessNotSupportedError,
    UnsupportedCompressionMethodError,
)
from arctree.formats.tar_extract import extract_tar_stream, name_glob_filter
from arctree.types import ArchiveFormat, CreateSystem, DataRange, EntryKind

__all__ = [
    # Core
    "open_archive",
    "open_tar",
    "open_zip",
    "extract_tar_stream",
    "name_glob_filter",
    "Archive",
    "ArchiveEntry",
    "DataEntry",
    "DirectoryEntry",
    "FileEntry",
    "SymlinkEntry",
    "DataRange",
    # Enums
    "ArchiveFormat",
    "EntryKind",
    "CreateSystem",
    "OverwriteMode",
    # Config
    "ArctreeConfig",
    "default_config",
    "get_default_config",
    "set_default_config",
    "set_default_config_fields",
    # Exceptions
    "ArchiveError",
    "ArchiveFormatError",
    "ArchiveEOFError",
    "ArchiveCorruptedError",
    "NotAZipFileError",
    "ArchiveIOError",
    "ArchiveClosedError",
    "ArchiveNotSupportedError",
    "UnsupportedCompressionMethodError",
    "RandomAccessNotSupportedError",
    "ArchiveEntryNotFoundError",
    "ArchiveFileExistsError",
    "PackageNotInstalledError",
]

__version__ = "0.1.0"
