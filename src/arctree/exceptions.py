import io
from typing import Optional


# Common exceptions for all archive types
class ArchiveError(Exception):
    """Base exception for all archive-related errors."""

    archive_path: Optional[str] = None
    entry_path: Optional[str] = None


class ArchiveFormatError(ArchiveError):
    """Raised when the archive contents do not follow the expected format.

    ``offset`` is the position in the archive at which the problem was detected,
    when it is known.
    """

    def __init__(self, message: str, offset: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.offset = offset

    def __str__(self) -> str:
        if self.offset is None:
            return self.message
        return f"{self.message} (at offset {self.offset})"


class ArchiveEOFError(ArchiveFormatError):
    """Raised when unexpected EOF is encountered while reading an archive."""

    def __init__(self, message: str = "Unexpected end of file", offset: Optional[int] = None):
        super().__init__(message, offset)


class ArchiveCorruptedError(ArchiveFormatError):
    """Raised when compressed data inside an archive is corrupted."""

    def __init__(self, message: str, offset: Optional[int] = None):
        super().__init__(message, offset)


class NotAZipFileError(ArchiveFormatError):
    """Raised when no end of central directory record can be found."""

    pass


class ArchiveIOError(ArchiveError):
    """Raised when an I/O error occurs."""

    pass


class ArchiveClosedError(ArchiveError):
    """Raised when an archive, or a stream opened from it, is used after close."""

    pass


class ArchiveNotSupportedError(ArchiveError):
    """Raised when the archive format or a feature of it is not supported."""

    pass


class UnsupportedCompressionMethodError(ArchiveNotSupportedError):
    """Raised when a Zip entry uses a compression method that cannot be decoded."""

    def __init__(self, message: str, method: Optional[int] = None):
        super().__init__(message)
        self.method = method


class RandomAccessNotSupportedError(ArchiveNotSupportedError, io.UnsupportedOperation):
    """Raised when random access is requested on a sequential-only stream."""

    pass


class ArchiveEntryNotFoundError(ArchiveError, KeyError):
    """Raised when a requested entry is not found in the archive."""

    def __str__(self) -> str:
        return Exception.__str__(self)


class PackageNotInstalledError(ArchiveError):
    """Raised when a required library is not installed."""

    pass


class ArchiveFileExistsError(ArchiveError):
    """Raised when a file already exists while extracting."""

    pass
