import logging
from typing import Callable

from arctree.backing_store import BackingStore
from arctree.exceptions import ArchiveFormatError, ArchiveNotSupportedError
from arctree.formats.tar_header import (
    BLOCK_SIZE,
    CHECKSUM_FIELD,
    compute_checksum,
    parse_numeric_field,
)
from arctree.formats.zip_eocd import find_end_of_central_directory
from arctree.types import ArchiveFormat

logger = logging.getLogger(__name__)

# [signature, ...], offset, format
SIGNATURES: list[tuple[list[bytes], int, ArchiveFormat]] = [
    (
        [
            b"PK\x03\x04",  # local file header
            b"PK\x05\x06",  # end of central directory (empty archive)
        ],
        0,
        ArchiveFormat.ZIP,
    ),
    ([b"ustar"], 257, ArchiveFormat.TAR),  # ustar, GNU and PAX magic
]


def _has_end_of_central_directory(store: BackingStore) -> bool:
    # Zip files can have data prepended (self-extracting archives)
    try:
        find_end_of_central_directory(store)
    except ArchiveNotSupportedError:
        # Multi-volume; still a Zip file
        return True
    except ArchiveFormatError:
        return False
    return True


def _is_empty_tar(store: BackingStore) -> bool:
    # Just the two zero blocks that end every Tar archive
    if store.size < 2 * BLOCK_SIZE or store.size % BLOCK_SIZE:
        return False
    return not any(store.read_at(0, 2 * BLOCK_SIZE))


def _has_valid_tar_checksum(store: BackingStore) -> bool:
    # V7 archives have no magic; check the first header's checksum instead
    block = store.read_at(0, BLOCK_SIZE)
    if len(block) < BLOCK_SIZE or not any(block):
        return False
    try:
        stored = parse_numeric_field(block, CHECKSUM_FIELD, "checksum")
    except ArchiveFormatError:
        return False
    return stored == compute_checksum(block)


# Header checks before the end-of-archive scan: a Tar archive whose last member
# is a Zip file also has an EOCD record near its end.
_EXTRA_DETECTORS: list[tuple[Callable[[BackingStore], bool], ArchiveFormat]] = [
    (_has_valid_tar_checksum, ArchiveFormat.TAR),
    (_is_empty_tar, ArchiveFormat.TAR),
    (_has_end_of_central_directory, ArchiveFormat.ZIP),
]


def detect_archive_format(store: BackingStore) -> ArchiveFormat:
    """Guess the format of the archive in ``store`` from its contents."""
    for magics, offset, fmt in SIGNATURES:
        bytes_to_read = max(len(magic) for magic in magics)
        data = store.read_at(offset, bytes_to_read)
        if any(data.startswith(magic) for magic in magics):
            logger.debug("Detected %s by signature at offset %d", fmt, offset)
            return fmt

    for detector, fmt in _EXTRA_DETECTORS:
        if detector(store):
            logger.debug("Detected %s with %s", fmt, detector.__name__)
            return fmt

    return ArchiveFormat.UNKNOWN
