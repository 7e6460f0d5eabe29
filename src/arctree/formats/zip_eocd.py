"""Locating the End Of Central Directory record of a Zip file."""

import logging
import struct
from dataclasses import dataclass

from arctree.backing_store import BackingStore
from arctree.exceptions import ArchiveNotSupportedError, NotAZipFileError
from arctree.internal.utils import decode_bytes_with_fallback

logger = logging.getLogger(__name__)

EOCD_SIGNATURE = b"PK\x05\x06"
EOCD_STRUCT = struct.Struct("<4sHHHHIIH")
EOCD_SIZE = EOCD_STRUCT.size  # 22

# Files shorter than this cannot hold the part of the record the scan starts from.
MIN_ZIP_SIZE = 18

# Maximum comment size (64 KiB) plus the record itself, with some margin.
MAX_EOCD_SCAN = 67000


@dataclass(frozen=True)
class EndOfCentralDirectory:
    offset: int
    disk_number: int
    central_directory_disk: int
    entries_on_disk: int
    total_entries: int
    central_directory_size: int
    central_directory_offset: int
    comment: str


def _scan_for_signature(tail: bytes, tail_start: int, file_size: int):
    """Yield candidate record positions, last first.

    Candidates are found by walking backwards and comparing one byte at a time
    with the signature read in reverse, so a signature split across the end of a
    partial match is still found.
    """
    reversed_signature = EOCD_SIGNATURE[::-1]
    # The last byte of the signature can be no later than file_size - 19 for a
    # complete record.
    pos = min(len(tail) - 1, file_size - MIN_ZIP_SIZE - tail_start)
    matched = 0
    while pos >= 0:
        if tail[pos] == reversed_signature[matched]:
            matched += 1
            if matched == len(reversed_signature):
                yield tail_start + pos
                matched = 0
        elif matched:
            # Retry this byte as the start of a new match
            matched = 0
            continue
        pos -= 1


def find_end_of_central_directory(
    store: BackingStore, charset: str = "cp437"
) -> EndOfCentralDirectory:
    """Find and decode the End Of Central Directory record.

    Raises:
        NotAZipFileError: If the file is too short, or no record is found within
            the last :data:`MAX_EOCD_SCAN` bytes.
        ArchiveNotSupportedError: For multi-volume archives.
    """
    file_size = store.size
    if file_size < MIN_ZIP_SIZE:
        raise NotAZipFileError(
            f"The file is only {file_size} bytes long. Is this really a Zip file?"
        )

    tail_start = max(0, file_size - MAX_EOCD_SCAN)
    tail = store.read_at(tail_start, file_size - tail_start)

    for position in _scan_for_signature(tail, tail_start, file_size):
        record = tail[position - tail_start : position - tail_start + EOCD_SIZE]
        if len(record) < EOCD_SIZE:
            continue
        (
            _,
            disk_number,
            cd_disk,
            entries_on_disk,
            total_entries,
            cd_size,
            cd_offset,
            comment_length,
        ) = EOCD_STRUCT.unpack(record)
        comment_start = position + EOCD_SIZE
        if comment_start + comment_length > file_size:
            logger.debug(
                "Ignoring EOCD signature at %d: comment runs past end of file",
                position,
            )
            continue

        if disk_number != 0 or cd_disk != 0:
            raise ArchiveNotSupportedError("Multi-volume Zip archives are not supported")

        comment_bytes = tail[
            comment_start - tail_start : comment_start - tail_start + comment_length
        ]
        eocd = EndOfCentralDirectory(
            offset=position,
            disk_number=disk_number,
            central_directory_disk=cd_disk,
            entries_on_disk=entries_on_disk,
            total_entries=total_entries,
            central_directory_size=cd_size,
            central_directory_offset=cd_offset,
            comment=decode_bytes_with_fallback(comment_bytes, [charset]),
        )
        logger.debug("Found end of central directory: %r", eocd)
        return eocd

    raise NotAZipFileError(
        "Could not find the end of central directory record. Is this really a Zip file?"
    )
