# Lists the contents of Tar and Zip archives, optionally with data checksums.

import argparse
import hashlib
import logging
import zlib
from typing import IO, Optional, Sequence, Tuple

from tqdm import tqdm

from arctree.archive import Archive
from arctree.core import open_archive
from arctree.entries import ArchiveEntry, DataEntry, SymlinkEntry
from arctree.exceptions import ArchiveError
from arctree.formats.tar_extract import extract_tar_stream
from arctree.types import EntryKind


def format_mode(kind: EntryKind, mode: int) -> str:
    permissions = mode & 0o777
    type_char = (
        "d" if kind == EntryKind.DIR else "l" if kind == EntryKind.SYMLINK else "-"
    )
    # Convert permissions to rwxrwxrwx format
    permissions_str = type_char
    letters = "xwr" * 3
    for bit in range(8, -1, -1):
        if permissions & (1 << bit):
            permissions_str += letters[bit]
        else:
            permissions_str += "-"
    return permissions_str


def get_entry_checksums(entry_file: IO[bytes]) -> Tuple[int, str]:
    """
    Compute both CRC32 and SHA256 checksums for a file within an archive.
    Returns a tuple of (crc32, sha256 hex digest).
    """
    crc32_value: int = 0
    sha256 = hashlib.sha256()

    for block in iter(lambda: entry_file.read(65536), b""):
        crc32_value = zlib.crc32(block, crc32_value)
        sha256.update(block)
    return crc32_value & 0xFFFFFFFF, sha256.hexdigest()


def format_entry(entry: ArchiveEntry, checksums: bool = False) -> str:
    size = entry.size if isinstance(entry, DataEntry) else 0
    size_str = f"{size:12d}"
    mode_str = format_mode(entry.kind, entry.mode or 0)
    mtime_str = str(entry.mtime) if entry.mtime is not None else "?" * 19
    line = f"{mode_str}  {size_str}  {mtime_str}  {entry.path}"

    if isinstance(entry, SymlinkEntry):
        target = entry.target if entry.has_target else "?"
        return f"{line} -> {target}"

    if checksums and entry.kind == EntryKind.FILE:
        assert isinstance(entry, DataEntry)
        try:
            with entry.open() as stream:
                crc32, sha256 = get_entry_checksums(stream)
            if entry.crc32 is not None and entry.crc32 != crc32:
                crc_error = f" != {entry.crc32:08x}"
            else:
                crc_error = ""
            line += f"  {crc32:08x}{crc_error}  {sha256[:16]}"
        except ArchiveError as e:
            line += f" -- ERROR: {e!r}"
    return line


def list_archive(archive: Archive, checksums: bool, hide_progress: bool) -> None:
    print(f"Archive format: {archive.format}, {archive.size()} entries")
    if archive.comment:
        print(f"Comment: {archive.comment}")

    entries = sorted(archive.entries().values(), key=lambda e: e.path)
    for entry in tqdm(
        entries,
        desc="Computing checksums" if checksums else "Listing",
        disable=hide_progress,
        total=len(entries),
    ):
        tqdm.write(format_entry(entry, checksums))
        if entry.comment:
            tqdm.write(f"    Comment: {entry.comment}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="arctree", description="List the contents of Tar and Zip archives."
    )
    parser.add_argument("files", nargs="+", help="Archive files to process")
    parser.add_argument(
        "--checksums",
        action="store_true",
        help="Compute CRC32 and SHA-256 checksums of file data",
    )
    parser.add_argument(
        "--extract",
        metavar="DEST",
        help="Extract Tar archives into DEST by streaming them",
    )
    parser.add_argument("--hide-progress", action="store_true", help="Hide progress bar")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    failed = 0
    for archive_path in args.files:
        print(f"\nProcessing {archive_path}:")
        try:
            if args.extract:
                with open(archive_path, "rb") as f:
                    extracted = extract_tar_stream(f, args.extract)
                print(f"Extracted {len(extracted)} entries to {args.extract}")
                continue

            with open_archive(archive_path) as archive:
                list_archive(archive, args.checksums, args.hide_progress)
        except (ArchiveError, OSError) as e:
            print(f"Error processing {archive_path}: {e}")
            failed += 1
    print()
    return 1 if failed else 0


if __name__ == "__main__":
    raise SystemExit(main())
