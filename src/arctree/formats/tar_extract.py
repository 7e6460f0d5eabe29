"""Extraction of Tar archives while they are being parsed.

Unlike :func:`arctree.open_tar`, this works on non-seekable streams (pipes,
sockets, decompressors): every entry is written out as soon as its header has
been read, and the data of filtered-out entries is skipped.
"""

import fnmatch
import logging
import os
import posixpath
from typing import IO, Callable, Optional

from arctree.config import OverwriteMode, get_default_config
from arctree.exceptions import ArchiveEOFError, ArchiveFileExistsError, ArchiveFormatError
from arctree.formats.tar_header import TarHeader, classify_header
from arctree.formats.tar_parser import TarDataStream, TarStreamParser
from arctree.internal.utils import set_file_mtime, set_file_permissions
from arctree.types import EntryKind

logger = logging.getLogger(__name__)

TarHeaderFilter = Callable[[TarHeader], bool]


def name_glob_filter(pattern: str) -> TarHeaderFilter:
    """Return an entry filter that accepts entries whose name (the last segment
    of the path) matches the shell-style ``pattern``, case-sensitively."""

    def _matches(header: TarHeader) -> bool:
        return fnmatch.fnmatchcase(posixpath.basename(header.path), pattern)

    return _matches


class TarExtractor:
    """Tar entry handler that writes entries below ``root_path``.

    Directory metadata is applied once all entries have been written, so that
    read-only directories can still receive their children.
    """

    def __init__(
        self,
        root_path: str,
        overwrite_mode: OverwriteMode = OverwriteMode.ERROR,
        entry_filter: Optional[TarHeaderFilter] = None,
        preserve_metadata: bool = True,
        chunk_size: int = 65536,
    ):
        self.root_path = os.path.realpath(root_path)
        self.overwrite_mode = overwrite_mode
        self.entry_filter = entry_filter
        self.preserve_metadata = preserve_metadata
        self.chunk_size = chunk_size

        assert isinstance(self.overwrite_mode, OverwriteMode)

        self.extracted_paths: list[str] = []
        self.skipped_paths: list[str] = []
        self._created_paths: set[str] = set()
        self._pending_directories: list[tuple[TarHeader, str]] = []

    def get_output_path(self, header: TarHeader) -> str:
        path = os.path.normpath(os.path.join(self.root_path, header.path.lstrip("/")))
        if path == self.root_path:
            return path
        # Resolve the parent too, so that earlier symlinks cannot redirect writes
        parent = os.path.realpath(os.path.dirname(path))
        if (
            os.path.commonpath([self.root_path, path]) != self.root_path
            or os.path.commonpath([self.root_path, parent]) != self.root_path
        ):
            raise ArchiveFormatError(
                f"Entry {header.path} would be extracted outside {self.root_path}",
                header.header_offset,
            )
        return path

    def check_overwrites(self, header: TarHeader, kind: EntryKind, path: str) -> bool:
        if not os.path.lexists(path):
            return True

        existing_is_dir = os.path.isdir(path) and not os.path.islink(path)
        if kind == EntryKind.DIR and existing_is_dir:
            return True

        if path in self._created_paths:
            logger.info(
                "Overwriting %s %s as it was created during this extraction",
                kind.value,
                path,
            )

        elif self.overwrite_mode == OverwriteMode.SKIP:
            logger.info("Skipping existing %s %s", kind.value, path)
            return False

        elif self.overwrite_mode == OverwriteMode.ERROR:
            raise ArchiveFileExistsError(f"{kind.value} {path} already exists")

        if existing_is_dir:
            raise ArchiveFileExistsError(
                f"Cannot create {kind.value} {path} as it already exists as a dir"
            )

        os.remove(path)
        return True

    def _write_file(self, header: TarHeader, data: TarDataStream, path: str) -> None:
        remaining = header.size
        with open(path, "wb") as f:
            while remaining > 0:
                chunk = data.read(min(remaining, self.chunk_size))
                if not chunk:
                    raise ArchiveEOFError(
                        f"Unexpected end of file in the data of {header.path}",
                        data.position,
                    )
                f.write(chunk)
                remaining -= len(chunk)

    def _apply_metadata(self, header: TarHeader, kind: EntryKind, path: str) -> None:
        if not self.preserve_metadata:
            return
        if kind != EntryKind.SYMLINK:
            set_file_permissions(path, header.mode & 0o7777, kind)
        set_file_mtime(path, header.mtime_datetime, kind)

    def __call__(self, header: TarHeader, data: TarDataStream) -> int:
        if self.entry_filter is not None and not self.entry_filter(header):
            logger.debug("Skipping filtered entry %s", header.path)
            self.skipped_paths.append(header.path)
            return header.size

        kind = classify_header(header)
        path = self.get_output_path(header)
        if path == self.root_path:
            return header.size

        if not self.check_overwrites(header, kind, path):
            self.skipped_paths.append(header.path)
            return header.size

        os.makedirs(os.path.dirname(path), exist_ok=True)
        if kind == EntryKind.DIR:
            os.makedirs(path, exist_ok=True)
            self._pending_directories.append((header, path))
        elif kind == EntryKind.SYMLINK:
            os.symlink(header.link_name, path)
            self._apply_metadata(header, kind, path)
        else:
            self._write_file(header, data, path)
            self._apply_metadata(header, kind, path)

        self._created_paths.add(path)
        self.extracted_paths.append(path)
        # File data has been read; directories and links have none to skip.
        return header.size

    def finish(self) -> None:
        # Deepest first, so that setting a parent's mtime is not undone by its
        # children.
        for header, path in reversed(self._pending_directories):
            self._apply_metadata(header, EntryKind.DIR, path)
        self._pending_directories.clear()

    def extract(self, stream: IO[bytes], charset: str = "utf-8") -> list[str]:
        TarStreamParser(charset).parse(stream, self)
        self.finish()
        return self.extracted_paths


def extract_tar_stream(
    stream: IO[bytes],
    dest: str,
    *,
    entry_filter: Optional[TarHeaderFilter] = None,
    overwrite_mode: Optional[OverwriteMode] = None,
    charset: Optional[str] = None,
    preserve_metadata: bool = True,
) -> list[str]:
    """Extract a Tar stream into ``dest`` and return the paths that were written.

    Args:
        stream: The Tar data, positioned at the start of the archive. It does not
            need to be seekable.
        dest: Destination directory; created if missing.
        entry_filter: Called with every header; entries for which it returns
            False are skipped.
        overwrite_mode: What to do with files that already exist. Defaults to the
            configured ``overwrite_mode``.
        charset: Charset of entry names. Defaults to the configured
            ``tar_name_charset``.
        preserve_metadata: Apply permissions and modification times.

    Raises:
        ArchiveFormatError: If the archive is malformed, or an entry would be
            written outside ``dest``.
        ArchiveFileExistsError: If a target exists and the overwrite mode is
            ``error``.
    """
    config = get_default_config()
    os.makedirs(dest, exist_ok=True)
    extractor = TarExtractor(
        dest,
        overwrite_mode=overwrite_mode or config.overwrite_mode,
        entry_filter=entry_filter,
        preserve_metadata=preserve_metadata,
        chunk_size=config.chunk_size,
    )
    return extractor.extract(stream, charset or config.tar_name_charset)
