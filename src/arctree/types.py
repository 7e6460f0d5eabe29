import sys
from dataclasses import dataclass
from enum import IntEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from enum import StrEnum
elif sys.version_info >= (3, 11):
    from enum import StrEnum
else:
    from backports.strenum import StrEnum


class ArchiveFormat(StrEnum):
    """Supported container formats."""

    TAR = "tar"
    ZIP = "zip"

    UNKNOWN = "unknown"


class EntryKind(StrEnum):
    FILE = "file"
    DIR = "dir"
    SYMLINK = "symlink"


class CreateSystem(IntEnum):
    """Platform stored in the "version made by" field of a Zip entry."""

    MSDOS = 0
    AMIGA = 1
    OPENVMS = 2
    UNIX = 3
    VM_CMS = 4
    ATARI_ST = 5
    OS2_HPFS = 6
    MACINTOSH = 7
    Z_SYSTEM = 8
    CPM = 9
    TOPS20 = 10
    NTFS = 11
    QDOS = 12
    ACORN_RISCOS = 13
    VFAT = 14
    MVS = 15
    BEOS = 16
    TANDEM = 17
    THEOS = 18
    OSX = 19
    ATHEOS = 30
    UNKNOWN = 255

    @classmethod
    def from_code(cls, code: int) -> "CreateSystem":
        try:
            return cls(code)
        except ValueError:
            return cls.UNKNOWN


@dataclass(frozen=True)
class DataRange:
    """Location of an entry's stored bytes inside the archive file."""

    start: int
    length: int

    @property
    def end(self) -> int:
        return self.start + self.length
