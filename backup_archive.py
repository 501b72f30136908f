"""
Read-only access to a ZIP backup archive.

Entries are exposed in archive index order together with the Unix permission
bits the archive recorded for them, if any.
"""
from __future__ import annotations

import logging
import stat
import zlib
from dataclasses import dataclass
from pathlib import Path
from typing import IO, List, Optional
from zipfile import BadZipFile, ZipFile, ZipInfo, is_zipfile

from restore_errors import ArchiveReadError


logger = logging.getLogger(__name__)

UNIX_CREATE_SYSTEM = 3

# Errors zipfile raises for corrupt or truncated member data.
ENTRY_READ_ERRORS = (BadZipFile, zlib.error, EOFError)


@dataclass(frozen=True)
class ArchiveEntry:
    name: str
    mode: Optional[int] = None
    info: Optional[ZipInfo] = None


def entry_mode(info: ZipInfo) -> Optional[int]:
    """Return the permission bits of ``info`` when the archive is Unix-origin."""
    if info.create_system != UNIX_CREATE_SYSTEM:
        return None
    mode = info.external_attr >> 16
    if not mode:
        return None
    return stat.S_IMODE(mode)


class BackupArchive:
    """A ZIP backup opened for reading.

    Use as a context manager so the underlying file is closed on every exit
    path::

        with BackupArchive.open_path(path) as archive:
            for entry in archive.entries():
                ...
    """

    def __init__(self, path: Path, zip_file: ZipFile) -> None:
        self.path = path
        self._zip = zip_file
        self._entries = [
            ArchiveEntry(name=info.filename, mode=entry_mode(info), info=info)
            for info in zip_file.infolist()
        ]

    @classmethod
    def open_path(cls, path: Path) -> "BackupArchive":
        if not is_zipfile(path):
            raise ArchiveReadError(path, f"Archive {path} is not a valid ZIP file.")
        try:
            zip_file = ZipFile(path)
        except (BadZipFile, OSError) as error:
            raise ArchiveReadError(
                path, f"Failed to read zip file {path}: {error}"
            ) from error
        logger.debug("Opened %s with %d entries", path, len(zip_file.infolist()))
        return cls(path, zip_file)

    def entries(self) -> List[ArchiveEntry]:
        return list(self._entries)

    def open(self, entry: ArchiveEntry) -> IO[bytes]:
        try:
            return self._zip.open(entry.info or entry.name)
        # RuntimeError: encrypted entry; NotImplementedError: unknown compression.
        except (KeyError, RuntimeError, NotImplementedError, *ENTRY_READ_ERRORS) as error:
            raise ArchiveReadError(
                self.path, f"Failed to read entry {entry.name!r} from {self.path}: {error}"
            ) from error

    def close(self) -> None:
        self._zip.close()

    def __enter__(self) -> "BackupArchive":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
