"""
Errors raised while restoring a world from a backup archive.

Every error aborts the restore at the point it is detected. ``exit_code`` is
what the command line entry point returns for it.
"""
from __future__ import annotations

from pathlib import Path
from typing import Union


PathLike = Union[str, Path]

INSTANCE_MISSING_EXIT = 2
ARCHIVE_MISSING_EXIT = 3


class RestoreError(Exception):
    """Base class for fatal restore conditions."""

    exit_code = 1


class ConfigurationError(RestoreError):
    """Raised when required tool configuration is missing or invalid."""

    exit_code = 1


class InputNotFoundError(RestoreError):
    """The instance directory or the backup archive does not exist."""

    def __init__(self, path: PathLike, message: str, *, exit_code: int) -> None:
        super().__init__(message)
        self.path = Path(path)
        self.exit_code = exit_code


class ConfigReadError(RestoreError):
    """``server.properties`` could not be read or parsed."""

    exit_code = 4

    def __init__(self, path: PathLike, message: str) -> None:
        super().__init__(message)
        self.path = Path(path)


class AmbiguousWorldRootError(RestoreError):
    """More than one entry in the archive ends with the marker file."""

    exit_code = 5

    def __init__(self, first_prefix: str, second_prefix: str) -> None:
        super().__init__(
            f"Found duplicate level.dat, A: {first_prefix!r}, B: {second_prefix!r}"
        )
        self.first_prefix = first_prefix
        self.second_prefix = second_prefix


class FilesystemError(RestoreError):
    """Renaming, creating, writing or chmod-ing a path failed."""

    exit_code = 6

    def __init__(self, path: PathLike, message: str) -> None:
        super().__init__(message)
        self.path = Path(path)


class ArchiveReadError(RestoreError):
    """The backup archive or one of its entries could not be read."""

    exit_code = 7

    def __init__(self, path: PathLike, message: str) -> None:
        super().__init__(message)
        self.path = Path(path)
