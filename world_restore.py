"""
Restore a Minecraft world directory from a backup archive.

The world root inside the archive is the directory holding ``level.dat``.
Everything under it is extracted into the instance's world directory after
any existing world has been renamed aside to ``<world>-<timestamp>``.
"""
from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional

from backup_archive import ENTRY_READ_ERRORS, ArchiveEntry, BackupArchive
from restore_errors import AmbiguousWorldRootError, ArchiveReadError, FilesystemError
from server_properties import LEVEL_NAME_KEY


logger = logging.getLogger(__name__)

BACKUP_FORMAT = "%Y-%m-%d-%H-%M-%S"
DEFAULT_LEVEL_NAME = "world"
MARKER_FILE = "level.dat"

Clock = Callable[[], datetime]
ModeApplier = Callable[[Path, int], None]


def default_mode_applier() -> Optional[ModeApplier]:
    """``os.chmod`` where the host understands Unix permission bits."""
    if os.name == "posix":
        return os.chmod
    return None


@dataclass
class RestoreResult:
    world_path: Path
    prefix: str
    previous_world: Optional[Path] = None
    files_extracted: int = 0
    directories_created: int = 0
    dry_run: bool = False


def locate_world(
    instance_root: Path,
    properties: Optional[Dict[str, str]] = None,
    *,
    level_name: Optional[str] = None,
) -> Path:
    if level_name is None:
        if properties is not None and LEVEL_NAME_KEY in properties:
            level_name = properties[LEVEL_NAME_KEY]
        else:
            level_name = DEFAULT_LEVEL_NAME
    logger.info("Using level-name: %s", level_name)
    return instance_root / level_name


def resolve_prefix(archive: BackupArchive) -> str:
    """Find the archive directory that holds the single ``level.dat``.

    Returns an empty prefix when no entry ends with the marker file. Raises
    :class:`AmbiguousWorldRootError` when more than one does.
    """
    prefix: Optional[str] = None
    for entry in archive.entries():
        if not entry.name.endswith(MARKER_FILE):
            continue
        candidate = entry.name[: -len(MARKER_FILE)]
        if prefix is not None:
            raise AmbiguousWorldRootError(prefix, candidate)
        prefix = candidate
        logger.info("Found %s at: %s", MARKER_FILE, entry.name)

    if prefix is None:
        logger.info("No %s in archive, using the archive root as the world.", MARKER_FILE)
        return ""
    return prefix


def check_world_path(world_path: Path, instance_root: Path) -> None:
    """Refuse a world path that is the instance itself or one of its parents."""
    world = world_path.resolve()
    instance = instance_root.resolve()
    if world == instance or world in instance.parents:
        raise FilesystemError(
            world_path,
            f"World folder {world_path} is the instance {instance_root} or a parent of it; "
            "check level-name in server.properties.",
        )


def backup_path_for(world_path: Path, clock: Clock = datetime.now) -> Path:
    timestamp = clock().strftime(BACKUP_FORMAT)
    return world_path.with_name(f"{world_path.name}-{timestamp}")


def preserve_world(
    world_path: Path, *, clock: Clock = datetime.now, dry_run: bool = False
) -> Optional[Path]:
    """Rename an existing world aside. Returns the new path, if any."""
    if not world_path.exists():
        logger.debug("World %s does not exist, nothing to move.", world_path)
        return None

    target = backup_path_for(world_path, clock)
    if target.exists():
        raise FilesystemError(
            target, f"Unable to rename world folder: {target} already exists."
        )

    if dry_run:
        logger.info("Would move old world to: %s", target)
        return target

    logger.info("Moving old world to: %s", target)
    try:
        world_path.rename(target)
    except OSError as error:
        raise FilesystemError(
            world_path, f"Unable to rename world folder {world_path}: {error}"
        ) from error
    return target


def _relative_parts(name: str, prefix: str, archive: BackupArchive) -> List[str]:
    relative = name.replace(prefix, "", 1)
    parts = [part for part in relative.split("/") if part]
    if ".." in parts:
        raise ArchiveReadError(
            archive.path, f"Refusing to extract {name!r} outside of the world folder."
        )
    return parts


def _apply_mode(path: Path, entry: ArchiveEntry, apply_mode: Optional[ModeApplier]) -> None:
    if entry.mode is None or apply_mode is None:
        return
    logger.debug("Setting mode %o on %s", entry.mode, path)
    try:
        apply_mode(path, entry.mode)
    except OSError as error:
        raise FilesystemError(
            path, f"Failed to set permissions on {path}: {error}"
        ) from error


def _make_dirs(path: Path) -> None:
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as error:
        raise FilesystemError(path, f"Failed to create directory {path}: {error}") from error


def _write_entry(archive: BackupArchive, entry: ArchiveEntry, destination: Path) -> None:
    parent = destination.parent
    if not parent.exists():
        _make_dirs(parent)

    with archive.open(entry) as source:
        try:
            out_file = destination.open("wb")
        except OSError as error:
            raise FilesystemError(
                destination, f"Failed to open file {destination}: {error}"
            ) from error
        with out_file:
            try:
                shutil.copyfileobj(source, out_file)
            except ENTRY_READ_ERRORS as error:
                raise ArchiveReadError(
                    archive.path, f"Failed to read entry {entry.name!r}: {error}"
                ) from error
            except OSError as error:
                raise FilesystemError(
                    destination, f"Failed to write {destination}: {error}"
                ) from error


def extract_world(
    world_path: Path,
    archive: BackupArchive,
    prefix: str,
    *,
    apply_mode: Optional[ModeApplier] = None,
    dry_run: bool = False,
    result: Optional[RestoreResult] = None,
) -> RestoreResult:
    """Extract every entry whose name starts with ``prefix`` into ``world_path``.

    The prefix match is purely textual. An entry whose name is the prefix
    itself, or ends with ``/``, is a directory. Entries extracted before a
    failure are left on disk.
    """
    if result is None:
        result = RestoreResult(world_path=world_path, prefix=prefix, dry_run=dry_run)

    for entry in archive.entries():
        if not entry.name.startswith(prefix):
            logger.debug("Skipping %s, outside of %r", entry.name, prefix)
            continue

        parts = _relative_parts(entry.name, prefix, archive)
        destination = world_path.joinpath(*parts)
        is_directory = not parts or entry.name.endswith("/")
        action = "Would extract" if dry_run else "Extracting"
        logger.debug("%s %s to %s", action, entry.name, destination)

        if is_directory:
            result.directories_created += 1
            if dry_run:
                continue
            _make_dirs(destination)
        else:
            result.files_extracted += 1
            if dry_run:
                continue
            _write_entry(archive, entry, destination)

        _apply_mode(destination, entry, apply_mode)

    return result


def restore_world(
    world_path: Path,
    archive: BackupArchive,
    prefix: str,
    *,
    clock: Clock = datetime.now,
    apply_mode: Optional[ModeApplier] = None,
    dry_run: bool = False,
) -> RestoreResult:
    """Rename any existing world aside, then extract the archive into it."""
    result = RestoreResult(world_path=world_path, prefix=prefix, dry_run=dry_run)
    result.previous_world = preserve_world(world_path, clock=clock, dry_run=dry_run)
    return extract_world(
        world_path,
        archive,
        prefix,
        apply_mode=apply_mode,
        dry_run=dry_run,
        result=result,
    )
