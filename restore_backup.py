#!/usr/bin/env python3
"""
Restore a Minecraft world backup archive onto an existing server instance.

The world directory is taken from ``level-name`` in ``server.properties``
(``world`` when unset). If it already exists it is moved to
``<world>-<YYYY-MM-DD-HH-MM-SS>`` so the restore can be reverted manually.
The directory inside the archive that holds ``level.dat`` is then extracted
into the world directory.
"""
from __future__ import annotations

import argparse
import configparser
import logging
import sys
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, Optional

from backup_archive import BackupArchive
from restore_errors import (
    ARCHIVE_MISSING_EXIT,
    INSTANCE_MISSING_EXIT,
    ConfigurationError,
    InputNotFoundError,
    RestoreError,
)
from server_properties import read_server_properties
from world_restore import (
    Clock,
    ModeApplier,
    RestoreResult,
    check_world_path,
    default_mode_applier,
    locate_world,
    resolve_prefix,
    restore_world,
)


logger = logging.getLogger(__name__)

CONFIG_SECTION = "restore"
LOG_LEVELS = ["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"]


@dataclass
class RestoreConfig:
    instance_dir: Path
    archive_path: Path
    level_name: Optional[str] = None
    dry_run: bool = False
    log_level: str = "INFO"


def parse_args(argv: Optional[Iterable[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Restore a Minecraft world backup ZIP into a server instance."
    )
    parser.add_argument(
        "-i",
        "--instance",
        type=Path,
        metavar="FOLDER",
        help="The instance folder to apply the backup to.",
    )
    parser.add_argument(
        "-b",
        "--backup",
        type=Path,
        metavar="FILE",
        help="The backup ZIP archive to apply.",
    )
    parser.add_argument(
        "--level-name",
        help="World folder name to restore into, overriding server.properties.",
    )
    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        help="Path to an INI config file containing restore parameters.",
    )
    parser.add_argument(
        "--dry-run",
        dest="dry_run",
        action="store_true",
        help="Show planned actions without modifying any files.",
    )
    parser.set_defaults(dry_run=None)
    parser.add_argument(
        "--log-level",
        choices=LOG_LEVELS,
        help="Logging verbosity (default: INFO).",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Enable debug logging, including every extracted entry.",
    )
    return parser.parse_args(argv)


def read_config_file(config_path: Path) -> Dict[str, str]:
    parser = configparser.ConfigParser()
    try:
        read_files = parser.read(config_path)
    except configparser.Error as error:
        raise ConfigurationError(f"Config file {config_path} is invalid: {error}") from error
    if not read_files:
        raise ConfigurationError(f"Config file {config_path} could not be read.")
    if CONFIG_SECTION not in parser:
        raise ConfigurationError(
            f"Config file {config_path} is missing the [{CONFIG_SECTION}] section."
        )
    return {k: v for k, v in parser[CONFIG_SECTION].items()}


def parse_bool(value: str) -> bool:
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ConfigurationError(f"Invalid boolean value: {value}")


def merge_config(
    args: argparse.Namespace, file_config: Optional[Dict[str, str]]
) -> RestoreConfig:
    file_cfg = file_config or {}

    instance_value = args.instance or file_cfg.get("instance")
    archive_value = args.backup or file_cfg.get("backup")
    level_name = args.level_name if args.level_name is not None else file_cfg.get("level_name")

    dry_run_value = file_cfg.get("dry_run")
    if args.dry_run is not None:
        dry_run = args.dry_run
    elif dry_run_value is not None:
        dry_run = parse_bool(dry_run_value)
    else:
        dry_run = False

    if args.verbose:
        log_level = "DEBUG"
    else:
        log_level = args.log_level or file_cfg.get("log_level", "INFO")

    if not instance_value:
        raise ConfigurationError("instance must be supplied via CLI or config file.")
    if not archive_value:
        raise ConfigurationError("backup must be supplied via CLI or config file.")

    return RestoreConfig(
        instance_dir=Path(instance_value).expanduser().resolve(),
        archive_path=Path(archive_value).expanduser().resolve(),
        level_name=level_name,
        dry_run=dry_run,
        log_level=log_level,
    )


def configure_logging(log_level: str) -> None:
    level = getattr(logging, log_level.upper(), None)
    if not isinstance(level, int):
        raise ValueError(f"Invalid log level: {log_level}")
    logging.basicConfig(level=level)


def validate_inputs(instance_dir: Path, archive_path: Path) -> None:
    if not instance_dir.exists():
        raise InputNotFoundError(
            instance_dir,
            f"Instance path {instance_dir} does not exist.",
            exit_code=INSTANCE_MISSING_EXIT,
        )
    if not instance_dir.is_dir():
        raise InputNotFoundError(
            instance_dir,
            f"Instance path {instance_dir} is not a directory.",
            exit_code=INSTANCE_MISSING_EXIT,
        )
    if not archive_path.exists():
        raise InputNotFoundError(
            archive_path,
            f"Backup {archive_path} does not exist.",
            exit_code=ARCHIVE_MISSING_EXIT,
        )
    if not archive_path.is_file():
        raise InputNotFoundError(
            archive_path,
            f"Backup {archive_path} is not a file.",
            exit_code=ARCHIVE_MISSING_EXIT,
        )


def restore_backup_archive(
    archive_path: Path,
    instance_dir: Path,
    *,
    level_name: Optional[str] = None,
    dry_run: bool = False,
    clock: Clock = datetime.now,
    apply_mode: Optional[ModeApplier] = None,
) -> RestoreResult:
    archive_path = archive_path.expanduser().resolve()
    instance_dir = instance_dir.expanduser().resolve()
    validate_inputs(instance_dir, archive_path)
    if apply_mode is None:
        apply_mode = default_mode_applier()

    logger.info("Restoring %s into %s", archive_path, instance_dir)

    properties = None
    if level_name is None:
        properties = read_server_properties(instance_dir)
    world_path = locate_world(instance_dir, properties, level_name=level_name)
    check_world_path(world_path, instance_dir)

    with BackupArchive.open_path(archive_path) as archive:
        prefix = resolve_prefix(archive)
        result = restore_world(
            world_path,
            archive,
            prefix,
            clock=clock,
            apply_mode=apply_mode,
            dry_run=dry_run,
        )

    summary = "Dry run complete" if dry_run else "Restore complete"
    logger.info(
        "%s: %d files and %d directories from %s into %s.",
        summary,
        result.files_extracted,
        result.directories_created,
        archive_path.name,
        world_path,
    )
    return result


def main(argv: Optional[Iterable[str]] = None) -> int:
    args = parse_args(argv)

    try:
        file_config: Optional[Dict[str, str]] = None
        if args.config:
            file_config = read_config_file(args.config)
        config = merge_config(args, file_config)
    except ConfigurationError as error:
        logging.basicConfig(level=logging.INFO)
        logger.error("%s", error)
        return error.exit_code

    try:
        configure_logging(config.log_level)
    except ValueError as error:
        logger.error("%s", error)
        return ConfigurationError.exit_code

    try:
        restore_backup_archive(
            archive_path=config.archive_path,
            instance_dir=config.instance_dir,
            level_name=config.level_name,
            dry_run=config.dry_run,
        )
    except RestoreError as error:
        logger.error("Restore failed: %s", error)
        return error.exit_code
    return 0


if __name__ == "__main__":
    sys.exit(main())
