import os
import sys
import zipfile
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Tuple

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest

import restore_backup
from restore_errors import ConfigurationError, InputNotFoundError


def create_world_zip(zip_path: Path, world_dir: str, files: Dict[str, bytes]) -> Path:
    with zipfile.ZipFile(zip_path, "w") as zf:
        for filename, content in files.items():
            zf.writestr(f"{world_dir}/{filename}" if world_dir else filename, content)
    return zip_path


def make_instance(tmp_path: Path, properties: str = "") -> Path:
    instance = tmp_path / "server"
    instance.mkdir()
    if properties:
        (instance / "server.properties").write_text(properties)
    return instance.resolve()


def test_restore_backup_moves_existing_world_aside(tmp_path: Path) -> None:
    instance = make_instance(tmp_path)
    world = instance / "world"
    world.mkdir()
    (world / "old.txt").write_text("old world")

    archive = create_world_zip(
        tmp_path / "backup.zip",
        "world",
        {"level.dat": b"new level", "region/r.0.0.mca": b"new region"},
    )

    result = restore_backup.restore_backup_archive(
        archive, instance, clock=lambda: datetime(2024, 1, 1, 12, 0, 0)
    )

    old_world = instance / "world-2024-01-01-12-00-00"
    assert result.previous_world == old_world
    assert (old_world / "old.txt").read_text() == "old world"
    assert (world / "level.dat").read_bytes() == b"new level"
    assert (world / "region" / "r.0.0.mca").read_bytes() == b"new region"
    assert not (world / "old.txt").exists()


def test_restore_backup_uses_level_name_from_properties(tmp_path: Path) -> None:
    instance = make_instance(tmp_path, "motd=hi\nlevel-name=survival\n")
    archive = create_world_zip(tmp_path / "backup.zip", "", {"level.dat": b"level"})

    result = restore_backup.restore_backup_archive(archive, instance)

    assert result.world_path == instance / "survival"
    assert (instance / "survival" / "level.dat").read_bytes() == b"level"
    assert not (instance / "world").exists()


def test_restore_backup_level_name_override(tmp_path: Path) -> None:
    instance = make_instance(tmp_path, "level-name=survival\n")
    archive = create_world_zip(tmp_path / "backup.zip", "x", {"level.dat": b"level"})

    restore_backup.restore_backup_archive(archive, instance, level_name="creative")

    assert (instance / "creative" / "level.dat").read_bytes() == b"level"


@pytest.mark.skipif(os.name != "posix", reason="zipfile records Unix modes only on POSIX hosts")
def test_restore_backup_passes_modes_to_applier(tmp_path: Path) -> None:
    instance = make_instance(tmp_path)
    archive = create_world_zip(tmp_path / "backup.zip", "w", {"level.dat": b"level"})
    calls: List[Tuple[Path, int]] = []

    restore_backup.restore_backup_archive(
        archive, instance, apply_mode=lambda path, mode: calls.append((path, mode))
    )

    assert calls == [(instance / "world" / "level.dat", 0o600)]


def test_restore_backup_dry_run(tmp_path: Path) -> None:
    instance = make_instance(tmp_path)
    existing = instance / "world"
    existing.mkdir()
    (existing / "file.txt").write_text("live")
    archive = create_world_zip(tmp_path / "backup.zip", "world", {"level.dat": b"archive"})

    result = restore_backup.restore_backup_archive(archive, instance, dry_run=True)

    assert result.files_extracted == 1
    assert sorted(p.name for p in instance.iterdir()) == ["world"]
    assert (existing / "file.txt").read_text() == "live"
    assert not (existing / "level.dat").exists()


def test_restore_backup_missing_instance(tmp_path: Path) -> None:
    archive = create_world_zip(tmp_path / "backup.zip", "", {"level.dat": b"level"})

    with pytest.raises(InputNotFoundError) as excinfo:
        restore_backup.restore_backup_archive(archive, tmp_path / "nope")

    assert excinfo.value.exit_code == 2


def test_restore_backup_missing_archive(tmp_path: Path) -> None:
    instance = make_instance(tmp_path)

    with pytest.raises(InputNotFoundError) as excinfo:
        restore_backup.restore_backup_archive(tmp_path / "missing.zip", instance)

    assert excinfo.value.exit_code == 3


def test_ambiguous_archive_leaves_world_in_place(tmp_path: Path) -> None:
    instance = make_instance(tmp_path)
    world = instance / "world"
    world.mkdir()
    (world / "level.dat").write_bytes(b"live")
    archive_path = tmp_path / "backup.zip"
    with zipfile.ZipFile(archive_path, "w") as zf:
        zf.writestr("a/level.dat", b"a")
        zf.writestr("b/level.dat", b"b")

    exit_code = restore_backup.main(["-i", str(instance), "-b", str(archive_path)])

    assert exit_code == 5
    assert sorted(p.name for p in instance.iterdir()) == ["world"]
    assert (world / "level.dat").read_bytes() == b"live"


@pytest.mark.parametrize(
    ("setup", "expected"),
    [
        ("missing_instance", 2),
        ("missing_archive", 3),
        ("bad_properties", 4),
        ("not_a_zip", 7),
        ("ok", 0),
    ],
)
def test_main_exit_codes(tmp_path: Path, setup: str, expected: int) -> None:
    instance = make_instance(tmp_path)
    archive = create_world_zip(tmp_path / "backup.zip", "w", {"level.dat": b"level"})

    if setup == "missing_instance":
        instance = tmp_path / "missing"
    elif setup == "missing_archive":
        archive = tmp_path / "missing.zip"
    elif setup == "bad_properties":
        (instance / "server.properties").write_text("level-name=\\uZZZZ\n")
    elif setup == "not_a_zip":
        archive.write_bytes(b"plain text")

    assert restore_backup.main(["-i", str(instance), "-b", str(archive)]) == expected


def test_main_filesystem_failure(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    instance = make_instance(tmp_path)
    (instance / "world").mkdir()
    archive = create_world_zip(tmp_path / "backup.zip", "w", {"level.dat": b"level"})

    def fail_rename(self: Path, target: Path) -> Path:
        raise OSError("Invalid cross-device link")

    monkeypatch.setattr(Path, "rename", fail_rename)

    assert restore_backup.main(["-i", str(instance), "-b", str(archive)]) == 6
    assert (instance / "world").is_dir()


def test_main_requires_instance_and_backup() -> None:
    assert restore_backup.main([]) == 1


def test_main_reads_config_file(tmp_path: Path) -> None:
    instance = make_instance(tmp_path)
    archive = create_world_zip(tmp_path / "backup.zip", "w", {"level.dat": b"level"})
    config = tmp_path / "restore.ini"
    config.write_text(
        "[restore]\n"
        f"instance = {instance}\n"
        f"backup = {archive}\n"
        "level_name = from_config\n"
    )

    assert restore_backup.main(["-c", str(config)]) == 0
    assert (instance / "from_config" / "level.dat").read_bytes() == b"level"


def test_merge_config_cli_overrides_file(tmp_path: Path) -> None:
    args = restore_backup.parse_args(
        ["-i", str(tmp_path / "cli"), "--level-name", "cli_world", "-v"]
    )
    file_config = {
        "instance": str(tmp_path / "file"),
        "backup": str(tmp_path / "backup.zip"),
        "level_name": "file_world",
        "dry_run": "yes",
        "log_level": "WARNING",
    }

    config = restore_backup.merge_config(args, file_config)

    assert config.instance_dir == (tmp_path / "cli").resolve()
    assert config.archive_path == (tmp_path / "backup.zip").resolve()
    assert config.level_name == "cli_world"
    assert config.dry_run is True
    assert config.log_level == "DEBUG"


def test_merge_config_rejects_bad_bool(tmp_path: Path) -> None:
    args = restore_backup.parse_args(["-i", str(tmp_path), "-b", str(tmp_path / "b.zip")])

    with pytest.raises(ConfigurationError):
        restore_backup.merge_config(args, {"dry_run": "maybe"})


def test_read_config_file_requires_section(tmp_path: Path) -> None:
    config = tmp_path / "restore.ini"
    config.write_text("[backup]\nbackup_dir = /tmp\n")

    with pytest.raises(ConfigurationError):
        restore_backup.read_config_file(config)


@pytest.mark.parametrize("level_name", ["", ".", ".."])
def test_level_name_resolving_to_instance_is_refused(tmp_path: Path, level_name: str) -> None:
    instance = make_instance(tmp_path, f"level-name={level_name}\n")
    (instance / "server.jar").write_bytes(b"jar")
    archive = create_world_zip(tmp_path / "backup.zip", "w", {"level.dat": b"level"})
    before = sorted(p.name for p in instance.iterdir())

    exit_code = restore_backup.main(["-i", str(instance), "-b", str(archive)])

    assert exit_code == 6
    assert sorted(p.name for p in tmp_path.iterdir()) == ["backup.zip", "server"]
    assert sorted(p.name for p in instance.iterdir()) == before
    assert (instance / "server.jar").read_bytes() == b"jar"
