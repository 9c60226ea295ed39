from __future__ import annotations

import os
import stat
from datetime import datetime
from pathlib import Path

from dotapply.filesystem import (
    BACKUP_MARKER,
    create_symlink,
    find_backups,
    has_content,
    is_within,
    next_backup_path,
    remove_path,
    symlink_points_to,
    write_private_file,
)


def test_create_symlink_is_relative_and_replaces_links(tmp_path: Path) -> None:
    storage = tmp_path / "repo" / "files" / "zshrc"
    storage.parent.mkdir(parents=True)
    storage.write_text("export A=1\n")
    other = tmp_path / "other"
    other.write_text("")
    link = tmp_path / "home" / ".zshrc"
    link.parent.mkdir()
    link.symlink_to(other)

    create_symlink(link, storage)

    assert link.is_symlink()
    assert not os.path.isabs(os.readlink(link))
    assert symlink_points_to(link, storage)
    assert link.read_text() == "export A=1\n"


def test_symlink_points_to_rejects_regular_files(tmp_path: Path) -> None:
    target = tmp_path / "file"
    target.write_text("data")

    assert symlink_points_to(target, target) is False


def test_remove_path_handles_files_dirs_and_dangling_links(tmp_path: Path) -> None:
    file_path = tmp_path / "file"
    file_path.write_text("x")
    dir_path = tmp_path / "dir"
    (dir_path / "nested").mkdir(parents=True)
    dangling = tmp_path / "dangling"
    dangling.symlink_to(tmp_path / "gone")

    for path in (file_path, dir_path, dangling):
        remove_path(path)
        assert not path.exists() and not path.is_symlink()


def test_next_backup_path_avoids_existing_names(tmp_path: Path) -> None:
    target = tmp_path / ".zshrc"
    now = datetime(2024, 5, 1, 12, 30, 0)

    first = next_backup_path(target, now)
    assert first.name == f".zshrc{BACKUP_MARKER}20240501-123000"

    first.write_text("old")
    second = next_backup_path(target, now)
    assert second.name == f".zshrc{BACKUP_MARKER}20240501-123000.1"

    second.write_text("older")
    third = next_backup_path(target, now)
    assert third.name == f".zshrc{BACKUP_MARKER}20240501-123000.2"


def test_find_backups_orders_by_mtime(tmp_path: Path) -> None:
    target = tmp_path / ".zshrc"
    newer = tmp_path / f".zshrc{BACKUP_MARKER}20200101-000000"
    older = tmp_path / f".zshrc{BACKUP_MARKER}20240101-000000"
    newer.write_text("newer")
    older.write_text("older")
    os.utime(older, ns=(1_000_000_000, 1_000_000_000))
    os.utime(newer, ns=(2_000_000_000, 2_000_000_000))
    (tmp_path / ".zshrc.unrelated").write_text("")

    assert find_backups(target) == [older, newer]
    assert find_backups(tmp_path / "missing" / "file") == []


def test_write_private_file_is_owner_only(tmp_path: Path) -> None:
    destination = tmp_path / ".ssh" / "config"

    write_private_file(destination, b"Host *\n")

    assert destination.read_bytes() == b"Host *\n"
    assert stat.S_IMODE(destination.stat().st_mode) == 0o600
    assert [child.name for child in destination.parent.iterdir()] == ["config"]


def test_write_private_file_replaces_symlink(tmp_path: Path) -> None:
    elsewhere = tmp_path / "elsewhere"
    elsewhere.write_bytes(b"keep")
    destination = tmp_path / "secret"
    destination.symlink_to(elsewhere)

    write_private_file(destination, b"plain")

    assert not destination.is_symlink()
    assert destination.read_bytes() == b"plain"
    assert elsewhere.read_bytes() == b"keep"


def test_has_content_and_is_within(tmp_path: Path) -> None:
    path = tmp_path / "file"
    path.write_bytes(b"abc")

    assert has_content(path, b"abc")
    assert not has_content(path, b"abcd")
    assert not has_content(tmp_path / "missing", b"")
    assert is_within(tmp_path / "a" / "b", tmp_path)
    assert not is_within(tmp_path.parent, tmp_path)
