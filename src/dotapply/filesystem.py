"""Filesystem helpers for dotapply."""

from __future__ import annotations

import os
import shutil
import tempfile
from datetime import datetime
from pathlib import Path

BACKUP_MARKER = ".dotapply-backup."
PRIVATE_FILE_MODE = 0o600


def ensure_parent(path: Path) -> None:
    """Ensure the parent directory exists."""

    path.parent.mkdir(parents=True, exist_ok=True)


def exists_or_link(path: Path) -> bool:
    """``Path.exists`` follows links; dangling symlinks still occupy the path."""

    return path.exists() or path.is_symlink()


def create_symlink(link: Path, target: Path) -> None:
    """Create ``link`` pointing at ``target``, relative where possible.

    Any existing symlink at ``link`` is replaced. Non-link content must have
    been moved aside by the caller.
    """

    if link.is_symlink():
        link.unlink()

    ensure_parent(link)
    try:
        relative_target = os.path.relpath(target, start=link.parent)
        link.symlink_to(relative_target, target_is_directory=target.is_dir())
    except ValueError:
        link.symlink_to(target, target_is_directory=target.is_dir())


def symlink_points_to(source: Path, target: Path) -> bool:
    """Return ``True`` if ``source`` symlink resolves to ``target``."""

    if not source.is_symlink():
        return False
    current = Path(os.readlink(source))
    current_resolved = (source.parent / current).resolve(strict=False)
    target_resolved = target.resolve(strict=False)
    return current_resolved == target_resolved


def remove_path(path: Path) -> None:
    """Delete ``path`` whether it is a file, directory, or symlink."""

    if not exists_or_link(path):
        return
    if path.is_symlink() or path.is_file():
        path.unlink()
        return
    shutil.rmtree(path)


def next_backup_path(target: Path, now: datetime) -> Path:
    """Return an unused timestamp-suffixed backup path beside ``target``."""

    stamp = now.strftime("%Y%m%d-%H%M%S")
    candidate = target.with_name(f"{target.name}{BACKUP_MARKER}{stamp}")
    counter = 0
    while exists_or_link(candidate):
        counter += 1
        candidate = target.with_name(f"{target.name}{BACKUP_MARKER}{stamp}.{counter}")
    return candidate


def find_backups(target: Path) -> list[Path]:
    """Return backups of ``target`` ordered oldest to newest by mtime."""

    if not target.parent.is_dir():
        return []
    prefix = f"{target.name}{BACKUP_MARKER}"
    backups = [child for child in target.parent.iterdir() if child.name.startswith(prefix)]
    return sorted(backups, key=lambda item: (item.lstat().st_mtime_ns, item.name))


def is_within(path: Path, root: Path) -> bool:
    """Return ``True`` if ``path`` is ``root`` or lives underneath it."""

    resolved = path.resolve(strict=False)
    root_resolved = root.resolve(strict=False)
    return resolved == root_resolved or root_resolved in resolved.parents


def has_content(path: Path, data: bytes) -> bool:
    """Return ``True`` if ``path`` is a regular file holding exactly ``data``."""

    if path.is_symlink() or not path.is_file():
        return False
    if path.stat().st_size != len(data):
        return False
    return path.read_bytes() == data


def write_private_file(destination: Path, data: bytes) -> None:
    """Atomically write ``data`` to ``destination`` with owner-only permissions.

    A symlink at ``destination`` is replaced rather than written through.
    """

    ensure_parent(destination)
    fd, temp_name = tempfile.mkstemp(prefix=f".{destination.name}.dotapply-tmp-", dir=destination.parent)
    temp_path = Path(temp_name)
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
        os.chmod(temp_path, PRIVATE_FILE_MODE)
        os.replace(temp_path, destination)
    except Exception:
        temp_path.unlink(missing_ok=True)
        raise
