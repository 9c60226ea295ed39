"""Symlink convergence and uninstall for tracked files and directories."""

from __future__ import annotations

import logging
import shutil
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable

from .errors import ApplyError, BackupUnavailable, Conflict, MappingNotFound
from .filesystem import (
    create_symlink,
    exists_or_link,
    find_backups,
    next_backup_path,
    remove_path,
    symlink_points_to,
)
from .models import (
    BackupRecord,
    ItemOutcome,
    ItemStatus,
    LinkAction,
    LinkItem,
    Stage,
    SymlinkRecord,
    SymlinkState,
)
from .ports import ConflictChoice, Prompter

logger = logging.getLogger(__name__)


class LinkStageCancelled(Exception):
    """Raised internally when the user cancels at a conflict prompt."""


class SymlinkManager:
    """Brings link targets in line with their resolved storage locations."""

    def __init__(
        self,
        *,
        backups: bool,
        profile: str = "",
        force: bool = False,
        dry_run: bool = False,
        prompter: Prompter | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.backups = backups
        self.profile = profile
        self.force = force
        self.dry_run = dry_run
        self.prompter = prompter
        self.clock = clock
        self.cancelled = False
        self.mutations = 0

    def inspect(self, target: Path, storage: Path) -> SymlinkRecord:
        if target.is_symlink():
            if symlink_points_to(target, storage) and storage.exists():
                state = SymlinkState.VALID_SYMLINK
            else:
                state = SymlinkState.BROKEN_SYMLINK
        elif target.exists():
            state = SymlinkState.CONFLICT
        else:
            state = SymlinkState.ABSENT
        return SymlinkRecord(target=target, storage=storage, state=state)

    def apply(self, items: Iterable[LinkItem]) -> list[ItemOutcome]:
        """Converge every item; one item's failure never stops its siblings."""

        outcomes: list[ItemOutcome] = []
        for item in items:
            if self.cancelled:
                outcomes.append(self._outcome(item, ItemStatus.SKIPPED, LinkAction.CANCELLED, "apply cancelled"))
                continue
            try:
                outcomes.append(self.converge(item))
            except LinkStageCancelled:
                self.cancelled = True
                outcomes.append(
                    self._outcome(
                        item,
                        ItemStatus.SKIPPED,
                        LinkAction.CANCELLED,
                        "cancelled at conflict prompt",
                        error=Conflict(item.target),
                    )
                )
        return outcomes

    def converge(self, item: LinkItem) -> ItemOutcome:
        if item.storage is None or not exists_or_link(item.storage):
            error = MappingNotFound(item.label, self.profile)
            return self._outcome(item, ItemStatus.FAILED, LinkAction.MISSING, str(error), error=error)

        record = self.inspect(item.target, item.storage)
        logger.debug("%s is %s", item.target, record.state.value)

        try:
            if record.state is SymlinkState.VALID_SYMLINK:
                return self._outcome(item, ItemStatus.SUCCEEDED, LinkAction.UNCHANGED)

            if record.state is SymlinkState.ABSENT:
                if self.dry_run:
                    return self._outcome(item, ItemStatus.SUCCEEDED, LinkAction.WOULD_CREATE)
                self._link(item.target, item.storage)
                return self._outcome(item, ItemStatus.SUCCEEDED, LinkAction.CREATED)

            if record.state is SymlinkState.BROKEN_SYMLINK:
                if self.dry_run:
                    return self._outcome(item, ItemStatus.SUCCEEDED, LinkAction.WOULD_REPAIR)
                self._link(item.target, item.storage)
                return self._outcome(item, ItemStatus.SUCCEEDED, LinkAction.REPAIRED)

            return self._resolve_conflict(item)
        except LinkStageCancelled:
            raise
        except ApplyError as exc:
            return self._outcome(item, ItemStatus.FAILED, LinkAction.ERROR, str(exc), error=exc)
        except OSError as exc:
            error = ApplyError(f"Unable to link '{item.target}': {exc}")
            logger.warning("%s", error)
            return self._outcome(item, ItemStatus.FAILED, LinkAction.ERROR, str(error), error=error)

    def uninstall(self, item: LinkItem) -> ItemOutcome:
        """Remove our symlink and restore the most recent backup, if any."""

        target = item.target
        if item.storage is None or not target.is_symlink() or not symlink_points_to(target, item.storage):
            detail = "not a symlink managed by this profile" if exists_or_link(target) else "nothing to remove"
            return self._outcome(item, ItemStatus.SKIPPED, LinkAction.UNCHANGED, detail)

        backup = self.latest_backup(target)
        if self.dry_run:
            if backup is not None:
                return self._outcome(item, ItemStatus.SUCCEEDED, LinkAction.WOULD_RESTORE, str(backup.backup_path))
            return self._outcome(item, ItemStatus.SUCCEEDED, LinkAction.WOULD_REMOVE, "no backup found")

        target.unlink()
        self.mutations += 1
        if backup is None:
            logger.warning("No backup found for %s; removed the symlink only", target)
            return self._outcome(item, ItemStatus.SUCCEEDED, LinkAction.REMOVED, "no backup found")

        backup.backup_path.rename(target)
        logger.info("Restored %s from %s", target, backup.backup_path)
        return self._outcome(item, ItemStatus.SUCCEEDED, LinkAction.RESTORED, f"restored from {backup.backup_path}")

    def find_backups(self, target: Path) -> list[BackupRecord]:
        return [
            BackupRecord(target=target, backup_path=path, created_ns=path.lstat().st_mtime_ns)
            for path in find_backups(target)
        ]

    def latest_backup(self, target: Path) -> BackupRecord | None:
        backups = self.find_backups(target)
        return backups[-1] if backups else None

    # ------------------------------------------------------------------
    # Internal helpers

    def _resolve_conflict(self, item: LinkItem) -> ItemOutcome:
        if self.backups:
            if self.dry_run:
                return self._outcome(item, ItemStatus.SUCCEEDED, LinkAction.WOULD_BACK_UP)
            backup = self._backup(item.target)
            self._link(item.target, item.storage)
            return self._outcome(item, ItemStatus.SUCCEEDED, LinkAction.BACKED_UP, f"backup at {backup.backup_path}")

        overwrite = self.force
        if not overwrite and self.prompter is not None and not self.dry_run:
            choice = self.prompter.resolve_conflict(str(item.target))
            if choice is ConflictChoice.CANCEL:
                raise LinkStageCancelled()
            overwrite = choice is ConflictChoice.OVERWRITE

        if not overwrite:
            error = Conflict(item.target)
            logger.warning("%s", error)
            return self._outcome(item, ItemStatus.FAILED, LinkAction.CONFLICT, str(error), error=error)

        if self.dry_run:
            return self._outcome(item, ItemStatus.SUCCEEDED, LinkAction.WOULD_OVERWRITE)
        remove_path(item.target)
        self._link(item.target, item.storage)
        return self._outcome(item, ItemStatus.SUCCEEDED, LinkAction.OVERWRITTEN)

    def _backup(self, target: Path) -> BackupRecord:
        backup_path = next_backup_path(target, self.clock())
        try:
            shutil.move(str(target), str(backup_path))
        except OSError as exc:
            raise BackupUnavailable(target, str(exc)) from exc
        logger.info("Backed up %s to %s", target, backup_path)
        return BackupRecord(target=target, backup_path=backup_path, created_ns=backup_path.lstat().st_mtime_ns)

    def _link(self, target: Path, storage: Path) -> None:
        create_symlink(target, storage)
        self.mutations += 1
        logger.info("Linked %s -> %s", target, storage)

    @staticmethod
    def _outcome(
        item: LinkItem,
        status: ItemStatus,
        action: LinkAction,
        detail: str | None = None,
        *,
        error: ApplyError | None = None,
    ) -> ItemOutcome:
        return ItemOutcome(
            stage=Stage.LINKS,
            item=item.label,
            status=status,
            action=action.value,
            detail=detail,
            error=error,
        )
