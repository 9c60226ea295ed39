"""Install only the Homebrew packages a profile is missing."""

from __future__ import annotations

import logging
from typing import Iterable

from .config import Profile
from .errors import PackageInstallFailed
from .models import ItemOutcome, ItemStatus, PackageAction, PackageKind, Stage, StageReport, StageStatus
from .ports import PackageManager

logger = logging.getLogger(__name__)


def desired_packages(profile: Profile) -> list[tuple[str, PackageKind]]:
    """Return the profile's packages in declaration order, deduplicated."""

    seen: set[str] = set()
    desired: list[tuple[str, PackageKind]] = []
    for names, kind in ((profile.homebrew_packages, PackageKind.FORMULA), (profile.homebrew_casks, PackageKind.CASK)):
        for name in names:
            if name in seen:
                continue
            seen.add(name)
            desired.append((name, kind))
    return desired


def partition_missing(
    desired: Iterable[tuple[str, PackageKind]], installed: set[str]
) -> dict[PackageKind, list[str]]:
    """Split ``desired - installed`` into one ordered batch per package kind."""

    batches: dict[PackageKind, list[str]] = {}
    for name, kind in desired:
        if name in installed:
            continue
        batches.setdefault(kind, []).append(name)
    return batches


class PackageReconciler:
    """Diffs desired against installed packages and issues batched installs."""

    def __init__(self, manager: PackageManager, *, dry_run: bool = False) -> None:
        self.manager = manager
        self.dry_run = dry_run

    def run(self, profile: Profile) -> StageReport:
        desired = desired_packages(profile)
        if not desired:
            return StageReport(stage=Stage.PACKAGES, status=StageStatus.SKIPPED)

        try:
            installed = self.manager.list_installed()
        except OSError as exc:
            logger.warning("Unable to list installed packages: %s", exc)
            names = [name for name, _ in desired]
            error = PackageInstallFailed(names, f"unable to list installed packages: {exc}")
            outcomes = tuple(_outcome(name, ItemStatus.FAILED, PackageAction.ERROR, str(error), error) for name in names)
            return StageReport(stage=Stage.PACKAGES, status=StageStatus.COMPLETED, outcomes=outcomes)

        results: dict[str, ItemOutcome] = {}
        for name, _kind in desired:
            if name in installed:
                results[name] = _outcome(name, ItemStatus.SUCCEEDED, PackageAction.PRESENT)

        for kind, names in partition_missing(desired, installed).items():
            results.update(self._install_batch(names, kind))

        outcomes = tuple(results[name] for name, _ in desired)
        return StageReport(stage=Stage.PACKAGES, status=StageStatus.COMPLETED, outcomes=outcomes)

    def _install_batch(self, names: list[str], kind: PackageKind) -> dict[str, ItemOutcome]:
        if self.dry_run:
            detail = f"{kind.value} batch"
            return {name: _outcome(name, ItemStatus.SUCCEEDED, PackageAction.WOULD_INSTALL, detail) for name in names}

        logger.info("Installing %s %ss: %s", len(names), kind.value, ", ".join(names))
        try:
            result = self.manager.install(names, kind)
            ok, message = result.ok, result.message
        except OSError as exc:
            ok, message = False, str(exc)

        if ok:
            return {name: _outcome(name, ItemStatus.SUCCEEDED, PackageAction.INSTALLED) for name in names}

        error = PackageInstallFailed(names, message)
        logger.warning("%s", error)
        return {name: _outcome(name, ItemStatus.FAILED, PackageAction.ERROR, str(error), error) for name in names}


def _outcome(
    name: str,
    status: ItemStatus,
    action: PackageAction,
    detail: str | None = None,
    error: PackageInstallFailed | None = None,
) -> ItemOutcome:
    return ItemOutcome(
        stage=Stage.PACKAGES,
        item=name,
        status=status,
        action=action.value,
        detail=detail,
        error=error,
    )
