"""High level orchestration for applying a profile."""

from __future__ import annotations

import logging
import shutil
from datetime import datetime
from fnmatch import fnmatch
from pathlib import Path
from typing import Callable, Iterable, Sequence

from . import bootstrap
from .config import Config, Profile
from .errors import ApplyError, MappingNotFound, PlaintextSecret, ProfileDisabled, ProfileNotFound
from .links import SymlinkManager
from .mapping import FileMappingResolver, canonicalize, expand
from .models import (
    ApplyOptions,
    ApplyReport,
    BootstrapAction,
    ItemOutcome,
    ItemStatus,
    LinkAction,
    LinkItem,
    MappingEntry,
    Stage,
    StageReport,
    StageStatus,
)
from .packages import PackageReconciler
from .ports import EncryptionBackend, PackageManager, Prompter
from .secrets import SecretsPipeline
from .state import StateStore

logger = logging.getLogger(__name__)


def is_excluded(canonical: str, patterns: Iterable[str]) -> bool:
    name = Path(canonical).name
    for pattern in patterns:
        cleaned = pattern.rstrip("/")
        if fnmatch(canonical, cleaned) or fnmatch(name, cleaned):
            return True
    return False


class ApplyOrchestrator:
    """Sequences bootstrap, secrets, packages and links for one profile.

    The stage order is fixed: the bootstrap script is surfaced for review
    first, secrets and packages must exist before links that may point at
    them, and links go last.
    """

    def __init__(
        self,
        config: Config,
        *,
        home: Path,
        encryption: EncryptionBackend,
        packages: PackageManager,
        prompter: Prompter | None = None,
        state: StateStore | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.config = config
        self.home = home
        self.encryption = encryption
        self.packages = packages
        self.prompter = prompter
        self.state = state if state is not None else StateStore.load(config.state_path)
        self.clock = clock

    def select_profile(self, name: str | None) -> Profile:
        if name is None:
            default = self.config.settings.default_profile
            if default in self.config.profiles:
                name = default
            elif self.prompter is not None:
                name = self.prompter.choose_profile(sorted(self.config.profiles), None)
            else:
                raise ProfileNotFound(default)

        profile = self.config.profile(name)
        if not profile.enabled:
            raise ProfileDisabled(name)
        return profile

    def resolver_for(self, profile: Profile) -> FileMappingResolver:
        resolver = FileMappingResolver(
            profile.name,
            self.config.profile_storage(profile.name),
            self.home,
            profile.file_mappings,
        )
        resolver.seed(self.state.mappings(profile.name))
        return resolver

    def apply(self, options: ApplyOptions) -> ApplyReport:
        profile = self.select_profile(options.profile)
        resolver = self.resolver_for(profile)
        mode = " (dry run)" if options.dry_run else ""
        logger.info("Applying profile '%s'%s", profile.name, mode)

        stages: list[StageReport] = []

        if options.skip_bootstrap:
            stages.append(StageReport(stage=Stage.BOOTSTRAP, status=StageStatus.SKIPPED))
        else:
            stages.append(self._bootstrap_stage(profile, dry_run=options.dry_run))

        cancelled = False
        if options.skip_secrets:
            stages.append(StageReport(stage=Stage.SECRETS, status=StageStatus.SKIPPED))
        else:
            pipeline = SecretsPipeline(
                profile=profile,
                resolver=resolver,
                home=self.home,
                backend=self.encryption,
                key_reference=self.config.secrets.age_key_file,
                storage_root=self.config.files_root,
                prompter=self.prompter,
                state=self.state,
                dry_run=options.dry_run,
                clock=self.clock,
            )
            stages.append(pipeline.run())
            cancelled = pipeline.cancelled

        if cancelled:
            logger.warning("Secrets stage cancelled; packages and links were not started")
            stages.append(StageReport(stage=Stage.PACKAGES, status=StageStatus.NOT_RUN))
            stages.append(StageReport(stage=Stage.LINKS, status=StageStatus.NOT_RUN))
            return ApplyReport(profile=profile.name, dry_run=options.dry_run, stages=tuple(stages), cancelled=True)

        if options.skip_packages:
            stages.append(StageReport(stage=Stage.PACKAGES, status=StageStatus.SKIPPED))
        else:
            stages.append(PackageReconciler(self.packages, dry_run=options.dry_run).run(profile))

        manager = SymlinkManager(
            backups=self.config.settings.create_backups,
            profile=profile.name,
            force=options.force,
            dry_run=options.dry_run,
            prompter=self.prompter,
            clock=self.clock,
        )
        items, excluded = self.link_items(profile, resolver)
        outcomes = excluded + manager.apply(items)
        status = StageStatus.CANCELLED if manager.cancelled else StageStatus.COMPLETED
        stages.append(StageReport(stage=Stage.LINKS, status=status, outcomes=tuple(outcomes)))
        logger.info("Link stage made %s change(s)", manager.mutations)

        return ApplyReport(
            profile=profile.name,
            dry_run=options.dry_run,
            stages=tuple(stages),
            cancelled=manager.cancelled,
        )

    def uninstall(self, name: str | None = None, *, dry_run: bool = False) -> ApplyReport:
        """Remove the profile's symlinks, restoring backups where they exist."""

        profile = self.select_profile(name)
        resolver = self.resolver_for(profile)
        manager = SymlinkManager(
            backups=self.config.settings.create_backups,
            profile=profile.name,
            dry_run=dry_run,
            clock=self.clock,
        )
        items, _ = self.link_items(profile, resolver, apply_exclusions=False)
        outcomes = tuple(manager.uninstall(item) for item in items)
        stage = StageReport(stage=Stage.LINKS, status=StageStatus.COMPLETED, outcomes=outcomes)
        return ApplyReport(profile=profile.name, dry_run=dry_run, stages=(stage,))

    def track(self, name: str, raw_path: str) -> MappingEntry:
        """Copy a file or directory into storage under a newly registered hash-id."""

        profile = self.config.profile(name)
        canonical = canonicalize(raw_path, self.home)
        if canonical in {canonicalize(secret, self.home) for secret in profile.secrets}:
            raise PlaintextSecret(canonical, profile.name)

        resolver = self.resolver_for(profile)
        source = expand(raw_path, self.home)
        if not source.exists():
            raise MappingNotFound(raw_path, profile.name)

        entry = resolver.register(raw_path)
        entry.storage_path.parent.mkdir(parents=True, exist_ok=True)
        if source.is_dir():
            shutil.copytree(source, entry.storage_path, symlinks=True, dirs_exist_ok=True)
        else:
            shutil.copy2(source, entry.storage_path)

        self.state.set_mappings(profile.name, resolver.mappings())
        self.state.save()
        logger.info("Tracked %s as %s", entry.original, entry.storage_path)
        return entry

    def link_items(
        self,
        profile: Profile,
        resolver: FileMappingResolver,
        *,
        apply_exclusions: bool = True,
    ) -> tuple[list[LinkItem], list[ItemOutcome]]:
        patterns: Sequence[str] = (*self.config.settings.exclude, *profile.exclude) if apply_exclusions else ()
        items: list[LinkItem] = []
        excluded: list[ItemOutcome] = []

        for raw in (*profile.files, *profile.directories):
            if is_excluded(canonicalize(raw, self.home), patterns):
                excluded.append(
                    ItemOutcome(
                        stage=Stage.LINKS,
                        item=raw,
                        status=ItemStatus.SKIPPED,
                        action=LinkAction.EXCLUDED.value,
                        detail="matches an exclude pattern",
                    )
                )
                continue
            items.append(
                LinkItem(
                    label=raw,
                    target=expand(raw, self.home),
                    storage=resolver.resolve(raw, required=False),
                )
            )
        return items, excluded

    def _bootstrap_stage(self, profile: Profile, *, dry_run: bool) -> StageReport:
        try:
            action, script = bootstrap.prepare_script(profile, self.config.repo_root, dry_run=dry_run)
        except OSError as exc:
            error = ApplyError(f"Unable to prepare bootstrap script: {exc}")
            outcome = ItemOutcome(
                stage=Stage.BOOTSTRAP,
                item=profile.bootstrap_script or "bootstrap",
                status=ItemStatus.FAILED,
                action="error",
                detail=str(error),
                error=error,
            )
            return StageReport(stage=Stage.BOOTSTRAP, status=StageStatus.COMPLETED, outcomes=(outcome,))

        if action is BootstrapAction.NONE or script is None:
            return StageReport(stage=Stage.BOOTSTRAP, status=StageStatus.SKIPPED)

        logger.info("Bootstrap script %s classified as %s", script.path, script.level.value)
        outcome = ItemOutcome(
            stage=Stage.BOOTSTRAP,
            item=str(script.path),
            status=ItemStatus.SUCCEEDED,
            action=action.value,
            detail=f"safety level: {script.level.value}",
        )
        return StageReport(stage=Stage.BOOTSTRAP, status=StageStatus.COMPLETED, outcomes=(outcome,), script=script)
