"""Shared models and enums for dotapply."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from .errors import ApplyError


@dataclass(frozen=True, slots=True)
class MappingEntry:
    """Links a stable hash-id to an original path and its storage location."""

    hash_id: str
    original: str
    storage_path: Path


class SymlinkState(str, Enum):
    """Observed state of a link target before convergence."""

    ABSENT = "absent"
    VALID_SYMLINK = "valid_symlink"
    BROKEN_SYMLINK = "broken_symlink"
    CONFLICT = "conflict"


@dataclass(frozen=True, slots=True)
class SymlinkRecord:
    target: Path
    storage: Path
    state: SymlinkState


@dataclass(frozen=True, slots=True)
class BackupRecord:
    """Original content moved aside when a conflict was resolved."""

    target: Path
    backup_path: Path
    created_ns: int


@dataclass(frozen=True, slots=True)
class LinkItem:
    """A single tracked file or directory to converge."""

    label: str
    target: Path
    storage: Path | None


class SecretState(str, Enum):
    PENDING = "pending"
    DECRYPTED = "decrypted"
    KEY_MISMATCH = "key_mismatch"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(slots=True)
class SecretEntry:
    """Tracks one secret through a single pipeline run."""

    original: str
    destination: Path
    ciphertext_path: Path | None
    state: SecretState = SecretState.PENDING


class SafetyLevel(str, Enum):
    """Static risk classification for a bootstrap script."""

    SAFE = "safe"
    WARNING = "warning"
    DANGEROUS = "dangerous"
    BLOCKED = "blocked"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]


_SEVERITY = {
    SafetyLevel.SAFE: 0,
    SafetyLevel.WARNING: 1,
    SafetyLevel.DANGEROUS: 2,
    SafetyLevel.BLOCKED: 3,
}


@dataclass(frozen=True, slots=True)
class PatternMatch:
    level: SafetyLevel
    rule: str
    line_number: int
    excerpt: str


@dataclass(frozen=True, slots=True)
class BootstrapScript:
    """Classification result for a generated setup script."""

    path: Path | None
    level: SafetyLevel
    matches: tuple[PatternMatch, ...] = ()


class PackageKind(str, Enum):
    """Homebrew distinguishes command-line formulae from bundled applications."""

    FORMULA = "formula"
    CASK = "cask"


class Stage(str, Enum):
    BOOTSTRAP = "bootstrap"
    SECRETS = "secrets"
    PACKAGES = "packages"
    LINKS = "links"


class StageStatus(str, Enum):
    COMPLETED = "completed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"
    NOT_RUN = "not_run"


class ItemStatus(str, Enum):
    SUCCEEDED = "succeeded"
    SKIPPED = "skipped"
    FAILED = "failed"


class LinkAction(str, Enum):
    CREATED = "created"
    UNCHANGED = "unchanged"
    REPAIRED = "repaired"
    BACKED_UP = "backed_up"
    OVERWRITTEN = "overwritten"
    CONFLICT = "conflict"
    EXCLUDED = "excluded"
    MISSING = "missing"
    CANCELLED = "cancelled"
    ERROR = "error"
    RESTORED = "restored"
    REMOVED = "removed"
    WOULD_CREATE = "would_create"
    WOULD_REPAIR = "would_repair"
    WOULD_BACK_UP = "would_back_up"
    WOULD_OVERWRITE = "would_overwrite"
    WOULD_RESTORE = "would_restore"
    WOULD_REMOVE = "would_remove"


class SecretAction(str, Enum):
    DECRYPTED = "decrypted"
    UNCHANGED = "unchanged"
    KEY_MISMATCH = "key_mismatch"
    KEY_MISSING = "key_missing"
    CANCELLED = "cancelled"
    MISSING = "missing"
    ERROR = "error"
    WOULD_DECRYPT = "would_decrypt"


class PackageAction(str, Enum):
    PRESENT = "present"
    INSTALLED = "installed"
    ERROR = "error"
    WOULD_INSTALL = "would_install"


class BootstrapAction(str, Enum):
    GENERATED = "generated"
    EXISTING = "existing"
    NONE = "none"
    WOULD_GENERATE = "would_generate"


@dataclass(frozen=True, slots=True)
class ItemOutcome:
    """Tagged per-item result; ``error`` is set when the item ends unresolved."""

    stage: Stage
    item: str
    status: ItemStatus
    action: str
    detail: str | None = None
    error: ApplyError | None = None

    @property
    def unresolved(self) -> bool:
        return self.error is not None


@dataclass(frozen=True, slots=True)
class StageReport:
    stage: Stage
    status: StageStatus
    outcomes: tuple[ItemOutcome, ...] = ()
    script: BootstrapScript | None = None


@dataclass(frozen=True, slots=True)
class ApplyOptions:
    """Options accepted from the invoking layer for one apply."""

    profile: str | None = None
    skip_bootstrap: bool = False
    skip_secrets: bool = False
    skip_packages: bool = False
    force: bool = False
    dry_run: bool = False


@dataclass(frozen=True, slots=True)
class ApplyReport:
    """Aggregated result of one profile invocation."""

    profile: str
    dry_run: bool = False
    stages: tuple[StageReport, ...] = field(default_factory=tuple)
    cancelled: bool = False

    def outcomes(self) -> list[ItemOutcome]:
        return [outcome for stage in self.stages for outcome in stage.outcomes]

    def stage(self, stage: Stage) -> StageReport | None:
        for report in self.stages:
            if report.stage is stage:
                return report
        return None

    @property
    def succeeded(self) -> int:
        return sum(1 for outcome in self.outcomes() if outcome.status is ItemStatus.SUCCEEDED)

    @property
    def skipped(self) -> int:
        return sum(1 for outcome in self.outcomes() if outcome.status is ItemStatus.SKIPPED)

    @property
    def failed(self) -> int:
        return sum(1 for outcome in self.outcomes() if outcome.unresolved)

    @property
    def ok(self) -> bool:
        return not self.cancelled and self.failed == 0

    @property
    def exit_code(self) -> int:
        return 0 if self.ok else 1
