"""Decrypt tracked secrets into place at apply time."""

from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable

from .config import Profile
from .errors import ApplyError, KeyMismatch, KeyMissing, MappingNotFound, OracleError, UnsafeDestination
from .filesystem import exists_or_link, has_content, is_within, write_private_file
from .mapping import FileMappingResolver, expand
from .models import ItemOutcome, ItemStatus, SecretAction, SecretEntry, SecretState, Stage, StageReport, StageStatus
from .ports import (
    Decrypted,
    EncryptionBackend,
    KeyMismatchResult,
    KeySetupChoice,
    MismatchChoice,
    OracleFailure,
    Prompter,
)
from .state import StateStore

logger = logging.getLogger(__name__)


class MismatchState(str, Enum):
    """States of the key-mismatch recovery dialog."""

    DETECTED = "detected"
    AWAITING_CHOICE = "awaiting_choice"
    RESOLVED = "resolved"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


class SecretsPipeline:
    """Produces plaintext for each secret at its destination, never in storage."""

    def __init__(
        self,
        *,
        profile: Profile,
        resolver: FileMappingResolver,
        home: Path,
        backend: EncryptionBackend,
        key_reference: str,
        storage_root: Path,
        prompter: Prompter | None = None,
        state: StateStore | None = None,
        dry_run: bool = False,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.profile = profile
        self.resolver = resolver
        self.home = home
        self.backend = backend
        self.key_reference = key_reference
        self.storage_root = storage_root
        self.prompter = prompter
        self.state = state
        self.dry_run = dry_run
        self.clock = clock
        self.cancelled = False
        self._entries: list[SecretEntry] = []
        self._results: list[ItemOutcome | None] = []
        self._mismatched: list[int] = []

    def run(self) -> StageReport:
        if not self.profile.secrets:
            return StageReport(stage=Stage.SECRETS, status=StageStatus.SKIPPED)

        self._entries = [self._entry(raw) for raw in self.profile.secrets]
        self._results = [None] * len(self._entries)
        self._mismatched = []

        if not self.backend.key_available(self.key_reference):
            if self.dry_run or self.prompter is None:
                logger.warning("No key at %s; secrets for %s were not decrypted", self.key_reference, self.profile.name)
                return self._key_missing_report()
            if not self._setup_key(self.prompter):
                self.cancelled = True
                return self._key_missing_report()

        for index, entry in enumerate(self._entries):
            if self.cancelled:
                entry.state = SecretState.SKIPPED
                self._results[index] = self._outcome(
                    entry, ItemStatus.SKIPPED, SecretAction.CANCELLED, "apply cancelled"
                )
                continue
            self._results[index] = self._process(index, entry)

        status = StageStatus.CANCELLED if self.cancelled else StageStatus.COMPLETED
        outcomes = tuple(result for result in self._results if result is not None)
        return StageReport(stage=Stage.SECRETS, status=status, outcomes=outcomes)

    @property
    def entries(self) -> list[SecretEntry]:
        return list(self._entries)

    # ------------------------------------------------------------------
    # Key setup

    def _setup_key(self, prompter: Prompter) -> bool:
        while True:
            choice = prompter.choose_key_setup(self.key_reference)
            if choice is KeySetupChoice.CANCEL:
                logger.info("Key setup cancelled")
                return False

            if choice is KeySetupChoice.GENERATE:
                result = self.backend.generate_key(self.key_reference)
                method = "generated"
            else:
                material = prompter.ask_key_material()
                result = self.backend.import_key(material, self.key_reference)
                method = "imported"

            if result.ok:
                logger.info("Key %s at %s", method, self.key_reference)
                if self.state is not None:
                    self.state.record_key_created(
                        self.profile.name, self.key_reference, created_on=self.clock(), method=method
                    )
                    self.state.save()
                return True
            logger.warning("Key setup failed: %s", result.message)

    def _key_missing_report(self) -> StageReport:
        outcomes = []
        for entry in self._entries:
            entry.state = SecretState.SKIPPED
            outcomes.append(
                self._outcome(
                    entry,
                    ItemStatus.SKIPPED,
                    SecretAction.KEY_MISSING,
                    "no key material available",
                    error=KeyMissing(self.key_reference),
                )
            )
        status = StageStatus.CANCELLED if self.cancelled else StageStatus.COMPLETED
        return StageReport(stage=Stage.SECRETS, status=status, outcomes=tuple(outcomes))

    # ------------------------------------------------------------------
    # Per-secret processing

    def _entry(self, raw: str) -> SecretEntry:
        destination = expand(raw, self.home)
        ciphertext = self.resolver.resolve(raw, required=False)
        return SecretEntry(original=raw, destination=destination, ciphertext_path=ciphertext)

    def _process(self, index: int, entry: SecretEntry) -> ItemOutcome:
        if entry.ciphertext_path is None or not exists_or_link(entry.ciphertext_path):
            entry.state = SecretState.FAILED
            error = MappingNotFound(entry.original, self.profile.name)
            return self._outcome(entry, ItemStatus.FAILED, SecretAction.MISSING, str(error), error=error)

        if is_within(entry.destination, self.storage_root):
            entry.state = SecretState.FAILED
            error = UnsafeDestination(entry.destination)
            return self._outcome(entry, ItemStatus.FAILED, SecretAction.ERROR, str(error), error=error)

        if self.dry_run:
            return self._outcome(entry, ItemStatus.SUCCEEDED, SecretAction.WOULD_DECRYPT)

        while True:
            outcome = self._attempt(entry)
            if outcome is not None:
                return outcome

            final = self._resolve_mismatch(entry)
            if final is MismatchState.RESOLVED:
                self._retry_skipped()
                continue
            if final is MismatchState.SKIPPED:
                entry.state = SecretState.SKIPPED
                self._mismatched.append(index)
                return self._outcome(
                    entry,
                    ItemStatus.SKIPPED,
                    SecretAction.KEY_MISMATCH,
                    "skipped after key mismatch",
                    error=KeyMismatch(entry.original),
                )
            entry.state = SecretState.SKIPPED
            self.cancelled = True
            return self._outcome(
                entry,
                ItemStatus.SKIPPED,
                SecretAction.CANCELLED,
                "cancelled after key mismatch",
                error=KeyMismatch(entry.original),
            )

    def _attempt(self, entry: SecretEntry) -> ItemOutcome | None:
        """Decrypt once. Returns ``None`` when the key does not match."""

        path = entry.ciphertext_path
        try:
            ciphertext = path.read_bytes() if path is not None else b""
        except OSError as exc:
            entry.state = SecretState.FAILED
            error = OracleError(entry.original, str(exc))
            return self._outcome(entry, ItemStatus.FAILED, SecretAction.ERROR, str(error), error=error)

        result = self.backend.decrypt(ciphertext, self.key_reference, name=path.name if path is not None else "")

        if isinstance(result, KeyMismatchResult):
            entry.state = SecretState.KEY_MISMATCH
            logger.warning("Key mismatch for %s", entry.original)
            return None

        if isinstance(result, OracleFailure):
            entry.state = SecretState.FAILED
            error = OracleError(entry.original, result.message)
            logger.warning("%s", error)
            return self._outcome(entry, ItemStatus.FAILED, SecretAction.ERROR, str(error), error=error)

        return self._write(entry, result)

    def _write(self, entry: SecretEntry, result: Decrypted) -> ItemOutcome:
        try:
            if has_content(entry.destination, result.plaintext):
                entry.destination.chmod(0o600)
                action = SecretAction.UNCHANGED
            else:
                write_private_file(entry.destination, result.plaintext)
                action = SecretAction.DECRYPTED
        except OSError as exc:
            entry.state = SecretState.FAILED
            error = ApplyError(f"Unable to write '{entry.destination}': {exc}")
            return self._outcome(entry, ItemStatus.FAILED, SecretAction.ERROR, str(error), error=error)
        finally:
            del result

        entry.state = SecretState.DECRYPTED
        logger.info("Decrypted %s", entry.destination)
        return self._outcome(entry, ItemStatus.SUCCEEDED, action)

    def _resolve_mismatch(self, entry: SecretEntry) -> MismatchState:
        state = MismatchState.DETECTED
        if self.prompter is None:
            logger.info("No prompter available; skipping %s", entry.original)
            return MismatchState.SKIPPED

        while True:
            state = MismatchState.AWAITING_CHOICE
            choice = self.prompter.resolve_key_mismatch(entry.original)
            if choice is MismatchChoice.SKIP:
                return MismatchState.SKIPPED
            if choice is MismatchChoice.CANCEL:
                return MismatchState.CANCELLED

            material = self.prompter.ask_key_material()
            result = self.backend.import_key(material, self.key_reference)
            if result.ok:
                logger.info("Imported replacement key for %s", self.key_reference)
                return MismatchState.RESOLVED
            logger.warning("Key import failed (%s); still %s", result.message, state.value)

    def _retry_skipped(self) -> None:
        """Retry secrets skipped for a key mismatch earlier in this run."""

        pending, self._mismatched = self._mismatched, []
        for index in pending:
            entry = self._entries[index]
            outcome = self._attempt(entry)
            if outcome is None:
                entry.state = SecretState.SKIPPED
                self._mismatched.append(index)
                continue
            self._results[index] = outcome

    @staticmethod
    def _outcome(
        entry: SecretEntry,
        status: ItemStatus,
        action: SecretAction,
        detail: str | None = None,
        *,
        error: ApplyError | None = None,
    ) -> ItemOutcome:
        return ItemOutcome(
            stage=Stage.SECRETS,
            item=entry.original,
            status=status,
            action=action.value,
            detail=detail,
            error=error,
        )
