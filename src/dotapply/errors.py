"""Error taxonomy for the apply engine."""

from __future__ import annotations

from pathlib import Path
from typing import Sequence


class ApplyError(RuntimeError):
    """Base class for every error raised or recorded by dotapply."""


class ProfileNotFound(ApplyError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Profile '{name}' does not exist")
        self.name = name


class ProfileDisabled(ApplyError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Profile '{name}' is disabled")
        self.name = name


class MappingNotFound(ApplyError):
    """No hashed mapping and no legacy storage file exists for a tracked path."""

    def __init__(self, original: str, profile: str) -> None:
        super().__init__(f"No stored copy of '{original}' in profile '{profile}'")
        self.original = original
        self.profile = profile


class MappingCollision(ApplyError):
    """Two distinct original paths produced the same hash-id."""

    def __init__(self, hash_id: str, existing: str, incoming: str) -> None:
        super().__init__(
            f"Hash-id '{hash_id}' already maps to '{existing}'; refusing to register '{incoming}'"
        )
        self.hash_id = hash_id
        self.existing = existing
        self.incoming = incoming


class Conflict(ApplyError):
    """A target path is occupied by content that is not a symlink."""

    def __init__(self, path: Path) -> None:
        super().__init__(
            f"'{path}' already exists and is not a symlink. Enable backups or use --force to overwrite."
        )
        self.path = path


class BackupUnavailable(ApplyError):
    def __init__(self, path: Path, reason: str) -> None:
        super().__init__(f"Unable to back up '{path}': {reason}")
        self.path = path


class KeyMissing(ApplyError):
    def __init__(self, key_reference: str) -> None:
        super().__init__(f"No key material found at '{key_reference}'")
        self.key_reference = key_reference


class KeyMismatch(ApplyError):
    def __init__(self, file: str) -> None:
        super().__init__(f"'{file}' cannot be decrypted with the configured key")
        self.file = file


class OracleError(ApplyError):
    """The decryption tool failed for reasons other than a key mismatch."""

    def __init__(self, file: str, message: str) -> None:
        super().__init__(f"Decryption of '{file}' failed: {message}")
        self.file = file
        self.message = message


class UnsafeDestination(ApplyError):
    def __init__(self, path: Path) -> None:
        super().__init__(f"Refusing to write plaintext into repository storage at '{path}'")
        self.path = path


class PackageInstallFailed(ApplyError):
    def __init__(self, names: Sequence[str], message: str = "") -> None:
        joined = ", ".join(names)
        text = f"Failed to install: {joined}"
        if message:
            text = f"{text} ({message})"
        super().__init__(text)
        self.names = tuple(names)
        self.message = message


class ScriptBlocked(ApplyError):
    def __init__(self, path: Path | None) -> None:
        super().__init__(f"Bootstrap script '{path}' contains blocked commands and must not be run")
        self.path = path


class ScriptDangerous(ApplyError):
    def __init__(self, path: Path | None) -> None:
        super().__init__(f"Bootstrap script '{path}' contains dangerous commands; review it before running")
        self.path = path


class PlaintextSecret(ApplyError):
    """A path declared as a secret would be copied into storage unencrypted."""

    def __init__(self, original: str, profile: str) -> None:
        super().__init__(
            f"'{original}' is a secret in profile '{profile}'; store it encrypted with sops instead of tracking it"
        )
        self.original = original
        self.profile = profile
