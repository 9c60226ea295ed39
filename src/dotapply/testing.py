"""Scripted capability doubles for headless tests.

They never start processes; each records the calls made against it.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Iterable, Sequence

from .models import PackageKind
from .ports import (
    ConflictChoice,
    Decrypted,
    DecryptResult,
    InstallResult,
    KeyMismatchResult,
    KeyResult,
    KeySetupChoice,
    MismatchChoice,
    OracleFailure,
)

CIPHER_PREFIX = b"ENC["
CIPHER_SUFFIX = b"]"


def fake_encrypt(plaintext: bytes, key: str) -> bytes:
    """Produce the ciphertext format ``ScriptedEncryption`` understands."""

    return CIPHER_PREFIX + key.encode() + b":" + plaintext + CIPHER_SUFFIX


class ScriptedEncryption:
    """Decrypts ``fake_encrypt`` output when the stored key matches."""

    def __init__(
        self,
        key: str | None = "key-1",
        *,
        failures: Iterable[str] = (),
        generated_key: str = "generated-key",
    ) -> None:
        self.key = key
        self.failures = set(failures)
        self.generated_key = generated_key
        self.decrypt_calls: list[str] = []
        self.imported: list[str] = []
        self.generated = 0

    def key_available(self, key_reference: str) -> bool:
        return self.key is not None

    def decrypt(self, ciphertext: bytes, key_reference: str, *, name: str = "") -> DecryptResult:
        self.decrypt_calls.append(name)
        if name in self.failures:
            return OracleFailure(f"scripted failure for {name}")
        if not (ciphertext.startswith(CIPHER_PREFIX) and ciphertext.endswith(CIPHER_SUFFIX)):
            return OracleFailure("not a recognised ciphertext")
        body = ciphertext[len(CIPHER_PREFIX) : -len(CIPHER_SUFFIX)]
        key, _, plaintext = body.partition(b":")
        if self.key is None or key.decode() != self.key:
            return KeyMismatchResult("no identity matched")
        return Decrypted(plaintext)

    def import_key(self, material: str, key_reference: str) -> KeyResult:
        self.imported.append(material)
        if not material:
            return KeyResult(ok=False, message="empty key material")
        self.key = material
        return KeyResult(ok=True)

    def generate_key(self, key_reference: str) -> KeyResult:
        self.generated += 1
        self.key = self.generated_key
        return KeyResult(ok=True)


@dataclass
class ScriptedPackageManager:
    installed: set[str] = field(default_factory=set)
    failing: set[str] = field(default_factory=set)
    list_error: Exception | None = None
    install_calls: list[tuple[tuple[str, ...], PackageKind]] = field(default_factory=list)
    list_calls: int = 0

    def list_installed(self) -> set[str]:
        self.list_calls += 1
        if self.list_error is not None:
            raise self.list_error
        return set(self.installed)

    def install(self, names: Sequence[str], kind: PackageKind) -> InstallResult:
        self.install_calls.append((tuple(names), kind))
        bad = [name for name in names if name in self.failing]
        if bad:
            return InstallResult(ok=False, message=f"no formula named {', '.join(bad)}")
        self.installed.update(names)
        return InstallResult(ok=True)


class ScriptedPrompter:
    """Replays queued answers; raises if asked something it was not told about."""

    def __init__(
        self,
        *,
        profile: str | None = None,
        key_setup: Iterable[KeySetupChoice] = (),
        key_material: Iterable[str] = (),
        mismatch: Iterable[MismatchChoice] = (),
        conflicts: Iterable[ConflictChoice] = (),
    ) -> None:
        self.profile = profile
        self._key_setup = deque(key_setup)
        self._key_material = deque(key_material)
        self._mismatch = deque(mismatch)
        self._conflicts = deque(conflicts)
        self.asked: list[tuple[str, str]] = []

    def choose_profile(self, names: Sequence[str], default: str | None) -> str:
        self.asked.append(("profile", ",".join(names)))
        return self.profile or default or names[0]

    def choose_key_setup(self, key_reference: str) -> KeySetupChoice:
        return self._next("key_setup", key_reference, self._key_setup)

    def ask_key_material(self) -> str:
        return self._next("key_material", "", self._key_material)

    def resolve_key_mismatch(self, file: str) -> MismatchChoice:
        return self._next("mismatch", file, self._mismatch)

    def resolve_conflict(self, path: str) -> ConflictChoice:
        return self._next("conflict", path, self._conflicts)

    def _next(self, question: str, subject: str, answers: deque) -> object:
        self.asked.append((question, subject))
        if not answers:
            raise AssertionError(f"Unexpected {question} prompt for '{subject}'")
        return answers.popleft()

