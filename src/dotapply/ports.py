"""Capability interfaces consumed by the apply engine.

Each capability has a real-process implementation (``sops``, ``brew``,
``prompts``) and a scripted double in ``dotapply.testing``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Protocol, Sequence, Union

from .models import PackageKind


@dataclass(frozen=True, slots=True)
class Decrypted:
    plaintext: bytes


@dataclass(frozen=True, slots=True)
class KeyMismatchResult:
    message: str = ""


@dataclass(frozen=True, slots=True)
class OracleFailure:
    message: str


DecryptResult = Union[Decrypted, KeyMismatchResult, OracleFailure]


@dataclass(frozen=True, slots=True)
class KeyResult:
    ok: bool
    message: str = ""


@dataclass(frozen=True, slots=True)
class InstallResult:
    ok: bool
    message: str = ""


class KeySetupChoice(str, Enum):
    GENERATE = "generate"
    IMPORT = "import"
    CANCEL = "cancel"


class MismatchChoice(str, Enum):
    SKIP = "skip"
    CANCEL = "cancel"
    IMPORT = "import"


class ConflictChoice(str, Enum):
    OVERWRITE = "overwrite"
    SKIP = "skip"
    CANCEL = "cancel"


class EncryptionBackend(Protocol):
    """Decrypts stored ciphertext and manages the key it needs."""

    def key_available(self, key_reference: str) -> bool:
        pass

    def decrypt(self, ciphertext: bytes, key_reference: str, *, name: str = "") -> DecryptResult:
        pass

    def import_key(self, material: str, key_reference: str) -> KeyResult:
        pass

    def generate_key(self, key_reference: str) -> KeyResult:
        pass


class PackageManager(Protocol):
    def list_installed(self) -> set[str]:
        pass

    def install(self, names: Sequence[str], kind: PackageKind) -> InstallResult:
        pass


class Prompter(Protocol):
    """Presents discrete choices to a human (or a script, in tests)."""

    def choose_profile(self, names: Sequence[str], default: str | None) -> str:
        pass

    def choose_key_setup(self, key_reference: str) -> KeySetupChoice:
        pass

    def ask_key_material(self) -> str:
        pass

    def resolve_key_mismatch(self, file: str) -> MismatchChoice:
        pass

    def resolve_conflict(self, path: str) -> ConflictChoice:
        pass
