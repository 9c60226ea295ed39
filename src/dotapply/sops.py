"""sops + age encryption capability."""

from __future__ import annotations

import logging
import os
import subprocess
from datetime import datetime
from pathlib import Path

from .filesystem import next_backup_path, write_private_file
from .mapping import expand
from .ports import Decrypted, DecryptResult, KeyMismatchResult, KeyResult, OracleFailure

logger = logging.getLogger(__name__)

AGE_SECRET_PREFIX = "AGE-SECRET-KEY-"

_MISMATCH_MARKERS = (
    "0 successful groups required",
    "no identity matched",
    "failed to get the data key",
    "error getting data key",
)

_SOPS_TYPES = {
    ".yaml": "yaml",
    ".yml": "yaml",
    ".json": "json",
    ".env": "dotenv",
    ".ini": "ini",
}


def sops_type_for(name: str) -> str:
    """Return the sops input/output type implied by a storage file name."""

    for suffix, kind in _SOPS_TYPES.items():
        if name.endswith(suffix):
            return kind
    return "binary"


class SopsAgeBackend:
    """Decrypts with ``sops`` using an age key file; creates keys with ``age-keygen``."""

    def __init__(
        self,
        home: Path,
        *,
        sops_config: Path | None = None,
        sops: str = "sops",
        age_keygen: str = "age-keygen",
    ) -> None:
        self.home = home
        self.sops_config = sops_config
        self.sops = sops
        self.age_keygen = age_keygen

    def key_path(self, key_reference: str) -> Path:
        return expand(key_reference, self.home)

    def key_available(self, key_reference: str) -> bool:
        path = self.key_path(key_reference)
        return path.is_file() and path.stat().st_size > 0

    def decrypt(self, ciphertext: bytes, key_reference: str, *, name: str = "") -> DecryptResult:
        data_type = sops_type_for(name)
        command = [self.sops]
        if self.sops_config is not None:
            command.extend(["--config", str(self.sops_config)])
        command.extend(["--decrypt", "--input-type", data_type, "--output-type", data_type, "/dev/stdin"])

        env = dict(os.environ)
        env["SOPS_AGE_KEY_FILE"] = str(self.key_path(key_reference))

        logger.debug("Running %s for %s", " ".join(command), name or "<stdin>")
        try:
            result = subprocess.run(command, input=ciphertext, capture_output=True, env=env, check=False)
        except OSError as exc:
            return OracleFailure(f"unable to run {self.sops}: {exc}")

        if result.returncode == 0:
            return Decrypted(result.stdout)

        stderr = result.stderr.decode(errors="replace").strip()
        lowered = stderr.lower()
        if any(marker in lowered for marker in _MISMATCH_MARKERS):
            return KeyMismatchResult(stderr)
        return OracleFailure(stderr or f"{self.sops} exited with {result.returncode}")

    def generate_key(self, key_reference: str) -> KeyResult:
        path = self.key_path(key_reference)
        if path.exists():
            return KeyResult(ok=False, message=f"key file '{path}' already exists")

        path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
        try:
            result = subprocess.run(
                [self.age_keygen, "-o", str(path)], capture_output=True, text=True, check=False
            )
        except OSError as exc:
            return KeyResult(ok=False, message=f"unable to run {self.age_keygen}: {exc}")

        if result.returncode != 0:
            return KeyResult(ok=False, message=result.stderr.strip())
        path.chmod(0o600)
        return KeyResult(ok=True, message=result.stderr.strip())

    def import_key(self, material: str, key_reference: str) -> KeyResult:
        text = material.strip()
        if AGE_SECRET_PREFIX not in text:
            return KeyResult(ok=False, message="key material does not contain an age secret key")

        path = self.key_path(key_reference)
        if path.exists():
            backup = next_backup_path(path, datetime.now())
            path.rename(backup)
            logger.info("Moved previous key to %s", backup)

        path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
        write_private_file(path, (text + "\n").encode())
        return KeyResult(ok=True)
