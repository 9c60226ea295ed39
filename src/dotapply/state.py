"""Persistence for engine-owned state kept next to the repository."""

from __future__ import annotations

import tomllib
from datetime import datetime
from pathlib import Path
from typing import Any, Mapping

from tomli_w import dump as toml_dump


class StateStore:
    """Tracks registered path mappings and key-creation metadata per profile."""

    def __init__(
        self,
        path: Path,
        mappings: dict[str, dict[str, str]] | None = None,
        keys: dict[str, dict[str, str]] | None = None,
    ) -> None:
        self.path = path
        self._mappings: dict[str, dict[str, str]] = mappings or {}
        self._keys: dict[str, dict[str, str]] = keys or {}

    @classmethod
    def load(cls, path: Path) -> "StateStore":
        if not path.exists():
            return cls(path)

        with path.open("rb") as handle:
            data = tomllib.load(handle)

        mappings = {
            profile: {str(hash_id): str(original) for hash_id, original in table.items()}
            for profile, table in (data.get("mappings") or {}).items()
        }
        keys = {
            profile: {str(key): str(value) for key, value in table.items()}
            for profile, table in (data.get("keys") or {}).items()
        }
        return cls(path, mappings, keys)

    def save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload: dict[str, Any] = {}
        if self._mappings:
            payload["mappings"] = {profile: dict(sorted(table.items())) for profile, table in sorted(self._mappings.items())}
        if self._keys:
            payload["keys"] = {profile: dict(table) for profile, table in sorted(self._keys.items())}
        with self.path.open("wb") as handle:
            toml_dump(payload, handle)

    def mappings(self, profile: str) -> dict[str, str]:
        return dict(self._mappings.get(profile, {}))

    def set_mappings(self, profile: str, mappings: Mapping[str, str]) -> None:
        self._mappings[profile] = dict(mappings)

    def record_key_created(self, profile: str, key_reference: str, *, created_on: datetime, method: str) -> None:
        self._keys[profile] = {
            "key_file": key_reference,
            "created_on": created_on.isoformat(timespec="seconds"),
            "method": method,
        }

    def key_metadata(self, profile: str) -> dict[str, str] | None:
        entry = self._keys.get(profile)
        return dict(entry) if entry is not None else None
