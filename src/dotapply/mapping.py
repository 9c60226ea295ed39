"""Translate a profile's original paths to their storage names."""

from __future__ import annotations

import logging
import os
from hashlib import sha256
from pathlib import Path
from typing import Iterator, Mapping

from .errors import MappingCollision, MappingNotFound
from .models import MappingEntry

logger = logging.getLogger(__name__)

HASH_ID_LENGTH = 12


def canonicalize(raw: str | os.PathLike[str], home: Path) -> str:
    """Return the canonical form of ``raw`` used for hashing.

    Paths under ``home`` are rendered as ``~/<relative>`` so the same dotfile
    hashes identically on machines with different home directories. Symlinks
    are not resolved: after an apply, targets are themselves links into storage.
    """

    absolute = expand(raw, home)
    home_normalized = Path(os.path.normpath(home))
    try:
        relative = absolute.relative_to(home_normalized)
    except ValueError:
        return absolute.as_posix()
    if relative == Path("."):
        return "~"
    return f"~/{relative.as_posix()}"


def expand(raw: str | os.PathLike[str], home: Path) -> Path:
    """Expand ``~`` against the explicit ``home`` and normalize the result."""

    text = os.fspath(raw)
    if text == "~":
        candidate = Path(home)
    elif text.startswith("~/"):
        candidate = Path(home) / text[2:]
    else:
        candidate = Path(text)
        if not candidate.is_absolute():
            candidate = Path(home) / candidate
    return Path(os.path.normpath(candidate))


def hash_id_for(canonical: str) -> str:
    return sha256(canonical.encode("utf-8")).hexdigest()[:HASH_ID_LENGTH]


class FileMappingResolver:
    """Resolves and registers hash-id mappings for one profile."""

    def __init__(
        self,
        profile: str,
        storage_root: Path,
        home: Path,
        mappings: Mapping[str, str] | None = None,
    ) -> None:
        self.profile = profile
        self.storage_root = storage_root
        self.home = home
        self._by_hash: dict[str, str] = {}
        self._by_original: dict[str, str] = {}
        self.seed(mappings or {})

    def seed(self, mappings: Mapping[str, str]) -> None:
        """Load previously registered mappings (hash-id -> original path)."""

        for hash_id, original in mappings.items():
            canonical = canonicalize(original, self.home)
            existing_hash = self._by_original.get(canonical)
            if existing_hash is not None and existing_hash != hash_id:
                logger.warning(
                    "Ignoring duplicate mapping %s for '%s'; keeping %s", hash_id, canonical, existing_hash
                )
                continue
            existing_original = self._by_hash.get(hash_id)
            if existing_original is not None and existing_original != canonical:
                raise MappingCollision(hash_id, existing_original, canonical)
            self._by_hash[hash_id] = canonical
            self._by_original[canonical] = hash_id

    def resolve(self, original_path: str | os.PathLike[str], *, required: bool = True) -> Path | None:
        """Return the storage path for ``original_path``.

        Falls back to the legacy flat layout (``<profile>/<basename>``) when no
        hash-id mapping exists.
        """

        canonical = canonicalize(original_path, self.home)
        hash_id = self._by_original.get(canonical)
        if hash_id is not None:
            return self._storage_for(hash_id, canonical)

        legacy = self.storage_root / _basename(canonical)
        if legacy.exists() or legacy.is_symlink():
            logger.debug("Resolved '%s' through legacy storage %s", canonical, legacy)
            return legacy

        if required:
            raise MappingNotFound(canonical, self.profile)
        return None

    def register(self, original_path: str | os.PathLike[str]) -> MappingEntry:
        """Register ``original_path`` if needed and return its mapping entry."""

        canonical = canonicalize(original_path, self.home)
        existing = self._by_original.get(canonical)
        if existing is not None:
            return MappingEntry(existing, canonical, self._storage_for(existing, canonical))

        hash_id = hash_id_for(canonical)
        clash = self._by_hash.get(hash_id)
        if clash is not None and clash != canonical:
            raise MappingCollision(hash_id, clash, canonical)

        self._by_hash[hash_id] = canonical
        self._by_original[canonical] = hash_id
        logger.info("Registered %s -> %s in profile '%s'", canonical, hash_id, self.profile)
        return MappingEntry(hash_id, canonical, self._storage_for(hash_id, canonical))

    def storage_path(self, original_path: str | os.PathLike[str]) -> Path:
        """Return the hashed storage location, whether or not it is registered yet."""

        canonical = canonicalize(original_path, self.home)
        hash_id = self._by_original.get(canonical) or hash_id_for(canonical)
        return self._storage_for(hash_id, canonical)

    def entries(self) -> Iterator[MappingEntry]:
        for hash_id, original in sorted(self._by_hash.items()):
            yield MappingEntry(hash_id, original, self._storage_for(hash_id, original))

    def mappings(self) -> dict[str, str]:
        return dict(sorted(self._by_hash.items()))

    def _storage_for(self, hash_id: str, canonical: str) -> Path:
        return self.storage_root / f"{hash_id}_{_basename(canonical)}"


def _basename(canonical: str) -> str:
    return Path(canonical).name or canonical.strip("/~") or "root"
