"""TOML configuration loading for dotapply."""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any, Dict, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .errors import ProfileNotFound

DEFAULT_CONFIG_FILENAME = "dotapply.toml"
DEFAULT_AGE_KEY_FILE = "~/.config/dotapply/age/key.txt"
FILES_DIRNAME = "files"
STATE_FILENAME = ".dotapply-state.toml"


class ConfigError(RuntimeError):
    """Raised when a configuration file cannot be parsed or validated."""


def _expand_path(raw: str | os.PathLike[str] | Path, *, base_dir: Path) -> Path:
    """Return an absolute ``Path`` relative to ``base_dir`` when not already absolute."""

    expanded = Path(str(raw))
    if expanded.is_absolute():
        return expanded.resolve(strict=False)
    return (base_dir / expanded).resolve(strict=False)


class GlobalSettings(BaseModel):
    """Options shared by every profile."""

    model_config = ConfigDict(frozen=True)

    default_profile: str = "default"
    create_backups: bool = True
    exclude: tuple[str, ...] = ()


class SecretsSettings(BaseModel):
    """Where the age key lives and which sops configuration to use."""

    model_config = ConfigDict(frozen=True)

    age_key_file: str = DEFAULT_AGE_KEY_FILE
    sops_config: str | None = None

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any]) -> "SecretsSettings":
        key_file = raw.get("age_key_file") or DEFAULT_AGE_KEY_FILE
        sops_config = raw.get("sops_config") or None
        return cls(age_key_file=key_file, sops_config=sops_config)


class Profile(BaseModel):
    """A named, independently applicable bundle of tracked state."""

    model_config = ConfigDict(frozen=True)

    name: str
    enabled: bool = True
    description: str | None = None
    files: tuple[str, ...] = ()
    secrets: tuple[str, ...] = ()
    directories: tuple[str, ...] = ()
    file_mappings: Dict[str, str] = Field(default_factory=dict)
    homebrew_packages: tuple[str, ...] = ()
    homebrew_casks: tuple[str, ...] = ()
    bootstrap_script: str | None = None
    system_commands: tuple[str, ...] = ()
    exclude: tuple[str, ...] = ()

    @model_validator(mode="after")
    def _check_invariants(self) -> "Profile":
        overlap = set(self.files) & set(self.secrets)
        if overlap:
            joined = ", ".join(sorted(overlap))
            raise ValueError(f"paths cannot be both a file and a secret: {joined}")

        originals = list(self.file_mappings.values())
        if len(originals) != len(set(originals)):
            raise ValueError("file_mappings must map each original path to exactly one hash-id")
        return self


class Config(BaseModel):
    """Fully parsed configuration file."""

    model_config = ConfigDict(frozen=True)

    config_path: Path
    repo_root: Path
    settings: GlobalSettings
    secrets: SecretsSettings
    profiles: Dict[str, Profile]

    @property
    def files_root(self) -> Path:
        return self.repo_root / FILES_DIRNAME

    @property
    def state_path(self) -> Path:
        return self.repo_root / STATE_FILENAME

    def profile_storage(self, name: str) -> Path:
        return self.files_root / name

    def profile(self, name: str) -> Profile:
        try:
            return self.profiles[name]
        except KeyError as exc:
            raise ProfileNotFound(name) from exc


def load_config(path: Path | None = None) -> Config:
    """Load and validate a configuration file.

    Args:
        path: Optional path to the TOML file or its directory. Defaults to
            ``dotapply.toml`` in the current working directory.
    """

    config_path = _resolve_config_path(path)
    repo_root = config_path.parent

    try:
        with config_path.open("rb") as handle:
            data = tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Configuration file '{config_path}' is not valid TOML: {exc}") from exc

    profiles_section = data.get("profiles") or {}
    if not profiles_section:
        raise ConfigError("Configuration must define at least one [profiles.<name>] table")

    try:
        profiles: Dict[str, Profile] = {
            name: Profile(name=name, **body) for name, body in profiles_section.items()
        }
        settings = GlobalSettings(**(data.get("global") or {}))
        secrets = SecretsSettings.from_raw(data.get("secrets") or {})
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration in '{config_path}': {exc}") from exc

    return Config(
        config_path=config_path,
        repo_root=repo_root,
        settings=settings,
        secrets=secrets,
        profiles=profiles,
    )


def resolve_repo_path(raw: str | Path, config: Config) -> Path:
    """Resolve a repository-relative setting such as a bootstrap script path."""

    return _expand_path(raw, base_dir=config.repo_root)


def _resolve_config_path(path: Path | None) -> Path:
    if path is None:
        path = Path.cwd() / DEFAULT_CONFIG_FILENAME
    else:
        path = Path(path)

    if not path.exists():
        raise ConfigError(f"Configuration file '{path}' does not exist")
    if path.is_dir():
        candidate = path / DEFAULT_CONFIG_FILENAME
        if not candidate.exists():
            raise ConfigError(f"Expected to find '{DEFAULT_CONFIG_FILENAME}' inside '{path}', but none was located")
        path = candidate

    return path.resolve(strict=False)
