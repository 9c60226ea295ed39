"""Core package for the dotapply project."""

from .cli import app, run
from .config import Config, ConfigError, GlobalSettings, Profile, SecretsSettings, load_config
from .errors import ApplyError
from .mapping import FileMappingResolver
from .models import (
    ApplyOptions,
    ApplyReport,
    ItemOutcome,
    ItemStatus,
    SafetyLevel,
    Stage,
    StageReport,
    StageStatus,
)
from .orchestrator import ApplyOrchestrator

__all__ = [
    "Config",
    "ConfigError",
    "GlobalSettings",
    "Profile",
    "SecretsSettings",
    "load_config",
    "ApplyError",
    "FileMappingResolver",
    "ApplyOrchestrator",
    "ApplyOptions",
    "ApplyReport",
    "ItemOutcome",
    "ItemStatus",
    "SafetyLevel",
    "Stage",
    "StageReport",
    "StageStatus",
    "app",
    "run",
]
