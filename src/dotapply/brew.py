"""Homebrew-backed package manager capability."""

from __future__ import annotations

import logging
import subprocess
from typing import Sequence

from .models import PackageKind
from .ports import InstallResult

logger = logging.getLogger(__name__)


class BrewListError(OSError):
    """``brew list`` exited non-zero, so the installed set is unknown."""

    def __init__(self, flag: str, returncode: int, stderr: str) -> None:
        detail = stderr or "no output"
        super().__init__(f"brew list {flag} exited with {returncode}: {detail}")
        self.flag = flag
        self.returncode = returncode


class HomebrewPackageManager:
    """Runs the ``brew`` executable for listing and installing packages."""

    def __init__(self, executable: str = "brew") -> None:
        self.executable = executable

    def list_installed(self) -> set[str]:
        installed: set[str] = set()
        for flag in ("--formula", "--cask"):
            result = self._run(["list", flag, "-1"])
            if result.returncode != 0:
                stderr = result.stderr.strip()
                if flag == "--formula":
                    raise BrewListError(flag, result.returncode, stderr)
                # Casks are macOS-only; Linuxbrew rejects the listing.
                logger.warning("brew list %s failed, assuming no casks are installed: %s", flag, stderr)
                continue
            installed.update(line.strip() for line in result.stdout.splitlines() if line.strip())
        return installed

    def install(self, names: Sequence[str], kind: PackageKind) -> InstallResult:
        args = ["install"]
        if kind is PackageKind.CASK:
            args.append("--cask")
        args.extend(names)

        result = self._run(args)
        if result.returncode == 0:
            return InstallResult(ok=True)
        return InstallResult(ok=False, message=result.stderr.strip() or f"brew exited with {result.returncode}")

    def _run(self, args: list[str]) -> subprocess.CompletedProcess[str]:
        command = [self.executable, *args]
        logger.debug("Running %s", " ".join(command))
        return subprocess.run(command, capture_output=True, text=True, check=False)
