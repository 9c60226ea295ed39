from __future__ import annotations

import stat
import subprocess
from pathlib import Path

import pytest

from dotapply import brew, sops
from dotapply.brew import HomebrewPackageManager
from dotapply.config import Profile
from dotapply.models import ItemStatus, PackageKind
from dotapply.packages import PackageReconciler
from dotapply.ports import Decrypted, KeyMismatchResult, OracleFailure
from dotapply.sops import SopsAgeBackend, sops_type_for

KEY_REF = "~/.config/dotapply/age/key.txt"


class _Recorder:
    def __init__(self, *results: subprocess.CompletedProcess) -> None:
        self.results = list(results)
        self.calls: list[dict] = []

    def __call__(self, command, **kwargs):
        self.calls.append({"command": command, **kwargs})
        return self.results.pop(0)


def _completed(returncode: int = 0, stdout=b"", stderr=b"") -> subprocess.CompletedProcess:
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


@pytest.mark.parametrize(
    "name, kind",
    [("abc_config.yaml", "yaml"), ("abc_creds.json", "json"), ("abc_.env", "dotenv"), ("abc_config", "binary")],
)
def test_sops_type_for(name: str, kind: str) -> None:
    assert sops_type_for(name) == kind


def test_sops_decrypt_passes_key_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    recorder = _Recorder(_completed(stdout=b"plain"))
    monkeypatch.setattr(sops.subprocess, "run", recorder)
    backend = SopsAgeBackend(tmp_path, sops_config=tmp_path / ".sops.yaml")

    result = backend.decrypt(b"cipher", KEY_REF, name="abc_config")

    assert result == Decrypted(b"plain")
    call = recorder.calls[0]
    assert call["command"][:3] == ["sops", "--config", str(tmp_path / ".sops.yaml")]
    assert "binary" in call["command"]
    assert call["input"] == b"cipher"
    assert call["env"]["SOPS_AGE_KEY_FILE"] == str(tmp_path / ".config" / "dotapply" / "age" / "key.txt")


def test_sops_decrypt_classifies_failures(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    recorder = _Recorder(
        _completed(1, stderr=b"Error getting data key: 0 successful groups required, got 0"),
        _completed(2, stderr=b"Error unmarshalling input yaml"),
    )
    monkeypatch.setattr(sops.subprocess, "run", recorder)
    backend = SopsAgeBackend(tmp_path)

    assert isinstance(backend.decrypt(b"x", KEY_REF, name="a.yaml"), KeyMismatchResult)
    failure = backend.decrypt(b"x", KEY_REF, name="a.yaml")
    assert isinstance(failure, OracleFailure)
    assert "unmarshalling" in failure.message


def test_sops_missing_executable(tmp_path: Path) -> None:
    backend = SopsAgeBackend(tmp_path, sops=str(tmp_path / "no-such-sops"))

    assert isinstance(backend.decrypt(b"x", KEY_REF), OracleFailure)


def test_import_key_validates_and_backs_up(tmp_path: Path) -> None:
    backend = SopsAgeBackend(tmp_path)
    key_path = backend.key_path(KEY_REF)

    assert not backend.key_available(KEY_REF)
    assert backend.import_key("not a key", KEY_REF).ok is False

    assert backend.import_key("AGE-SECRET-KEY-1FIRST", KEY_REF).ok
    assert backend.key_available(KEY_REF)
    assert stat.S_IMODE(key_path.stat().st_mode) == 0o600

    assert backend.import_key("AGE-SECRET-KEY-1SECOND", KEY_REF).ok
    assert key_path.read_text() == "AGE-SECRET-KEY-1SECOND\n"
    backups = [path for path in key_path.parent.iterdir() if path.name.startswith("key.txt.dotapply-backup.")]
    assert [path.read_text() for path in backups] == ["AGE-SECRET-KEY-1FIRST\n"]


def test_generate_key_refuses_to_overwrite(tmp_path: Path) -> None:
    backend = SopsAgeBackend(tmp_path)
    backend.import_key("AGE-SECRET-KEY-1EXISTING", KEY_REF)

    result = backend.generate_key(KEY_REF)

    assert result.ok is False
    assert "already exists" in result.message


def test_brew_lists_and_installs(monkeypatch: pytest.MonkeyPatch) -> None:
    recorder = _Recorder(
        _completed(stdout="git\njq\n"),
        _completed(stdout="wezterm\n"),
        _completed(),
        _completed(1, stderr="Error: No available formula with the name \"nope\""),
    )
    monkeypatch.setattr(brew.subprocess, "run", recorder)
    manager = HomebrewPackageManager()

    assert manager.list_installed() == {"git", "jq", "wezterm"}
    assert manager.install(["firefox"], PackageKind.CASK).ok
    failed = manager.install(["nope"], PackageKind.FORMULA)

    assert failed.ok is False
    assert "No available formula" in failed.message
    assert [call["command"] for call in recorder.calls] == [
        ["brew", "list", "--formula", "-1"],
        ["brew", "list", "--cask", "-1"],
        ["brew", "install", "--cask", "firefox"],
        ["brew", "install", "nope"],
    ]


def test_brew_formula_listing_failure_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    recorder = _Recorder(_completed(1, stderr="Error: Permission denied @ dir_s_mkdir\n"))
    monkeypatch.setattr(brew.subprocess, "run", recorder)

    with pytest.raises(brew.BrewListError) as excinfo:
        HomebrewPackageManager().list_installed()

    assert isinstance(excinfo.value, OSError)
    assert "Permission denied" in str(excinfo.value)
    assert len(recorder.calls) == 1


def test_brew_cask_listing_failure_is_tolerated(monkeypatch: pytest.MonkeyPatch) -> None:
    recorder = _Recorder(
        _completed(stdout="git\n"),
        _completed(1, stderr="Error: Installing casks is supported only on macOS"),
    )
    monkeypatch.setattr(brew.subprocess, "run", recorder)

    assert HomebrewPackageManager().list_installed() == {"git"}


def test_brew_listing_failure_fails_packages_instead_of_reinstalling(monkeypatch: pytest.MonkeyPatch) -> None:
    recorder = _Recorder(_completed(1, stderr="Error: brew is broken"))
    monkeypatch.setattr(brew.subprocess, "run", recorder)

    report = PackageReconciler(HomebrewPackageManager()).run(Profile(name="work", homebrew_packages=("git",)))

    (outcome,) = report.outcomes
    assert outcome.status is ItemStatus.FAILED
    assert "brew is broken" in outcome.detail
    assert [call["command"][1] for call in recorder.calls] == ["list"]
