from __future__ import annotations

from pathlib import Path
from textwrap import dedent

import pytest
from typer.testing import CliRunner

from dotapply.cli import app
from dotapply.config import DEFAULT_CONFIG_FILENAME
from dotapply.filesystem import symlink_points_to
from dotapply.state import StateStore

runner = CliRunner()


def _write_config(directory: Path, body: str) -> Path:
    config_path = directory / DEFAULT_CONFIG_FILENAME
    config_path.write_text(dedent(body))
    return config_path


def test_cli_track_apply_and_uninstall(repo: Path, fake_home: Path) -> None:
    config_path = _write_config(
        repo,
        """
        [global]
        default_profile = "work"

        [profiles.work]
        files = ["~/.zshrc"]
        """,
    )
    (fake_home / ".zshrc").write_text("export EDITOR=nvim\n")

    track_result = runner.invoke(app, ["track", "~/.zshrc", "--config", str(config_path)])
    assert track_result.exit_code == 0
    assert "Stored ~/.zshrc" in track_result.stdout

    mappings = StateStore.load(repo / ".dotapply-state.toml").mappings("work")
    (hash_id,) = mappings
    storage = repo / "files" / "work" / f"{hash_id}_.zshrc"
    assert storage.read_text() == "export EDITOR=nvim\n"

    apply_result = runner.invoke(app, ["apply", "--config", str(config_path)])
    assert apply_result.exit_code == 0
    assert "backed_up" in apply_result.stdout
    assert "Failed: 0" in apply_result.stdout
    assert symlink_points_to(fake_home / ".zshrc", storage)

    second = runner.invoke(app, ["apply", "--config", str(config_path)])
    assert second.exit_code == 0
    assert "unchanged" in second.stdout

    uninstall_result = runner.invoke(app, ["uninstall", "--config", str(config_path)])
    assert uninstall_result.exit_code == 0
    assert "restored" in uninstall_result.stdout
    assert not (fake_home / ".zshrc").is_symlink()
    assert (fake_home / ".zshrc").read_text() == "export EDITOR=nvim\n"


def test_cli_apply_dry_run(repo: Path, fake_home: Path) -> None:
    config_path = _write_config(
        repo,
        """
        [profiles.default]
        files = ["~/.vimrc"]
        """,
    )
    (repo / "files" / "default").mkdir()
    (repo / "files" / "default" / ".vimrc").write_text("set number\n")

    result = runner.invoke(app, ["apply", "--config", str(config_path), "--dry-run"])

    assert result.exit_code == 0
    assert "DRY-RUN" in result.stdout
    assert "would_create" in result.stdout
    assert not (fake_home / ".vimrc").exists()


def test_cli_apply_reports_conflicts(repo: Path, fake_home: Path) -> None:
    config_path = _write_config(
        repo,
        """
        [global]
        create_backups = false

        [profiles.default]
        files = ["~/.vimrc"]
        """,
    )
    (repo / "files" / "default").mkdir()
    (repo / "files" / "default" / ".vimrc").write_text("set number\n")
    (fake_home / ".vimrc").write_text("mine\n")

    result = runner.invoke(app, ["apply", "--config", str(config_path), "--no-interactive"])

    assert result.exit_code == 1
    assert "Failed: 1" in result.stdout
    assert (fake_home / ".vimrc").read_text() == "mine\n"


def test_cli_home_option_overrides_environment(repo: Path, fake_home: Path, tmp_path: Path) -> None:
    other_home = tmp_path / "other-home"
    other_home.mkdir()
    config_path = _write_config(
        repo,
        """
        [profiles.default]
        files = ["~/.vimrc"]
        """,
    )
    (repo / "files" / "default").mkdir()
    (repo / "files" / "default" / ".vimrc").write_text("set number\n")

    result = runner.invoke(app, ["apply", "--config", str(config_path), "--home", str(other_home)])

    assert result.exit_code == 0
    assert (other_home / ".vimrc").is_symlink()
    assert not (fake_home / ".vimrc").exists()


def test_cli_bootstrap_shows_classification(repo: Path, fake_home: Path) -> None:
    config_path = _write_config(
        repo,
        """
        [profiles.default]
        system_commands = ["brew update"]

        [profiles.risky]
        bootstrap_script = "risky.sh"
        """,
    )
    (repo / "risky.sh").write_text("rm -rf /\n")

    safe = runner.invoke(app, ["bootstrap", "--config", str(config_path)])
    assert safe.exit_code == 0
    assert "SAFE" in safe.stdout
    assert "To run the bootstrap script manually" in safe.stdout
    assert (repo / "scripts" / "bootstrap-default.sh").exists()

    blocked = runner.invoke(app, ["bootstrap", "--config", str(config_path), "--profile", "risky"])
    assert blocked.exit_code == 0
    assert "BLOCKED" in blocked.stdout
    assert "To run the bootstrap script manually" not in blocked.stdout


def test_cli_unknown_profile(repo: Path, fake_home: Path) -> None:
    config_path = _write_config(
        repo,
        """
        [profiles.default]
        """,
    )

    result = runner.invoke(app, ["apply", "--config", str(config_path), "--profile", "missing"])

    assert result.exit_code == 1
    assert "Profile 'missing' does not exist" in result.stdout


def test_cli_missing_config(tmp_path: Path, fake_home: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)

    result = runner.invoke(app, ["apply", "--config", "nope.toml"])

    assert result.exit_code == 1
    assert "does not exist" in result.stdout
