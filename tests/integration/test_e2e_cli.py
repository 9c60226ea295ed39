from __future__ import annotations

from pathlib import Path

from typer.testing import CliRunner

from dotapply.cli import app

runner = CliRunner()


def _write_minimal_config(repo: Path) -> Path:
    config_path = repo / "dotapply.toml"
    config_path.write_text(
        """
[global]
default_profile = "laptop"
exclude = ["*.swp"]

[profiles.laptop]
files = ["~/.gitconfig", "~/.vim/session.swp"]
directories = ["~/.config/shell"]
"""
    )
    return config_path


def test_cli_full_cycle(tmp_path: Path, fake_home: Path) -> None:
    repo = tmp_path / "dotfiles"
    repo.mkdir()
    config_path = _write_minimal_config(repo)

    (fake_home / ".gitconfig").write_text("[user]\n  name = me\n")
    shell_dir = fake_home / ".config" / "shell"
    shell_dir.mkdir(parents=True)
    (shell_dir / "aliases.zsh").write_text("alias ll='ls -al'\n")

    for path in ("~/.gitconfig", "~/.config/shell"):
        track_result = runner.invoke(app, ["track", path, "--config", str(config_path)])
        assert track_result.exit_code == 0

    (fake_home / ".gitconfig").unlink()
    (shell_dir / "aliases.zsh").unlink()
    shell_dir.rmdir()

    apply_result = runner.invoke(app, ["apply", "--config", str(config_path)])
    assert apply_result.exit_code == 0
    assert "excluded" in apply_result.stdout

    assert (fake_home / ".gitconfig").is_symlink()
    assert (fake_home / ".gitconfig").read_text() == "[user]\n  name = me\n"
    assert shell_dir.is_symlink()
    assert (shell_dir / "aliases.zsh").read_text() == "alias ll='ls -al'\n"
    assert not (fake_home / ".vim").exists()

    storage = [path for path in (repo / "files" / "laptop").iterdir()]
    assert sorted(path.name.split("_", 1)[1] for path in storage) == [".gitconfig", "shell"]


def test_cli_repairs_broken_links(tmp_path: Path, fake_home: Path) -> None:
    repo = tmp_path / "dotfiles"
    repo.mkdir()
    config_path = _write_minimal_config(repo)
    (fake_home / ".gitconfig").write_text("[core]\n")
    runner.invoke(app, ["track", "~/.gitconfig", "--config", str(config_path)])
    (fake_home / ".gitconfig").unlink()
    (fake_home / ".gitconfig").symlink_to(tmp_path / "vanished")

    apply_result = runner.invoke(app, ["apply", "--config", str(config_path), "--no-interactive"])

    # ~/.config/shell was never tracked, so that item fails on its own.
    assert apply_result.exit_code == 1
    assert "repaired" in apply_result.stdout
    assert (fake_home / ".gitconfig").read_text() == "[core]\n"
