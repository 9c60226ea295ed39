from __future__ import annotations

from pathlib import Path

import pytest


@pytest.fixture
def fake_home(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("USERPROFILE", str(home))
    monkeypatch.delenv("DOTAPPLY_HOME", raising=False)
    return home


@pytest.fixture
def repo(tmp_path: Path) -> Path:
    root = tmp_path / "dotfiles"
    (root / "files").mkdir(parents=True)
    return root
