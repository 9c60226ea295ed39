from __future__ import annotations

import tomllib
from datetime import datetime
from pathlib import Path

from dotapply.state import StateStore


def test_state_round_trip(tmp_path: Path) -> None:
    path = tmp_path / ".dotapply-state.toml"
    store = StateStore.load(path)
    assert store.mappings("work") == {}
    assert store.key_metadata("work") is None

    store.set_mappings("work", {"bbbbbbbbbbbb": "~/.zshrc", "aaaaaaaaaaaa": "~/.gitconfig"})
    store.record_key_created("work", "~/.config/dotapply/age/key.txt", created_on=datetime(2024, 5, 1, 9, 0), method="imported")
    store.save()

    with path.open("rb") as handle:
        data = tomllib.load(handle)
    assert list(data["mappings"]["work"]) == ["aaaaaaaaaaaa", "bbbbbbbbbbbb"]
    assert data["keys"]["work"]["method"] == "imported"

    reloaded = StateStore.load(path)
    assert reloaded.mappings("work") == {"aaaaaaaaaaaa": "~/.gitconfig", "bbbbbbbbbbbb": "~/.zshrc"}
    assert reloaded.key_metadata("work") == {
        "key_file": "~/.config/dotapply/age/key.txt",
        "created_on": "2024-05-01T09:00:00",
        "method": "imported",
    }
