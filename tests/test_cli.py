from __future__ import annotations

import json
from pathlib import Path

import pytest

from crossed_paths.cli import main


@pytest.fixture(autouse=True)
def no_backend(monkeypatch):
    monkeypatch.delenv("CROSSED_PATHS_URL", raising=False)


def test_label(capsys):
    code = main(["label", "--street-number", "742", "--street", "Evergreen Terrace", "--city", "Springfield"])
    assert code == 0
    assert capsys.readouterr().out.strip() == "Evergreen Terrace (700 block) • Springfield"


def test_label_without_address_fails(capsys):
    assert main(["label"]) == 1


def test_place_key_is_stable(capsys):
    argv = ["place-key", "--name", "Central Perk", "--lat", "40.72651", "--lon", "-73.98151"]
    main(argv)
    first = capsys.readouterr().out.strip()
    main(argv)
    assert capsys.readouterr().out.strip() == first
    assert first.startswith("h")


def test_record_visit_offline_then_read_back(tmp_path: Path, capsys):
    storage = str(tmp_path / "cache.json")
    base = ["--storage", storage, "--tz", "UTC"]
    address = ["--name", "Moe's Tavern", "--city", "Springfield"]

    assert main(["record-visit", "--user", "u1", *address, *base, "--with", "u2", "--with", "u1"]) == 0
    assert main(["record-visit", "--user", "u1", *address, *base]) == 0
    capsys.readouterr()

    assert main(["visits", "--user", "u1", "--json", *base]) == 0
    visits = json.loads(capsys.readouterr().out)
    assert len(visits) == 1
    assert visits[0]["address_label"] == "Moe's Tavern • Springfield"

    assert main(["history", "--user", "u1", "--json", *base]) == 0
    history = json.loads(capsys.readouterr().out)
    # no profiles table offline: every crossed id is kept as a bare profile
    assert [[p["id"] for p in g["profiles"]] for g in history] == [["u2"]]

    out_v = tmp_path / "v.csv"
    out_e = tmp_path / "e.csv"
    assert main(["export", "--user", "u1", *base, "--out-visits", str(out_v), "--out-edges", str(out_e)]) == 0
    assert out_v.read_text(encoding="utf-8").splitlines()[0] == "user_id,day_key,place_key,seen_at,address_label"
    assert len(out_e.read_text(encoding="utf-8").splitlines()) == 2


def test_groups_offline_is_empty(tmp_path: Path, capsys):
    assert main(["groups", "--storage", str(tmp_path / "c.json"), "--json"]) == 0
    assert json.loads(capsys.readouterr().out) == []
