from __future__ import annotations

import asyncio
import json
from pathlib import Path

from crossed_paths.seen import SeenCache, seen_cache_key
from crossed_paths.storage import (
    JsonDiskCache,
    JsonFileStorage,
    MemoryStorage,
    edges_key,
    read_json_list,
    seen_key,
    visits_key,
)


def test_keys_are_namespaced_per_user():
    assert edges_key("u1") == "crossedPaths:v1:u1"
    assert visits_key("u1") == "crossedPaths:visits:v1:u1"
    skey = seen_cache_key("u1", "2024-03-01", "habc")
    assert seen_key(skey) == "crossedPaths:seenIds:v1:u1:2024-03-01:habc"
    assert visits_key("u1") != visits_key("u2")


def test_disk_cache_replays_journal_after_crash(tmp_path: Path):
    path = tmp_path / "cache.json"
    c1 = JsonDiskCache(path)
    c1.set("a", "1")
    c1.set("b", "2")
    # no flush: a fresh instance must still see the writes
    c2 = JsonDiskCache(path)
    assert c2.get("a") == "1"
    assert c2.keys() == ["a", "b"]

    c2.flush()
    assert json.loads(path.read_text(encoding="utf-8")) == {"a": "1", "b": "2"}
    assert not (tmp_path / "cache.journal.jsonl").exists()


def test_disk_cache_survives_corrupt_snapshot(tmp_path: Path):
    path = tmp_path / "cache.json"
    path.write_text("{not json", encoding="utf-8")
    cache = JsonDiskCache(path)
    assert cache.get("x") is None
    assert (tmp_path / "cache.json.broken").exists()


def test_json_file_storage(tmp_path: Path):
    async def run():
        s = JsonFileStorage(tmp_path / "s.json")
        await s.set("k", "v")
        await s.flush()
        return await JsonFileStorage(tmp_path / "s.json").get("k")

    assert asyncio.run(run()) == "v"


def test_read_json_list_tolerates_garbage():
    storage = MemoryStorage({"a": "{oops", "b": '{"x": 1}', "c": "[1, 2]"})

    async def run():
        return [await read_json_list(storage, k) for k in ("a", "b", "c", "missing")]

    assert asyncio.run(run()) == [[], [], [1, 2], []]


def test_seen_cache_hydrates_lazily_and_persists():
    key = seen_cache_key("u1", "2024-03-01", "habc")
    storage = MemoryStorage({seen_key(key): json.dumps(["u2"])})
    seen = SeenCache(storage)

    async def run():
        ids = await seen.get(key)
        assert ids == {"u2"}
        await seen.mark(key, ["u3"])
        return json.loads(storage.data[seen_key(key)])

    assert asyncio.run(run()) == ["u2", "u3"]


def test_seen_cache_is_bounded():
    seen = SeenCache(MemoryStorage(), max_keys=2)

    async def run():
        await seen.get("a")
        await seen.get("b")
        await seen.get("a")
        await seen.get("c")

    asyncio.run(run())
    assert len(seen) == 2
    assert "a" in seen and "c" in seen and "b" not in seen
