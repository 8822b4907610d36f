from __future__ import annotations

import asyncio
import json

from crossed_paths.errors import RemoteError
from crossed_paths.models import CrossedPathProfile
from crossed_paths.placekey import compute_place_key
from crossed_paths.remote import EDGES_TABLE
from crossed_paths.seen import SeenCache, seen_cache_key
from crossed_paths.service import CrossedPaths
from crossed_paths.storage import MemoryStorage, edges_key, seen_key

from conftest import EVERGREEN, NOW, iso_days_ago

LABEL = "Evergreen Terrace (700 block) • Springfield"


def _profiles(*ids: str) -> list[CrossedPathProfile]:
    return [CrossedPathProfile(id=i) for i in ids]


def test_viewer_is_never_recorded(service, store):
    asyncio.run(service.record_crossed_paths("u1", LABEL, _profiles("u1", "u2", "u1", "u3"), EVERGREEN))
    rows = store.rows(EDGES_TABLE)
    assert sorted(r["crossed_user_id"] for r in rows) == ["u2", "u3"]
    assert all(r["crossed_user_id"] != "u1" for r in rows)
    assert {r["address_key"] for r in rows} == {compute_place_key(LABEL, EVERGREEN)}


def test_already_seen_people_are_not_rewritten(service, store):
    async def run():
        await service.record_crossed_paths("u1", LABEL, _profiles("u2", "u3"), EVERGREEN)
        await service.record_crossed_paths("u1", LABEL, _profiles("u2", "u3"), EVERGREEN)
        await service.record_crossed_paths("u1", LABEL, _profiles("u3", "u4"), EVERGREEN)

    asyncio.run(run())
    assert store.calls.count(("upsert", EDGES_TABLE)) == 2
    assert sorted(r["crossed_user_id"] for r in store.rows(EDGES_TABLE)) == ["u2", "u3", "u4"]


def test_seen_ids_hydrate_from_storage(store, storage):
    skey = seen_cache_key("u1", "2024-03-01", compute_place_key(LABEL, EVERGREEN))
    storage.data[seen_key(skey)] = json.dumps(["u2"])
    service = CrossedPaths(store, storage, clock=lambda: NOW, tz_name="UTC")

    asyncio.run(service.record_crossed_paths("u1", LABEL, _profiles("u2", "u3"), EVERGREEN))
    assert [r["crossed_user_id"] for r in store.rows(EDGES_TABLE)] == ["u3"]


def test_seen_ids_written_by_mobile_client_are_honoured(store, storage):
    place = compute_place_key(LABEL, EVERGREEN)
    storage.data[f"crossedPaths:seenIds:v1:u1:2024-03-01:{place}"] = json.dumps(["u2"])
    service = CrossedPaths(store, storage, clock=lambda: NOW, tz_name="UTC")

    asyncio.run(service.record_crossed_paths("u1", LABEL, _profiles("u2"), EVERGREEN))
    assert store.calls == []
    assert list(storage.data) == [f"crossedPaths:seenIds:v1:u1:2024-03-01:{place}"]


def test_new_people_per_call_are_capped(service, store):
    profiles = _profiles(*(f"p{i:03d}" for i in range(120)))
    asyncio.run(service.record_crossed_paths("u1", LABEL, profiles, EVERGREEN))
    assert len(store.rows(EDGES_TABLE)) == 80


def test_empty_inputs_are_no_ops(service, store):
    async def run():
        await service.record_crossed_paths("u1", LABEL, [], EVERGREEN)
        await service.record_crossed_paths("u1", "  ", _profiles("u2"), EVERGREEN)
        await service.record_crossed_paths("u1", LABEL, _profiles("u1"), EVERGREEN)

    asyncio.run(run())
    assert store.calls == []


def test_missing_table_falls_back_and_dedupes(service, store, storage):
    store.missing_tables.add(EDGES_TABLE)
    stale = {
        "user_id": "u1",
        "crossed_user_id": "old",
        "address_label": "Old",
        "address_key": "hold",
        "day_key": "2024-02-20",
        "seen_at": iso_days_ago(9),
    }
    storage.data[edges_key("u1")] = json.dumps([stale])

    async def run():
        await service.record_crossed_paths("u1", LABEL, _profiles("u2", "u3"), EVERGREEN)
        # a new session (fresh seen cache) must not duplicate local rows
        again = CrossedPaths(store, storage, seen=SeenCache(MemoryStorage()), clock=lambda: NOW, tz_name="UTC")
        await again.record_crossed_paths("u1", LABEL, _profiles("u2", "u3"), EVERGREEN)
        return await service.fetch_crossed_paths("u1")

    rows = asyncio.run(run())
    assert sorted(r.crossed_user_id for r in rows) == ["u2", "u3"]
    stored = json.loads(storage.data[edges_key("u1")])
    assert sorted(r["crossed_user_id"] for r in stored) == ["u2", "u3"]


def test_failed_write_on_existing_table_caches_nothing(service, store, storage):
    store.fail_next(EDGES_TABLE, RemoteError("new row violates row-level security policy", code="42501", status=403))

    async def run():
        await service.record_crossed_paths("u1", LABEL, _profiles("u2"), EVERGREEN)
        # not marked as seen, so the next attempt retries the write
        await service.record_crossed_paths("u1", LABEL, _profiles("u2"), EVERGREEN)

    asyncio.run(run())
    assert edges_key("u1") not in storage.data
    assert [r["crossed_user_id"] for r in store.rows(EDGES_TABLE)] == ["u2"]
    assert store.calls.count(("upsert", EDGES_TABLE)) == 2
