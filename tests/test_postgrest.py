from __future__ import annotations

import asyncio
import io
import json
import urllib.error
import urllib.parse
import urllib.request

import pytest

from crossed_paths.config import RemoteConfig
from crossed_paths.errors import ErrorKind, RemoteError
from crossed_paths.remote import VISITS_CONFLICT, PostgrestStore
from crossed_paths.service import CrossedPaths
from crossed_paths.storage import MemoryStorage

from conftest import NOW

CFG = RemoteConfig(base_url="https://example.test/", api_key="anon", access_token="jwt")


class FakeResponse:
    def __init__(self, body: str) -> None:
        self._body = body.encode("utf-8")

    def read(self) -> bytes:
        return self._body

    def __enter__(self) -> FakeResponse:
        return self

    def __exit__(self, *exc: object) -> None:
        return None


@pytest.fixture
def captured(monkeypatch):
    requests: list[urllib.request.Request] = []
    responses: list[object] = []

    def fake_urlopen(req, timeout=None):
        requests.append(req)
        item = responses.pop(0) if responses else FakeResponse("")
        if isinstance(item, Exception):
            raise item
        return item

    monkeypatch.setattr(urllib.request, "urlopen", fake_urlopen)
    return requests, responses


def _http_error(status: int, payload: dict) -> urllib.error.HTTPError:
    body = io.BytesIO(json.dumps(payload).encode("utf-8"))
    return urllib.error.HTTPError("https://example.test", status, "error", {}, body)


def test_upsert_request_shape(captured):
    requests, _ = captured
    store = PostgrestStore(CFG)
    asyncio.run(store.upsert("crossed_path_visits", [{"user_id": "u1"}], VISITS_CONFLICT))

    (req,) = requests
    url = urllib.parse.urlsplit(req.full_url)
    assert url.path == "/rest/v1/crossed_path_visits"
    assert urllib.parse.parse_qs(url.query) == {"on_conflict": ["user_id,day_key,place_key"]}
    assert req.get_method() == "POST"
    assert req.get_header("Prefer") == "resolution=merge-duplicates,return=minimal"
    assert req.get_header("Authorization") == "Bearer jwt"
    assert req.get_header("Apikey") == "anon"
    assert json.loads(req.data) == [{"user_id": "u1"}]


def test_select_request_shape(captured):
    requests, responses = captured
    responses.append(FakeResponse('[{"user_id": "u1"}]'))
    store = PostgrestStore(CFG)
    rows = asyncio.run(
        store.select("crossed_paths", ["user_id", "seen_at"], [("user_id", "eq", "u1")], [("day_key", True)])
    )
    assert rows == [{"user_id": "u1"}]
    query = urllib.parse.parse_qs(urllib.parse.urlsplit(requests[0].full_url).query)
    assert query == {"select": ["user_id,seen_at"], "user_id": ["eq.u1"], "order": ["day_key.desc"]}
    assert requests[0].get_method() == "GET"


def test_select_in_filter_is_a_parenthesised_list(captured):
    requests, responses = captured
    responses.append(FakeResponse("[]"))
    store = PostgrestStore(CFG)
    asyncio.run(store.select("profiles", ["id", "username"], [("id", "in", ["u2", "u3"])]))
    query = urllib.parse.parse_qs(urllib.parse.urlsplit(requests[0].full_url).query)
    assert query["id"] == ["in.(u2,u3)"]


def test_http_errors_are_classified(captured):
    _, responses = captured
    responses.append(_http_error(404, {"code": "42P01", "message": 'relation "x" does not exist'}))
    store = PostgrestStore(CFG)
    with pytest.raises(RemoteError) as info:
        asyncio.run(store.upsert("x", [{}], ["id"]))
    assert info.value.kind is ErrorKind.SCHEMA_MISSING
    assert info.value.status == 404


def test_network_failures_are_other(captured):
    _, responses = captured
    responses.append(urllib.error.URLError("connection refused"))
    store = PostgrestStore(CFG)
    with pytest.raises(RemoteError) as info:
        asyncio.run(store.rpc("get_my_crossed_paths_groups"))
    assert info.value.kind is ErrorKind.OTHER


def test_service_over_http_degrades_on_missing_routine(captured):
    requests, responses = captured
    responses.append(_http_error(404, {"code": "PGRST202", "message": "Could not find the function"}))
    service = CrossedPaths(PostgrestStore(CFG), MemoryStorage(), clock=lambda: NOW, tz_name="UTC")
    assert asyncio.run(service.fetch_crossed_path_groups()) == []
    assert urllib.parse.urlsplit(requests[0].full_url).path == "/rest/v1/rpc/get_my_crossed_paths_groups"


def test_remote_config_from_env():
    assert RemoteConfig.from_env({}) is None
    cfg = RemoteConfig.from_env({"CROSSED_PATHS_URL": "https://x.test", "CROSSED_PATHS_API_KEY": "k"})
    assert cfg is not None and cfg.rest_url == "https://x.test/rest/v1" and cfg.api_key == "k"
