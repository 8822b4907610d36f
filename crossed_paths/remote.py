"""Remote data store: tables with upsert/select and named routines.

``PostgrestStore`` talks to a PostgREST-compatible HTTP API using only the
standard library; blocking calls run in a worker thread so the event loop
stays free. ``MemoryStore`` is an in-process stand-in with the same
contract, including the two history routines.
"""

from __future__ import annotations

import asyncio
import json
import logging
import urllib.error
import urllib.parse
import urllib.request
from typing import Any, Final, Iterable, Mapping, Protocol, Sequence

from crossed_paths.config import RemoteConfig
from crossed_paths.errors import ErrorKind, RemoteError
from crossed_paths.timeutils import parse_iso

logger = logging.getLogger(__name__)

VISITS_TABLE: Final[str] = "crossed_path_visits"
EDGES_TABLE: Final[str] = "crossed_paths"
PROFILES_TABLE: Final[str] = "profiles"
GROUPS_ROUTINE: Final[str] = "get_my_crossed_paths_groups"
PEOPLE_ROUTINE: Final[str] = "get_crossed_paths_people"

VISITS_CONFLICT: Final[tuple[str, ...]] = ("user_id", "day_key", "place_key")
EDGES_CONFLICT: Final[tuple[str, ...]] = ("user_id", "crossed_user_id", "day_key", "address_key")

# (column, operator, value); operators: "eq", "gte", "in" (value is a sequence)
Filter = tuple[str, str, Any]
# (column, descending)
Order = tuple[str, bool]


class RemoteStore(Protocol):
    """Narrow query/upsert/RPC surface. Every method raises RemoteError on failure."""

    async def upsert(
        self, table: str, rows: Sequence[Mapping[str, Any]], on_conflict: Sequence[str]
    ) -> None: ...

    async def select(
        self,
        table: str,
        columns: Sequence[str],
        filters: Sequence[Filter] = (),
        order: Sequence[Order] = (),
    ) -> list[dict[str, Any]]: ...

    async def rpc(self, name: str, params: Mapping[str, Any] | None = None) -> list[dict[str, Any]]: ...


def _error_from_body(status: int, body: str) -> RemoteError:
    code: str | None = None
    message = body.strip() or f"HTTP {status}"
    try:
        payload = json.loads(body)
    except json.JSONDecodeError:
        payload = None
    if isinstance(payload, dict):
        raw_code = payload.get("code")
        code = str(raw_code) if raw_code is not None else None
        message = str(payload.get("message") or message)
    return RemoteError(message, code=code, status=status)


class PostgrestStore:
    """RemoteStore over PostgREST (e.g. a Supabase project)."""

    def __init__(self, config: RemoteConfig) -> None:
        self._cfg = config

    def _headers(self, *, write: bool = False) -> dict[str, str]:
        bearer = self._cfg.access_token or self._cfg.api_key
        headers = {
            "User-Agent": self._cfg.user_agent,
            "Accept": "application/json",
            "Accept-Profile": self._cfg.schema,
        }
        if self._cfg.api_key:
            headers["apikey"] = self._cfg.api_key
        if bearer:
            headers["Authorization"] = f"Bearer {bearer}"
        if write:
            headers["Content-Type"] = "application/json"
            headers["Content-Profile"] = self._cfg.schema
        return headers

    def _request(
        self,
        method: str,
        path: str,
        *,
        query: Sequence[tuple[str, str]] = (),
        body: Any = None,
        extra_headers: Mapping[str, str] | None = None,
    ) -> Any:
        url = f"{self._cfg.rest_url}/{path}"
        if query:
            url = f"{url}?{urllib.parse.urlencode(list(query))}"
        data = None
        headers = self._headers(write=body is not None)
        if extra_headers:
            headers.update(extra_headers)
        if body is not None:
            data = json.dumps(body, ensure_ascii=False).encode("utf-8")
        req = urllib.request.Request(url, data=data, headers=headers, method=method)
        try:
            with urllib.request.urlopen(req, timeout=self._cfg.timeout_seconds) as resp:  # noqa: S310
                text = resp.read().decode("utf-8", errors="replace")
        except urllib.error.HTTPError as exc:
            text = exc.read().decode("utf-8", errors="replace") if exc.fp is not None else ""
            raise _error_from_body(exc.code, text) from exc
        except (urllib.error.URLError, TimeoutError, OSError) as exc:
            raise RemoteError(f"{method} {path} failed: {exc}", kind=ErrorKind.OTHER) from exc

        if not text.strip():
            return None
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise RemoteError(f"{method} {path} returned invalid JSON", kind=ErrorKind.OTHER) from exc

    async def upsert(
        self, table: str, rows: Sequence[Mapping[str, Any]], on_conflict: Sequence[str]
    ) -> None:
        query = [("on_conflict", ",".join(on_conflict))]
        prefer = {"Prefer": "resolution=merge-duplicates,return=minimal"}
        await asyncio.to_thread(
            self._request, "POST", table, query=query, body=[dict(r) for r in rows], extra_headers=prefer
        )

    async def select(
        self,
        table: str,
        columns: Sequence[str],
        filters: Sequence[Filter] = (),
        order: Sequence[Order] = (),
    ) -> list[dict[str, Any]]:
        query: list[tuple[str, str]] = [("select", ",".join(columns))]
        for column, op, value in filters:
            if op == "in":
                value = "({})".format(",".join(str(v) for v in value))
            query.append((column, f"{op}.{value}"))
        if order:
            query.append(("order", ",".join(f"{c}.{'desc' if desc else 'asc'}" for c, desc in order)))
        data = await asyncio.to_thread(self._request, "GET", table, query=query)
        return list(data or [])

    async def rpc(self, name: str, params: Mapping[str, Any] | None = None) -> list[dict[str, Any]]:
        data = await asyncio.to_thread(self._request, "POST", f"rpc/{name}", body=dict(params or {}))
        if data is None:
            return []
        if isinstance(data, dict):
            return [data]
        return list(data)


def _compare_value(value: Any) -> Any:
    if isinstance(value, str):
        try:
            return parse_iso(value)
        except ValueError:
            return value
    return value


def _matches(row: Mapping[str, Any], filters: Iterable[Filter]) -> bool:
    for column, op, value in filters:
        cur = row.get(column)
        if op == "eq":
            if str(cur) != str(value):
                return False
        elif op == "in":
            if str(cur) not in {str(v) for v in value}:
                return False
        elif op == "gte":
            if cur is None:
                return False
            try:
                if _compare_value(cur) < _compare_value(value):
                    return False
            except TypeError:
                if str(cur) < str(value):
                    return False
        else:
            raise RemoteError(f"Unsupported filter operator: {op}", code="PGRST100", status=400)
    return True


def _person_order_key(row: Mapping[str, Any]) -> tuple[int, float, str, str]:
    return (
        int(row["cursor_intent"]),
        float(row["cursor_match"]),
        str(row["cursor_seen_at"]),
        str(row["cursor_user_id"]),
    )


class MemoryStore:
    """In-process RemoteStore.

    Tables are lists of dict rows. ``missing_tables``/``missing_routines``
    simulate an undeployed schema; ``fail_next`` injects one arbitrary error
    for the named table or routine.

    Args:
        auth_user_id: The "calling identity" the routines answer for.
    """

    def __init__(self, auth_user_id: str | None = None) -> None:
        self.auth_user_id = auth_user_id
        self.tables: dict[str, list[dict[str, Any]]] = {}
        self.missing_tables: set[str] = set()
        self.missing_routines: set[str] = set()
        # (day_key, place_key) -> person rows, used instead of derived rows when present
        self.people: dict[tuple[str, str], list[dict[str, Any]]] = {}
        self.calls: list[tuple[str, str]] = []
        self._failures: dict[str, RemoteError] = {}

    def fail_next(self, name: str, error: RemoteError) -> None:
        self._failures[name] = error

    def rows(self, table: str) -> list[dict[str, Any]]:
        return self.tables.setdefault(table, [])

    def _check_table(self, table: str) -> None:
        err = self._failures.pop(table, None)
        if err is not None:
            raise err
        if table in self.missing_tables:
            raise RemoteError(f'relation "public.{table}" does not exist', code="42P01", status=404)

    def _check_routine(self, name: str) -> None:
        err = self._failures.pop(name, None)
        if err is not None:
            raise err
        if name in self.missing_routines:
            raise RemoteError(
                f"Could not find the function public.{name} in the schema cache", code="PGRST202", status=404
            )

    async def upsert(
        self, table: str, rows: Sequence[Mapping[str, Any]], on_conflict: Sequence[str]
    ) -> None:
        self.calls.append(("upsert", table))
        self._check_table(table)
        existing = self.rows(table)
        for row in rows:
            new = dict(row)
            key = tuple(str(new.get(c)) for c in on_conflict)
            for cur in existing:
                if tuple(str(cur.get(c)) for c in on_conflict) == key:
                    cur.update(new)
                    break
            else:
                existing.append(new)

    async def select(
        self,
        table: str,
        columns: Sequence[str],
        filters: Sequence[Filter] = (),
        order: Sequence[Order] = (),
    ) -> list[dict[str, Any]]:
        self.calls.append(("select", table))
        self._check_table(table)
        out = [{c: r.get(c) for c in columns} for r in self.rows(table) if _matches(r, filters)]
        # stable multi-key sort: apply the least significant key first
        for column, desc in reversed(list(order)):
            out.sort(key=lambda r, c=column: str(r.get(c) or ""), reverse=desc)
        return out

    async def rpc(self, name: str, params: Mapping[str, Any] | None = None) -> list[dict[str, Any]]:
        self.calls.append(("rpc", name))
        self._check_routine(name)
        p = dict(params or {})
        if name == GROUPS_ROUTINE:
            self._check_table(VISITS_TABLE)
            return self._groups()
        if name == PEOPLE_ROUTINE:
            self._check_table(VISITS_TABLE)
            return self._people(p)
        raise RemoteError(f"Could not find the function public.{name}", code="PGRST202", status=404)

    def _groups(self) -> list[dict[str, Any]]:
        me = self.auth_user_id
        if me is None:
            return []
        visits = self.rows(VISITS_TABLE)
        out: list[dict[str, Any]] = []
        for mine in (v for v in visits if v.get("user_id") == me):
            day, place = mine["day_key"], mine["place_key"]
            others = [
                v for v in visits if v.get("user_id") != me and v["day_key"] == day and v["place_key"] == place
            ]
            if not others and not self.people.get((day, place)):
                continue
            seen = [str(v["seen_at"]) for v in others] + [
                str(p["last_seen"]) for p in self.people.get((day, place), [])
            ]
            out.append(
                {
                    "day_key": day,
                    "place_key": place,
                    "address_label": mine.get("address_label"),
                    "last_seen": max(seen, key=_compare_value),
                }
            )
        out.sort(key=lambda g: (g["day_key"], _compare_value(g["last_seen"])), reverse=True)
        return out

    def _derived_people(self, day: str, place: str) -> list[dict[str, Any]]:
        profiles = {str(p.get("id")): p for p in self.rows(PROFILES_TABLE)}
        out = []
        for v in self.rows(VISITS_TABLE):
            if v.get("user_id") == self.auth_user_id or v["day_key"] != day or v["place_key"] != place:
                continue
            uid = str(v["user_id"])
            prof = profiles.get(uid, {})
            out.append(
                {
                    "user_id": uid,
                    "username": prof.get("username"),
                    "full_name": prof.get("full_name"),
                    "avatar_url": prof.get("avatar_url"),
                    "is_verified": bool(prof.get("is_verified") or False),
                    "relationship_goals": prof.get("relationship_goals"),
                    "match_percent": 0,
                    "same_intent": False,
                    "last_seen": v["seen_at"],
                    "cursor_intent": 0,
                    "cursor_match": 0,
                    "cursor_seen_at": v["seen_at"],
                    "cursor_user_id": uid,
                }
            )
        return out

    def _people(self, p: Mapping[str, Any]) -> list[dict[str, Any]]:
        day = str(p.get("p_day"))
        place = str(p.get("p_place_key"))
        limit = 30 if p.get("p_limit") is None else max(0, int(p["p_limit"]))
        rows = self.people.get((day, place))
        if rows is None:
            rows = self._derived_people(day, place)
        ordered = sorted(rows, key=_person_order_key, reverse=True)

        cursor_fields = (
            p.get("p_cursor_intent"),
            p.get("p_cursor_match"),
            p.get("p_cursor_seen_at"),
            p.get("p_cursor_user_id"),
        )
        if all(f is not None for f in cursor_fields):
            cursor = (int(cursor_fields[0]), float(cursor_fields[1]), str(cursor_fields[2]), str(cursor_fields[3]))
            ordered = [r for r in ordered if _person_order_key(r) < cursor]
        return [dict(r) for r in ordered[:limit]]


class OfflineStore:
    """RemoteStore with nothing deployed: every table and routine is missing.

    Lets the recorders and readers run purely on the local fallback cache.
    """

    async def upsert(
        self, table: str, rows: Sequence[Mapping[str, Any]], on_conflict: Sequence[str]
    ) -> None:
        raise RemoteError(f'relation "public.{table}" does not exist', code="42P01", status=404)

    async def select(
        self,
        table: str,
        columns: Sequence[str],
        filters: Sequence[Filter] = (),
        order: Sequence[Order] = (),
    ) -> list[dict[str, Any]]:
        raise RemoteError(f'relation "public.{table}" does not exist', code="42P01", status=404)

    async def rpc(self, name: str, params: Mapping[str, Any] | None = None) -> list[dict[str, Any]]:
        raise RemoteError(f"Could not find the function public.{name}", code="PGRST202", status=404)
