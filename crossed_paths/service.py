"""Crossed Paths: recording visits and reading the proximity history.

Every public coroutine here is best-effort. Failures are logged and resolve
to "nothing recorded" or an empty result; nothing is raised to the caller.
Only a schema-missing error from the backend switches the recorders to the
on-device fallback lists.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import AsyncIterator, Callable, Mapping, Sequence

from crossed_paths.errors import RemoteError
from crossed_paths.models import (
    DEFAULT_PAGE_SIZE,
    MAX_NEW_PROFILES_PER_CALL,
    Coordinate,
    CrossedPathGroup,
    CrossedPathPerson,
    CrossedPathProfile,
    CrossedPathRow,
    GeocodedAddress,
    HistoryGroup,
    PeopleCursor,
    PeoplePage,
    VisitRow,
)
from crossed_paths.placekey import compute_place_key
from crossed_paths.remote import (
    EDGES_CONFLICT,
    EDGES_TABLE,
    GROUPS_ROUTINE,
    PEOPLE_ROUTINE,
    PROFILES_TABLE,
    VISITS_CONFLICT,
    VISITS_TABLE,
    RemoteStore,
)
from crossed_paths.retention import merge_edges, parse_edges, parse_visits, prune_edges, prune_visits, upsert_visit
from crossed_paths.seen import SeenCache, seen_cache_key
from crossed_paths.storage import LocalStorage, edges_key, read_json_list, visits_key, write_json_list
from crossed_paths.timeutils import day_key_local, retention_cutoff, to_iso, utc_now

logger = logging.getLogger(__name__)

EDGE_COLUMNS = ("user_id", "crossed_user_id", "address_label", "address_key", "day_key", "seen_at")
PROFILE_COLUMNS = ("id", "username", "full_name", "avatar_url", "is_verified")


@dataclass(frozen=True, slots=True)
class _Place:
    label: str
    day_key: str
    place_key: str
    seen_at: str


def _clean_label(address_label: str | None) -> str | None:
    if address_label is None:
        return None
    return address_label.strip() or None


def group_edges(
    rows: Sequence[CrossedPathRow], profiles: Mapping[str, CrossedPathProfile] | None = None
) -> list[HistoryGroup]:
    """Group legacy edges for display.

    Edges on the same day with the same (trimmed) label form one group even
    when their address keys differ; a blank label falls back to the key.
    People are de-duplicated per group and the newest day comes first.

    Args:
        rows: Edges of one viewer.
        profiles: Visible profiles by id. Edges to ids missing here are
            dropped, and groups left empty are hidden. None keeps every
            edge with a bare-id profile.
    """

    by: dict[str, HistoryGroup] = {}
    for r in rows:
        if not r.crossed_user_id:
            continue
        if profiles is None:
            profile = CrossedPathProfile(id=r.crossed_user_id)
        else:
            profile = profiles.get(r.crossed_user_id)
            if profile is None:
                continue
        label = (r.address_label or "").strip()
        key = f"{r.day_key}|{label or r.address_key}"
        g = by.get(key)
        if g is None:
            g = HistoryGroup(key=key, day_key=r.day_key, address_label=r.address_label or None)
            by[key] = g
        if profile.id not in g.crossed_user_ids:
            g.profiles.append(profile)

    groups = [g for g in by.values() if g.profiles]
    # sort() is stable, so insertion order is kept within one day
    groups.sort(key=lambda g: g.day_key, reverse=True)
    return groups


class CrossedPaths:
    """Facade over the remote store and the local fallback cache.

    Args:
        remote: Remote data store.
        storage: Local key-value storage, namespaced per user inside.
        seen: Seen-id cache for the legacy recorder; one per session.
        clock: Returns the current aware datetime.
        tz_name: IANA zone for day keys; None uses the device zone.
    """

    def __init__(
        self,
        remote: RemoteStore,
        storage: LocalStorage,
        *,
        seen: SeenCache | None = None,
        clock: Callable[[], datetime] | None = None,
        tz_name: str | None = None,
    ) -> None:
        self._remote = remote
        self._storage = storage
        self._seen = seen if seen is not None else SeenCache(storage)
        self._clock = clock or utc_now
        self._tz_name = tz_name

    @property
    def seen(self) -> SeenCache:
        return self._seen

    def _place(
        self,
        label: str,
        address: GeocodedAddress | None,
        location: Coordinate | None,
        seen_at: datetime | None,
    ) -> _Place:
        when = seen_at or self._clock()
        return _Place(
            label=label,
            day_key=day_key_local(when, self._tz_name),
            place_key=compute_place_key(label, address, location),
            seen_at=to_iso(when),
        )

    # -- recording ---------------------------------------------------------

    async def record_visit(
        self,
        viewer_id: str,
        address_label: str | None,
        address: GeocodedAddress | None = None,
        location: Coordinate | None = None,
        seen_at: datetime | None = None,
    ) -> None:
        """Upsert one (user, day, place) visit; fall back to local storage if the table is missing."""

        label = _clean_label(address_label)
        if not label or not viewer_id:
            return

        place = self._place(label, address, location, seen_at)
        visit = VisitRow(
            user_id=viewer_id,
            place_key=place.place_key,
            day_key=place.day_key,
            seen_at=place.seen_at,
            address_label=label,
        )

        try:
            await self._remote.upsert(VISITS_TABLE, [visit.to_dict()], VISITS_CONFLICT)
            return
        except RemoteError as exc:
            if not exc.schema_missing:
                logger.warning("Visit not recorded: %r", exc)
                return
            logger.debug("%s missing; recording visit locally", VISITS_TABLE)
        except Exception:
            logger.warning("Visit not recorded", exc_info=True)
            return

        key = visits_key(viewer_id)
        try:
            kept = prune_visits(parse_visits(await read_json_list(self._storage, key)), self._clock())
            upsert_visit(kept, visit)
            await write_json_list(self._storage, key, [r.to_dict() for r in kept])
        except Exception:
            logger.warning("Local visit fallback failed", exc_info=True)

    async def record_crossed_paths(
        self,
        viewer_id: str,
        address_label: str | None,
        profiles: Sequence[CrossedPathProfile],
        address: GeocodedAddress | None = None,
        location: Coordinate | None = None,
        seen_at: datetime | None = None,
    ) -> None:
        """Record viewer -> person edges for people not yet recorded at this place today."""

        label = _clean_label(address_label)
        if not label or not viewer_id or not profiles:
            return

        place = self._place(label, address, location, seen_at)
        skey = seen_cache_key(viewer_id, place.day_key, place.place_key)
        try:
            seen_ids = await self._seen.get(skey)
        except Exception:
            logger.warning("Seen cache unavailable", exc_info=True)
            return

        new_ids: list[str] = []
        for p in profiles:
            if not p.id or p.id == viewer_id or p.id in seen_ids or p.id in new_ids:
                continue
            new_ids.append(p.id)
            if len(new_ids) >= MAX_NEW_PROFILES_PER_CALL:
                break
        if not new_ids:
            return

        rows = [
            CrossedPathRow(
                user_id=viewer_id,
                crossed_user_id=uid,
                address_label=label,
                address_key=place.place_key,
                day_key=place.day_key,
                seen_at=place.seen_at,
            )
            for uid in new_ids
        ]

        try:
            await self._remote.upsert(EDGES_TABLE, [r.to_dict() for r in rows], EDGES_CONFLICT)
        except RemoteError as exc:
            if not exc.schema_missing:
                # The table exists but the write failed: cache nothing.
                logger.warning("Crossed paths not recorded: %r", exc)
                return
            logger.debug("%s missing; recording %s edges locally", EDGES_TABLE, len(rows))
            await self._record_edges_locally(viewer_id, skey, rows, new_ids)
            return
        except Exception:
            logger.warning("Crossed paths not recorded", exc_info=True)
            return

        try:
            await self._seen.mark(skey, new_ids)
        except Exception:
            logger.debug("Persisting seen ids failed", exc_info=True)

    async def _record_edges_locally(
        self, viewer_id: str, skey: str, rows: Sequence[CrossedPathRow], new_ids: Sequence[str]
    ) -> None:
        key = edges_key(viewer_id)
        try:
            kept = prune_edges(parse_edges(await read_json_list(self._storage, key)), self._clock())
            merge_edges(kept, rows)
            await write_json_list(self._storage, key, [r.to_dict() for r in kept])
            await self._seen.mark(skey, new_ids)
        except Exception:
            logger.warning("Local crossed-paths fallback failed", exc_info=True)

    # -- reading -----------------------------------------------------------

    async def fetch_crossed_paths(self, viewer_id: str) -> list[CrossedPathRow]:
        """Legacy edges from the last 7 days, newest day first; local cache if the table is missing."""

        if not viewer_id:
            return []
        now = self._clock()
        try:
            data = await self._remote.select(
                EDGES_TABLE,
                EDGE_COLUMNS,
                filters=[("user_id", "eq", viewer_id), ("seen_at", "gte", to_iso(retention_cutoff(now)))],
                order=[("day_key", True), ("seen_at", True)],
            )
            return parse_edges(data)
        except RemoteError as exc:
            if not exc.schema_missing:
                logger.warning("Crossed paths unavailable: %r", exc)
                return []
        except Exception:
            logger.warning("Crossed paths unavailable", exc_info=True)
            return []

        try:
            return prune_edges(parse_edges(await read_json_list(self._storage, edges_key(viewer_id))), now)
        except Exception:
            logger.warning("Local crossed paths unreadable", exc_info=True)
            return []

    async def fetch_local_visits(self, viewer_id: str) -> list[VisitRow]:
        """Visits recorded by the local fallback, inside the retention window."""

        try:
            raw = await read_json_list(self._storage, visits_key(viewer_id))
        except Exception:
            logger.warning("Local visits unreadable", exc_info=True)
            return []
        return prune_visits(parse_visits(raw), self._clock())

    async def fetch_crossed_path_groups(self) -> list[CrossedPathGroup]:
        """(day, place) groups for the calling identity; [] when the backend lacks the routine."""

        try:
            data = await self._remote.rpc(GROUPS_ROUTINE, {})
        except RemoteError as exc:
            if exc.schema_missing or exc.routine_missing:
                logger.debug("%s unavailable: %r", GROUPS_ROUTINE, exc)
            else:
                logger.warning("Crossed path groups unavailable: %r", exc)
            return []
        except Exception:
            logger.warning("Crossed path groups unavailable", exc_info=True)
            return []

        groups: list[CrossedPathGroup] = []
        for raw in data:
            try:
                groups.append(CrossedPathGroup.from_dict(raw))
            except (KeyError, TypeError, ValueError):
                logger.debug("Skipping malformed group row %r", raw)
        return groups

    async def fetch_crossed_path_people(
        self,
        day_key: str,
        place_key: str,
        limit: int = DEFAULT_PAGE_SIZE,
        cursor: PeopleCursor | None = None,
    ) -> list[CrossedPathPerson]:
        """One page of people in a group, strictly after ``cursor``.

        A page of exactly ``limit`` rows means more may follow; a shorter page
        means the group is exhausted.
        """

        params = {
            "p_day": day_key,
            "p_place_key": place_key,
            "p_limit": limit,
            "p_cursor_intent": cursor.intent if cursor else None,
            "p_cursor_match": cursor.match if cursor else None,
            "p_cursor_seen_at": cursor.seen_at if cursor else None,
            "p_cursor_user_id": cursor.user_id if cursor else None,
        }
        try:
            data = await self._remote.rpc(PEOPLE_ROUTINE, params)
        except RemoteError as exc:
            if exc.schema_missing or exc.routine_missing:
                logger.debug("%s unavailable: %r", PEOPLE_ROUTINE, exc)
            else:
                logger.warning("Crossed path people unavailable: %r", exc)
            return []
        except Exception:
            logger.warning("Crossed path people unavailable", exc_info=True)
            return []

        people: list[CrossedPathPerson] = []
        for raw in data:
            try:
                people.append(CrossedPathPerson.from_dict(raw))
            except (KeyError, TypeError, ValueError):
                logger.debug("Skipping malformed person row %r", raw)
        return people

    async def fetch_people_page(
        self,
        day_key: str,
        place_key: str,
        limit: int = DEFAULT_PAGE_SIZE,
        cursor: PeopleCursor | None = None,
    ) -> PeoplePage:
        """Like ``fetch_crossed_path_people`` but with an explicit continuation."""

        people = await self.fetch_crossed_path_people(day_key, place_key, limit, cursor)
        has_more = limit > 0 and len(people) >= limit
        next_cursor = people[-1].cursor if has_more else None
        return PeoplePage(people=people, next_cursor=next_cursor, has_more=has_more)

    async def iter_people(
        self, day_key: str, place_key: str, page_size: int = DEFAULT_PAGE_SIZE
    ) -> AsyncIterator[CrossedPathPerson]:
        """Yield every person in a group, chaining cursors page by page."""

        if page_size < 1:
            raise ValueError("page_size must be >= 1")
        cursor: PeopleCursor | None = None
        while True:
            page = await self.fetch_people_page(day_key, place_key, page_size, cursor)
            if cursor is not None and page.next_cursor == cursor:
                # the backend ignored the cursor and replayed the previous page
                logger.warning("%s did not advance past %r; stopping", PEOPLE_ROUTINE, cursor)
                return
            for person in page.people:
                yield person
            if not page.has_more or page.next_cursor is None:
                return
            cursor = page.next_cursor

    async def load_group_people(
        self,
        groups: Sequence[CrossedPathGroup],
        limit: int = DEFAULT_PAGE_SIZE,
        max_concurrency: int = 3,
    ) -> list[PeoplePage]:
        """First page of people for each group, at most ``max_concurrency`` requests in flight.

        The result is aligned with ``groups``. ``max_concurrency=1`` fetches
        strictly one group after another.
        """

        sem = asyncio.Semaphore(max(1, max_concurrency))

        async def one(g: CrossedPathGroup) -> PeoplePage:
            async with sem:
                return await self.fetch_people_page(g.day_key, g.place_key, limit)

        return list(await asyncio.gather(*(one(g) for g in groups)))

    # -- legacy history screen ---------------------------------------------

    async def is_history_enabled(self, viewer_id: str) -> bool:
        """The viewer's ``save_crossed_paths`` profile flag; on by default."""

        try:
            data = await self._remote.select(
                PROFILES_TABLE, ("save_crossed_paths",), filters=[("id", "eq", viewer_id)]
            )
        except RemoteError as exc:
            logger.debug("Profile flag unavailable: %r", exc)
            return True
        except Exception:
            logger.debug("Profile flag unavailable", exc_info=True)
            return True
        if not data:
            return True
        value = data[0].get("save_crossed_paths")
        return True if value is None else bool(value)

    async def _visible_profiles(self, user_ids: Sequence[str]) -> dict[str, CrossedPathProfile] | None:
        """Profiles the viewer may still see, by id.

        None when the profiles table is not deployed (local-only history);
        an empty map when the lookup failed otherwise, which hides everyone.
        """

        try:
            data = await self._remote.select(PROFILES_TABLE, PROFILE_COLUMNS, filters=[("id", "in", list(user_ids))])
        except RemoteError as exc:
            if exc.schema_missing:
                logger.debug("%s missing; history shows bare ids", PROFILES_TABLE)
                return None
            logger.warning("Crossed-path profiles unavailable: %r", exc)
            return {}
        except Exception:
            logger.warning("Crossed-path profiles unavailable", exc_info=True)
            return {}

        found: dict[str, CrossedPathProfile] = {}
        for raw in data:
            try:
                p = CrossedPathProfile.from_dict(raw)
            except (KeyError, TypeError, ValueError):
                logger.debug("Skipping malformed profile row %r", raw)
                continue
            found[p.id] = p
        return found

    async def load_history(self, viewer_id: str) -> list[HistoryGroup]:
        """Grouped legacy history, or [] when the viewer turned the feature off.

        Only people whose profile is still visible are listed.
        """

        if not viewer_id or not await self.is_history_enabled(viewer_id):
            return []
        rows = await self.fetch_crossed_paths(viewer_id)
        ids = list(dict.fromkeys(r.crossed_user_id for r in rows if r.crossed_user_id))
        if not ids:
            return []
        return group_edges(rows, await self._visible_profiles(ids))
