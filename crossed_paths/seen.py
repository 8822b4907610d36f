"""Per-session memory of which co-located people were already recorded.

Keyed by ``viewer:day:place``, the same suffix the mobile clients use for
their seen-id lists. A key is hydrated lazily from local storage the first
time it is used, so a restarted session does not re-write edges it already
stored.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Final, Iterable

from crossed_paths.storage import LocalStorage, read_json_list, seen_key, write_json_list

logger = logging.getLogger(__name__)

DEFAULT_MAX_KEYS: Final[int] = 256


def seen_cache_key(viewer_id: str, day_key: str, place_key: str) -> str:
    return f"{viewer_id}:{day_key}:{place_key}"


class SeenCache:
    """Bounded LRU of ``key -> set of user ids``."""

    def __init__(self, storage: LocalStorage, max_keys: int = DEFAULT_MAX_KEYS) -> None:
        if max_keys < 1:
            raise ValueError("max_keys must be >= 1")
        self._storage = storage
        self._max_keys = max_keys
        self._sets: OrderedDict[str, set[str]] = OrderedDict()

    def __len__(self) -> int:
        return len(self._sets)

    def __contains__(self, key: object) -> bool:
        return key in self._sets

    async def get(self, key: str) -> set[str]:
        """Return the (live) id set for ``key``, hydrating from storage on first use."""

        ids = self._sets.get(key)
        if ids is not None:
            self._sets.move_to_end(key)
            return ids

        ids = set()
        try:
            for item in await read_json_list(self._storage, seen_key(key)):
                if isinstance(item, str):
                    ids.add(item)
        except Exception:
            logger.debug("Seen-id hydration failed for %s", key, exc_info=True)

        self._sets[key] = ids
        while len(self._sets) > self._max_keys:
            self._sets.popitem(last=False)
        return ids

    async def mark(self, key: str, user_ids: Iterable[str]) -> None:
        """Add ids under ``key`` and persist the whole list."""

        ids = await self.get(key)
        ids.update(user_ids)
        await write_json_list(self._storage, seen_key(key), sorted(ids))
