"""Local persistent key-value storage used for the on-device fallback.

Values are strings (JSON documents); keys are namespaced per feature and per
user so different identities on one device never collide.
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Final, Protocol

logger = logging.getLogger(__name__)

EDGES_PREFIX: Final[str] = "crossedPaths:v1:"
SEEN_PREFIX: Final[str] = "crossedPaths:seenIds:v1:"
VISITS_PREFIX: Final[str] = "crossedPaths:visits:v1:"


def edges_key(user_id: str) -> str:
    return f"{EDGES_PREFIX}{user_id}"


def visits_key(user_id: str) -> str:
    return f"{VISITS_PREFIX}{user_id}"


def seen_key(seen_cache_key: str) -> str:
    return f"{SEEN_PREFIX}{seen_cache_key}"


class LocalStorage(Protocol):
    """Async string key-value store."""

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str) -> None: ...


class MemoryStorage:
    """In-process storage (tests, ephemeral sessions)."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self.data: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> str | None:
        return self.data.get(key)

    async def set(self, key: str, value: str) -> None:
        self.data[key] = value


class JsonDiskCache:
    """A tiny JSON map persisted on disk (key -> string value).

    Every write is appended to a journal first so a crash loses nothing;
    ``flush`` writes a full snapshot and clears the journal.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        # Example: crossed_paths_cache.json -> crossed_paths_cache.journal.jsonl
        self._journal_path = self._path.with_name(f"{self._path.stem}.journal.jsonl")
        self._data: dict[str, str] = {}
        self._loaded = False

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> None:
        """Load snapshot and replay the journal (no-op if already loaded)."""

        if self._loaded:
            return
        self._data = {}
        if self._path.exists():
            text = self._path.read_text(encoding="utf-8").strip()
            if text:
                try:
                    loaded = json.loads(text)
                except json.JSONDecodeError:
                    # Snapshot corrupted: keep a backup and start fresh
                    backup = self._path.with_suffix(self._path.suffix + ".broken")
                    backup.write_text(text, encoding="utf-8")
                    logger.warning("Local cache %s is corrupted; backed up to %s", self._path, backup)
                    loaded = {}
                if isinstance(loaded, dict):
                    self._data = {str(k): v for k, v in loaded.items() if isinstance(v, str)}

        self._replay_journal()
        self._loaded = True

    def get(self, key: str) -> str | None:
        self.load()
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self.load()
        self._data[key] = value
        self._append_journal(key, value)

    def keys(self) -> list[str]:
        self.load()
        return sorted(self._data)

    def flush(self) -> None:
        """Persist a full snapshot (atomic-ish) and clear the journal."""

        self.load()
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_text(json.dumps(self._data, ensure_ascii=False, indent=2), encoding="utf-8")
        tmp.replace(self._path)
        self._clear_journal()

    def _append_journal(self, key: str, value: str) -> None:
        self._journal_path.parent.mkdir(parents=True, exist_ok=True)
        record: dict[str, Any] = {"k": key, "v": value}
        with self._journal_path.open("a", encoding="utf-8", newline="\n") as f:
            f.write(json.dumps(record, ensure_ascii=False) + "\n")

    def _replay_journal(self) -> None:
        if not self._journal_path.exists():
            return
        try:
            with self._journal_path.open("r", encoding="utf-8") as f:
                for line in f:
                    s = line.strip()
                    if not s:
                        continue
                    try:
                        rec = json.loads(s)
                    except json.JSONDecodeError:
                        # ignore broken tail lines
                        continue
                    k = rec.get("k")
                    v = rec.get("v")
                    if isinstance(k, str) and isinstance(v, str):
                        self._data[k] = v
        except OSError:
            logger.warning("Cannot read journal %s", self._journal_path)
            return

    def _clear_journal(self) -> None:
        try:
            if self._journal_path.exists():
                self._journal_path.unlink()
        except OSError:
            return


class JsonFileStorage:
    """LocalStorage backed by a JsonDiskCache; disk I/O runs off the event loop."""

    def __init__(self, path: str | Path) -> None:
        self._cache = JsonDiskCache(path)
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> str | None:
        async with self._lock:
            return await asyncio.to_thread(self._cache.get, key)

    async def set(self, key: str, value: str) -> None:
        async with self._lock:
            await asyncio.to_thread(self._cache.set, key, value)

    async def flush(self) -> None:
        async with self._lock:
            await asyncio.to_thread(self._cache.flush)


async def read_json_list(storage: LocalStorage, key: str) -> list[Any]:
    """Read a JSON list stored under ``key``; missing or corrupt values read as ``[]``."""

    raw = await storage.get(key)
    if not raw:
        return []
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Ignoring corrupt local value under %s", key)
        return []
    if not isinstance(parsed, list):
        logger.warning("Ignoring non-list local value under %s", key)
        return []
    return parsed


async def write_json_list(storage: LocalStorage, key: str, items: list[Any]) -> None:
    await storage.set(key, json.dumps(items, ensure_ascii=False))
