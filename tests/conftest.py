from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from crossed_paths.models import GeocodedAddress
from crossed_paths.remote import MemoryStore
from crossed_paths.service import CrossedPaths
from crossed_paths.storage import MemoryStorage
from crossed_paths.timeutils import to_iso

NOW = datetime(2024, 3, 1, 12, 0, 0, tzinfo=UTC)

EVERGREEN = GeocodedAddress(street_number="742", street="Evergreen Terrace", city="Springfield")


def iso_days_ago(days: float, now: datetime = NOW) -> str:
    return to_iso(now - timedelta(days=days))


def make_person(user_id: str, intent: int, match: float, seen_at: str, **extra: Any) -> dict[str, Any]:
    row = {
        "user_id": user_id,
        "username": f"@{user_id}",
        "full_name": None,
        "avatar_url": None,
        "is_verified": False,
        "relationship_goals": None,
        "match_percent": match,
        "same_intent": bool(intent),
        "last_seen": seen_at,
        "cursor_intent": intent,
        "cursor_match": match,
        "cursor_seen_at": seen_at,
        "cursor_user_id": user_id,
    }
    row.update(extra)
    return row


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore(auth_user_id="u1")


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def service(store: MemoryStore, storage: MemoryStorage) -> CrossedPaths:
    return CrossedPaths(store, storage, clock=lambda: NOW, tz_name="UTC")
