"""Data models for visits, crossed-path edges and the history read models."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Final, Mapping

RETENTION_DAYS: Final[int] = 7
MAX_NEW_PROFILES_PER_CALL: Final[int] = 80
DEFAULT_PAGE_SIZE: Final[int] = 30


def _str_or_none(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)


def _field(raw: Mapping[str, Any], name: str) -> str:
    value = raw.get(name)
    if value is None:
        return ""
    return str(value).strip()


@dataclass(frozen=True, slots=True)
class Coordinate:
    """A device position in decimal degrees."""

    lat: float
    long: float


@dataclass(frozen=True, slots=True)
class GeocodedAddress:
    """A reverse-geocoded address as returned by the device/geocoder.

    Every field may be empty; consumers degrade to coarser granularity
    instead of failing.
    """

    name: str = ""
    street_number: str = ""
    street: str = ""
    postal_code: str = ""
    city: str = ""
    region: str = ""
    country: str = ""

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> GeocodedAddress:
        """Build from either snake_case or camelCase keys."""

        def pick(*names: str) -> str:
            for n in names:
                v = _field(raw, n)
                if v:
                    return v
            return ""

        return cls(
            name=pick("name"),
            street_number=pick("street_number", "streetNumber"),
            street=pick("street"),
            postal_code=pick("postal_code", "postalCode"),
            city=pick("city"),
            region=pick("region"),
            country=pick("country"),
        )


@dataclass(slots=True)
class VisitRow:
    """A (user, place, day) visit record.

    Mutable on purpose: the local fallback updates ``seen_at`` and
    ``address_label`` in place on a repeated (user, day, place) write.
    """

    user_id: str
    place_key: str
    day_key: str
    seen_at: str
    address_label: str | None

    def signature(self) -> str:
        return f"{self.user_id}|{self.day_key}|{self.place_key}"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> VisitRow:
        return cls(
            user_id=str(raw["user_id"]),
            place_key=str(raw["place_key"]),
            day_key=str(raw["day_key"]),
            seen_at=str(raw["seen_at"]),
            address_label=_str_or_none(raw.get("address_label")),
        )


@dataclass(frozen=True, slots=True)
class CrossedPathRow:
    """Legacy pairwise edge: viewer and another user at one place on one day."""

    user_id: str
    crossed_user_id: str
    address_label: str
    address_key: str
    day_key: str
    seen_at: str

    def signature(self) -> str:
        return f"{self.crossed_user_id}|{self.day_key}|{self.address_key}"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> CrossedPathRow:
        return cls(
            user_id=str(raw["user_id"]),
            crossed_user_id=str(raw["crossed_user_id"]),
            address_label=str(raw.get("address_label") or ""),
            address_key=str(raw["address_key"]),
            day_key=str(raw["day_key"]),
            seen_at=str(raw["seen_at"]),
        )


@dataclass(frozen=True, slots=True)
class CrossedPathProfile:
    """A co-located profile as seen in a location-aware feed."""

    id: str
    username: str | None = None
    full_name: str | None = None
    avatar_url: str | None = None
    is_verified: bool | None = None

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> CrossedPathProfile:
        verified = raw.get("is_verified")
        return cls(
            id=str(raw["id"]),
            username=_str_or_none(raw.get("username")),
            full_name=_str_or_none(raw.get("full_name")),
            avatar_url=_str_or_none(raw.get("avatar_url")),
            is_verified=None if verified is None else bool(verified),
        )


@dataclass(frozen=True, slots=True)
class CrossedPathGroup:
    """One (day, place) bucket of the viewer's history."""

    day_key: str
    place_key: str
    address_label: str | None
    last_seen: str

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> CrossedPathGroup:
        return cls(
            day_key=str(raw["day_key"]),
            place_key=str(raw["place_key"]),
            address_label=_str_or_none(raw.get("address_label")),
            last_seen=str(raw["last_seen"]),
        )


@dataclass(frozen=True, slots=True)
class PeopleCursor:
    """Position after the last row of a page.

    The four fields together give a strict total order; ``user_id`` is the
    final tie-breaker.
    """

    intent: int
    match: float
    seen_at: str
    user_id: str


@dataclass(frozen=True, slots=True)
class CrossedPathPerson:
    """A person row inside one group, with its pagination cursor fields."""

    user_id: str
    username: str | None
    full_name: str | None
    avatar_url: str | None
    is_verified: bool
    relationship_goals: list[str] | None
    match_percent: float
    same_intent: bool
    last_seen: str
    cursor_intent: int
    cursor_match: float
    cursor_seen_at: str
    cursor_user_id: str

    @property
    def cursor(self) -> PeopleCursor:
        return PeopleCursor(
            intent=self.cursor_intent,
            match=self.cursor_match,
            seen_at=self.cursor_seen_at,
            user_id=self.cursor_user_id,
        )

    def order_key(self) -> tuple[int, float, str, str]:
        return (self.cursor_intent, self.cursor_match, self.cursor_seen_at, self.cursor_user_id)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> CrossedPathPerson:
        goals = raw.get("relationship_goals")
        return cls(
            user_id=str(raw["user_id"]),
            username=_str_or_none(raw.get("username")),
            full_name=_str_or_none(raw.get("full_name")),
            avatar_url=_str_or_none(raw.get("avatar_url")),
            is_verified=bool(raw.get("is_verified") or False),
            relationship_goals=[str(g) for g in goals] if goals is not None else None,
            match_percent=float(raw.get("match_percent") or 0),
            same_intent=bool(raw.get("same_intent") or False),
            last_seen=str(raw["last_seen"]),
            cursor_intent=int(raw["cursor_intent"]),
            cursor_match=float(raw["cursor_match"]),
            cursor_seen_at=str(raw["cursor_seen_at"]),
            cursor_user_id=str(raw["cursor_user_id"]),
        )


@dataclass(frozen=True, slots=True)
class PeoplePage:
    """A page of people plus the cursor to continue from."""

    people: list[CrossedPathPerson]
    next_cursor: PeopleCursor | None
    has_more: bool


@dataclass(slots=True)
class HistoryGroup:
    """Legacy history bucket: who the viewer crossed at one labelled place on one day."""

    key: str
    day_key: str
    address_label: str | None
    profiles: list[CrossedPathProfile] = field(default_factory=list)

    @property
    def crossed_user_ids(self) -> list[str]:
        return [p.id for p in self.profiles]


# None means the device's own timezone.
DEFAULT_TZ: Final[str | None] = None
