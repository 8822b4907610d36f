"""Day keys, ISO timestamps and the rolling retention window."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta, tzinfo

from zoneinfo import ZoneInfo

from crossed_paths.models import RETENTION_DAYS


def tzinfo_from_name(tz_name: str) -> tzinfo:
    """Create tzinfo from an IANA timezone name.

    Raises:
        ValueError: If timezone name is invalid on this system.
    """

    try:
        return ZoneInfo(tz_name)
    except Exception as exc:  # ZoneInfo raises KeyError / ZoneInfoNotFoundError (platform dependent)
        raise ValueError(f"Invalid timezone: {tz_name!r}. Example: Europe/Berlin") from exc


def utc_now() -> datetime:
    return datetime.now(UTC)


def day_key_local(dt: datetime, tz_name: str | None = None) -> str:
    """Return the local calendar date of ``dt`` as ``YYYY-MM-DD``.

    Args:
        dt: Moment of the visit. Naive values are taken as local wall time.
        tz_name: IANA zone to use instead of the device zone.

    Returns:
        Day key string.
    """

    if tz_name is not None:
        if dt.tzinfo is None:
            dt = dt.astimezone()
        local = dt.astimezone(tzinfo_from_name(tz_name))
    elif dt.tzinfo is None:
        local = dt
    else:
        local = dt.astimezone()
    return f"{local.year:04d}-{local.month:02d}-{local.day:02d}"


def to_iso(dt: datetime) -> str:
    """Render as UTC ISO-8601 with millisecond precision and a ``Z`` suffix."""

    if dt.tzinfo is None:
        dt = dt.astimezone()
    utc = dt.astimezone(UTC)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"


def parse_iso(text: str) -> datetime:
    """Parse an ISO-8601 timestamp into an aware datetime.

    Naive strings are assumed to be UTC.

    Raises:
        ValueError: If cannot parse.
    """

    s = text.strip()
    if s.endswith("Z") or s.endswith("z"):
        s = s[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(s)
    except ValueError as exc:
        raise ValueError(f"Cannot parse timestamp: {text!r}") from exc
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


def retention_cutoff(now: datetime, days: int = RETENTION_DAYS) -> datetime:
    """Oldest ``seen_at`` still inside the rolling window."""

    if now.tzinfo is None:
        now = now.astimezone()
    return now - timedelta(days=days)


def is_within_retention(seen_at: str, now: datetime, days: int = RETENTION_DAYS) -> bool:
    """True if ``seen_at`` is not older than ``now - days``.

    Unparseable timestamps count as expired.
    """

    try:
        ts = parse_iso(seen_at)
    except ValueError:
        return False
    return ts >= retention_cutoff(now, days)
