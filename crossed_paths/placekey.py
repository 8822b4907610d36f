"""Place fingerprints: a stable, non-reversible key for a physical place.

The key is derived either from the numbered street address or, for named
venues, from the venue name plus a coordinate snapped to 4 decimals.
Only the hash is ever persisted, never the coordinate itself.
"""

from __future__ import annotations

import math
import re
from decimal import ROUND_HALF_UP, Decimal
from typing import Final

from crossed_paths.models import Coordinate, GeocodedAddress

_WS_RE: Final = re.compile(r"\s+")
_DIGITS_RE: Final = re.compile(r"^\d+$")

# 4 decimals ~ 11m of latitude
GEO_PRECISION: Final[int] = 4


def normalize_key(text: str) -> str:
    """Case-fold, collapse internal whitespace and trim."""

    return _WS_RE.sub(" ", text.lower()).strip()


def hash_key(text: str) -> str:
    """djb2 over the normalized text, rendered as ``h`` + lowercase hex.

    Iterates UTF-16 code units with 32-bit wraparound so the same input
    gives the same key as the mobile clients writing to the same table.
    """

    s = normalize_key(text)
    units = s.encode("utf-16-le")
    h = 5381
    for i in range(0, len(units), 2):
        unit = units[i] | (units[i + 1] << 8)
        h = ((h << 5) + h + unit) & 0xFFFFFFFF
    return f"h{h:x}"


def coord_key(coord: Coordinate | None, precision: int = GEO_PRECISION) -> str:
    """Snap a coordinate to ``lat,long`` with fixed decimals, or ``nogeo``."""

    if coord is None:
        return "nogeo"
    try:
        lat = float(coord.lat)
        lon = float(coord.long)
    except (TypeError, ValueError):
        return "nogeo"
    if not (math.isfinite(lat) and math.isfinite(lon)):
        return "nogeo"
    return f"{_to_fixed(lat, precision)},{_to_fixed(lon, precision)}"


def _to_fixed(value: float, precision: int) -> str:
    # Same digits as JS Number.prototype.toFixed: exact binary value, ties away from zero
    digits = Decimal(abs(value)).quantize(Decimal(1).scaleb(-precision), rounding=ROUND_HALF_UP)
    sign = "-" if value < 0 else ""
    return f"{sign}{digits}"


def place_key_input(
    address_label: str,
    address: GeocodedAddress | None = None,
    location: Coordinate | None = None,
) -> str:
    """Build the canonical (pre-hash) place identity string.

    Args:
        address_label: The redacted display label, used when no venue name exists.
        address: Reverse-geocoded address, if any.
        location: Device coordinate, if any.

    Returns:
        ``streetNumber street|postal|city|region|country`` for numbered addresses,
        otherwise ``venue|postal|city|region|country|lat,long`` (or ``nogeo``).
    """

    a = address or GeocodedAddress()
    name = a.name.strip()
    street_number = a.street_number.strip()
    street = a.street.strip()
    postal_code = a.postal_code.strip()
    city = a.city.strip()
    region = a.region.strip()
    country = a.country.strip()

    if street_number and street:
        street_line = f"{street_number} {street}".strip()
        return f"{street_line}|{postal_code}|{city}|{region}|{country}"

    # Snapped geo keeps same-named venues in different towns apart.
    geo = coord_key(location)
    safe_name = name if name and not _DIGITS_RE.match(name) else address_label
    return f"{safe_name}|{postal_code}|{city}|{region}|{country}|{geo}"


def compute_place_key(
    address_label: str,
    address: GeocodedAddress | None = None,
    location: Coordinate | None = None,
) -> str:
    """Return the PlaceKey for a place."""

    return hash_key(place_key_input(address_label, address, location))
