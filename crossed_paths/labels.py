"""Privacy-redacted display labels for reverse-geocoded addresses."""

from __future__ import annotations

import re
from typing import Final

from crossed_paths.models import GeocodedAddress

_ALL_DIGITS_RE: Final = re.compile(r"^\d+$")
_HAS_DIGIT_RE: Final = re.compile(r"\d")
_LEADING_INT_RE: Final = re.compile(r"^\s*\d+")

SEPARATOR: Final[str] = " • "


def _looks_like_address_line(name: str) -> bool:
    # Geocoders sometimes return "742" or "742 Evergreen Terrace" as the name.
    if not name:
        return True
    if _ALL_DIGITS_RE.match(name):
        return True
    return bool(_HAS_DIGIT_RE.search(name)) and (" " in name or "," in name)


def _parse_leading_int(text: str) -> int | None:
    m = _LEADING_INT_RE.match(text)
    if m is None:
        return None
    return int(m.group(0))


def block_label(street: str, street_number: str) -> str:
    """Render ``"{street} ({block} block)"``, or the bare street if the number is unusable."""

    n = _parse_leading_int(street_number)
    if n is None:
        return street
    block = (n // 100) * 100
    return f"{street} ({block} block)"


def format_address_label(address: GeocodedAddress | None) -> str | None:
    """Format a display label that never reveals the exact street number.

    Prefers a real venue name. Otherwise synthesizes ``"street (N00 block)"``,
    then falls back to the city.

    Args:
        address: Reverse-geocoded address, or None.

    Returns:
        ``"primary • city, region"`` (city omitted when it is the primary),
        or None if nothing usable was derived.
    """

    if address is None:
        return None

    name = address.name.strip()
    street_number = address.street_number.strip()
    street = address.street.strip()
    city = address.city.strip()
    region = address.region.strip()

    if not _looks_like_address_line(name):
        primary = name
    elif street_number and street:
        primary = block_label(street, street_number)
    elif street:
        primary = street
    else:
        primary = city

    secondary = ", ".join(p for p in (city if primary != city else "", region) if p)
    label = SEPARATOR.join(p for p in (primary, secondary) if p).strip()
    return label or None
