"""Reverse geocoding (lat/lon -> GeocodedAddress) via OpenStreetMap Nominatim.

Important:
    - Public reverse-geocoding services are rate-limited. Respect the
      Nominatim usage policy: keep a request interval and set a descriptive
      User-Agent.
    - Results are cached on disk keyed by the coordinate snapped to 4
      decimals; the cache stays on the device and is never uploaded.
"""

from __future__ import annotations

import json
import logging
import time
import urllib.parse
import urllib.request
from dataclasses import dataclass
from typing import Any, Mapping

from crossed_paths.models import Coordinate, GeocodedAddress
from crossed_paths.placekey import coord_key
from crossed_paths.storage import JsonDiskCache

logger = logging.getLogger(__name__)

_CITY_FIELDS = ("city", "town", "village", "hamlet", "municipality", "suburb")
_VENUE_FIELDS = ("amenity", "shop", "tourism", "leisure", "building", "office")


@dataclass(frozen=True, slots=True)
class NominatimConfig:
    """Configuration for Nominatim reverse API."""

    base_url: str = "https://nominatim.openstreetmap.org/reverse"
    accept_language: str = "en"
    zoom: int = 18
    addressdetails: int = 1
    timeout_seconds: float = 20.0
    min_interval_seconds: float = 1.0
    user_agent: str = "crossed-paths/0.1.0 (reverse-geocode; please set your own UA)"


def address_from_nominatim(raw: Mapping[str, Any]) -> GeocodedAddress:
    """Map a Nominatim ``jsonv2`` response with ``addressdetails`` to a GeocodedAddress."""

    details = raw.get("address") or {}

    def first(fields: tuple[str, ...]) -> str:
        for f in fields:
            v = str(details.get(f, "") or "").strip()
            if v:
                return v
        return ""

    name = str(raw.get("name", "") or "").strip() or first(_VENUE_FIELDS)
    return GeocodedAddress(
        name=name,
        street_number=str(details.get("house_number", "") or "").strip(),
        street=first(("road", "pedestrian", "footway", "path")),
        postal_code=str(details.get("postcode", "") or "").strip(),
        city=first(_CITY_FIELDS),
        region=first(("state", "region", "county")),
        country=str(details.get("country", "") or "").strip(),
    )


def nominatim_reverse_raw(lat: float, lon: float, cfg: NominatimConfig) -> dict[str, Any] | None:
    """Call Nominatim reverse API and return the raw JSON dict, or None on failure."""

    params = {
        "format": "jsonv2",
        "lat": f"{lat:.8f}",
        "lon": f"{lon:.8f}",
        "zoom": str(cfg.zoom),
        "addressdetails": str(cfg.addressdetails),
        "accept-language": cfg.accept_language,
    }
    url = f"{cfg.base_url}?{urllib.parse.urlencode(params)}"
    req = urllib.request.Request(
        url,
        headers={
            "User-Agent": cfg.user_agent,
            "Accept": "application/json",
        },
        method="GET",
    )
    try:
        with urllib.request.urlopen(req, timeout=cfg.timeout_seconds) as resp:  # noqa: S310
            body = resp.read().decode("utf-8", errors="replace")
        raw = json.loads(body)
    except Exception:
        logger.debug("Reverse geocode failed", exc_info=True)
        return None
    if not isinstance(raw, dict) or "error" in raw:
        return None
    return raw


class NominatimReverseGeocoder:
    """Reverse geocoder using OpenStreetMap Nominatim."""

    def __init__(self, config: NominatimConfig, cache: JsonDiskCache | None = None) -> None:
        self._cfg = config
        self._cache = cache
        self._last_request_at = 0.0

    def reverse(self, location: Coordinate) -> GeocodedAddress | None:
        """Reverse geocode one coordinate (blocking).

        Returns:
            GeocodedAddress, or None if the request failed.
        """

        key = coord_key(location)
        if key == "nogeo":
            return None
        if self._cache is not None:
            cached = self._cache.get(key)
            if cached is not None:
                try:
                    return address_from_nominatim(json.loads(cached))
                except (json.JSONDecodeError, AttributeError):
                    logger.debug("Ignoring broken geocode cache entry %s", key)

        self._sleep_if_needed()
        raw = nominatim_reverse_raw(location.lat, location.long, self._cfg)
        if raw is None:
            return None
        if self._cache is not None:
            self._cache.set(key, json.dumps(raw, ensure_ascii=False))
        return address_from_nominatim(raw)

    def _sleep_if_needed(self) -> None:
        now = time.time()
        wait = self._cfg.min_interval_seconds - (now - self._last_request_at)
        if wait > 0:
            time.sleep(wait)
        self._last_request_at = time.time()
