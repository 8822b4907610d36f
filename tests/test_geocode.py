from __future__ import annotations

import json
from pathlib import Path

from crossed_paths import geocode
from crossed_paths.geocode import NominatimConfig, NominatimReverseGeocoder, address_from_nominatim
from crossed_paths.labels import format_address_label
from crossed_paths.models import Coordinate
from crossed_paths.storage import JsonDiskCache

RAW = {
    "name": "",
    "address": {
        "house_number": "742",
        "road": "Evergreen Terrace",
        "town": "Springfield",
        "state": "Illinois",
        "postcode": "62701",
        "country": "United States",
    },
}


def test_address_mapping():
    a = address_from_nominatim(RAW)
    assert (a.street_number, a.street, a.city, a.region, a.postal_code) == (
        "742",
        "Evergreen Terrace",
        "Springfield",
        "Illinois",
        "62701",
    )
    assert format_address_label(a) == "Evergreen Terrace (700 block) • Springfield, Illinois"


def test_reverse_uses_disk_cache(tmp_path: Path, monkeypatch):
    calls = []

    def fake_raw(lat, lon, cfg):
        calls.append((lat, lon))
        return RAW

    monkeypatch.setattr(geocode, "nominatim_reverse_raw", fake_raw)
    cache = JsonDiskCache(tmp_path / "geo.json")
    geocoder = NominatimReverseGeocoder(NominatimConfig(min_interval_seconds=0.0), cache=cache)

    first = geocoder.reverse(Coordinate(39.78171, -89.65012))
    second = geocoder.reverse(Coordinate(39.78169, -89.65008))
    assert first == second
    assert len(calls) == 1
    assert json.loads(cache.get("39.7817,-89.6501"))["address"]["road"] == "Evergreen Terrace"
