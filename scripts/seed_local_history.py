from __future__ import annotations

import argparse
import asyncio
import random
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path

from crossed_paths.labels import format_address_label
from crossed_paths.models import Coordinate, CrossedPathProfile, GeocodedAddress
from crossed_paths.remote import OfflineStore
from crossed_paths.service import CrossedPaths
from crossed_paths.storage import JsonFileStorage


@dataclass(frozen=True, slots=True)
class Place:
    address: GeocodedAddress
    lat: float
    lon: float


PLACES = [
    Place(GeocodedAddress(street_number="742", street="Evergreen Terrace", city="Springfield"), 39.7817, -89.6501),
    Place(GeocodedAddress(name="Moe's Tavern", city="Springfield", region="IL"), 39.7990, -89.6440),
    Place(GeocodedAddress(street_number="1313", street="Mockingbird Lane", city="Mockingbird Heights"), 34.0522, -118.2437),
    Place(GeocodedAddress(name="Central Perk", city="New York", region="NY"), 40.7265, -73.9815),
]


async def seed(*, out: str, user: str, days: int, people: int, seed: int) -> tuple[int, int]:
    """Write fake visits/edges for ``user`` into the local cache (privacy-safe demo data)."""

    rng = random.Random(seed)
    now = datetime.now(UTC)
    storage = JsonFileStorage(out)
    service = CrossedPaths(OfflineStore(), storage, clock=lambda: now)
    others = [f"user-{i:03d}" for i in range(people)]

    visits = 0
    edges = 0
    for d in range(days):
        day = now - timedelta(days=d, hours=rng.uniform(0, 6))
        for place in rng.sample(PLACES, k=rng.randint(1, len(PLACES))):
            label = format_address_label(place.address)
            loc = Coordinate(place.lat + rng.uniform(-0.00002, 0.00002), place.lon)
            await service.record_visit(user, label, place.address, loc, seen_at=day)
            visits += 1
            crowd = [CrossedPathProfile(id=u) for u in rng.sample(others, k=rng.randint(0, min(6, people)))]
            await service.record_crossed_paths(user, label, crowd, place.address, loc, seen_at=day)
            edges += len(crowd)

    await storage.flush()
    return visits, edges


def main() -> int:
    p = argparse.ArgumentParser(description="Seed a local crossed-paths cache with fake history (demo/testing).")
    p.add_argument("--out", type=str, default="sample_data/crossed_paths_cache.json", help="Cache file path")
    p.add_argument("--user", type=str, default="u1", help="Viewer user id")
    p.add_argument("--days", type=int, default=10, help="How many days back (older than 7 are pruned)")
    p.add_argument("--people", type=int, default=20, help="Size of the fake population")
    p.add_argument("--seed", type=int, default=42, help="Random seed (reproducible)")
    args = p.parse_args()

    Path(args.out).parent.mkdir(parents=True, exist_ok=True)
    visits, edges = asyncio.run(seed(out=args.out, user=args.user, days=args.days, people=args.people, seed=args.seed))
    print(f"Seeded: {args.out} (visit writes={visits}, edge candidates={edges}, seed={args.seed})")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
