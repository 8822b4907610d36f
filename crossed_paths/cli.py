"""Command-line interface for crossed_paths.

Run:
    python -m crossed_paths label --street-number 742 --street "Evergreen Terrace" --city Springfield
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any

from crossed_paths.config import DEFAULT_STORAGE_PATH, RemoteConfig
from crossed_paths.csv_io import write_edges_csv, write_visits_csv
from crossed_paths.labels import format_address_label
from crossed_paths.models import (
    DEFAULT_PAGE_SIZE,
    DEFAULT_TZ,
    Coordinate,
    CrossedPathProfile,
    GeocodedAddress,
    PeopleCursor,
)
from crossed_paths.placekey import compute_place_key
from crossed_paths.remote import OfflineStore, PostgrestStore, RemoteStore
from crossed_paths.service import CrossedPaths
from crossed_paths.storage import JsonFileStorage
from crossed_paths.timeutils import parse_iso

logger = logging.getLogger(__name__)


def _address(args: argparse.Namespace) -> GeocodedAddress | None:
    fields = {
        "name": args.name,
        "street_number": args.street_number,
        "street": args.street,
        "postal_code": args.postal_code,
        "city": args.city,
        "region": args.region,
        "country": args.country,
    }
    if not any(v for v in fields.values()):
        return None
    return GeocodedAddress(**{k: (v or "").strip() for k, v in fields.items()})


def _location(args: argparse.Namespace) -> Coordinate | None:
    if args.lat is None or args.lon is None:
        return None
    return Coordinate(lat=args.lat, long=args.lon)


def _resolve_address(args: argparse.Namespace) -> GeocodedAddress | None:
    address = _address(args)
    location = _location(args)
    if address is None and location is not None and args.geocode:
        from crossed_paths.geocode import NominatimConfig, NominatimReverseGeocoder
        from crossed_paths.storage import JsonDiskCache

        cache = JsonDiskCache(args.geocode_cache)
        geocoder = NominatimReverseGeocoder(NominatimConfig(user_agent=args.geocode_user_agent), cache=cache)
        address = geocoder.reverse(location)
        cache.flush()
        if address is None:
            print("Reverse geocoding failed.", file=sys.stderr)
    return address


def _remote(args: argparse.Namespace) -> RemoteStore:
    cfg: RemoteConfig | None
    if args.url:
        cfg = RemoteConfig(base_url=args.url, api_key=args.api_key or "", access_token=args.access_token or "")
    else:
        cfg = RemoteConfig.from_env()
    if cfg is None:
        logger.info("No backend configured; using the local cache only")
        return OfflineStore()
    return PostgrestStore(cfg)


async def _with_service(args: argparse.Namespace, fn: Any) -> int:
    storage = JsonFileStorage(args.storage)
    service = CrossedPaths(_remote(args), storage, tz_name=args.tz)
    try:
        return int(await fn(service))
    finally:
        await storage.flush()


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2))


def _cmd_label(args: argparse.Namespace) -> int:
    label = format_address_label(_resolve_address(args))
    if label is None:
        print("No usable label for this address.", file=sys.stderr)
        return 1
    print(label)
    return 0


def _cmd_place_key(args: argparse.Namespace) -> int:
    address = _resolve_address(args)
    label = (args.label or "").strip() or format_address_label(address)
    if not label:
        print("A label is required (pass --label or address fields).", file=sys.stderr)
        return 1
    print(compute_place_key(label, address, _location(args)))
    return 0


def _cmd_record_visit(args: argparse.Namespace) -> int:
    address = _resolve_address(args)
    label = (args.label or "").strip() or format_address_label(address)
    if not label:
        print("Nothing recorded: no usable label for this place.", file=sys.stderr)
        return 1
    seen_at = parse_iso(args.seen_at) if args.seen_at else None
    location = _location(args)

    async def run(service: CrossedPaths) -> int:
        await service.record_visit(args.user, label, address, location, seen_at)
        if args.with_users:
            profiles = [CrossedPathProfile(id=u) for u in args.with_users]
            await service.record_crossed_paths(args.user, label, profiles, address, location, seen_at)
        print(f"{label}\t{compute_place_key(label, address, location)}")
        return 0

    return asyncio.run(_with_service(args, run))


def _cmd_history(args: argparse.Namespace) -> int:
    async def run(service: CrossedPaths) -> int:
        groups = await service.load_history(args.user)
        if args.json:
            _print_json([asdict(g) for g in groups])
            return 0
        if not groups:
            print("No crossed paths in the last 7 days.")
        for g in groups:
            print(f"{g.day_key}  {g.address_label or '(unknown place)'}  people={len(g.crossed_user_ids)}")
            for p in g.profiles:
                print(f"    {p.id}" + (f"  @{p.username}" if p.username else ""))
        return 0

    return asyncio.run(_with_service(args, run))


def _cmd_visits(args: argparse.Namespace) -> int:
    async def run(service: CrossedPaths) -> int:
        rows = await service.fetch_local_visits(args.user)
        if args.json:
            _print_json([r.to_dict() for r in rows])
            return 0
        for r in rows:
            print(f"{r.day_key}  {r.seen_at}  {r.place_key}  {r.address_label or ''}")
        return 0

    return asyncio.run(_with_service(args, run))


def _cmd_groups(args: argparse.Namespace) -> int:
    async def run(service: CrossedPaths) -> int:
        groups = await service.fetch_crossed_path_groups()
        if args.json:
            _print_json([asdict(g) for g in groups])
            return 0
        if not groups:
            print("No groups (backend routine unavailable or empty history).")
        for g in groups:
            print(f"{g.day_key}  {g.place_key}  {g.address_label or ''}  last_seen={g.last_seen}")
        return 0

    return asyncio.run(_with_service(args, run))


def _cmd_people(args: argparse.Namespace) -> int:
    cursor = None
    if args.cursor:
        try:
            cursor = PeopleCursor(**json.loads(args.cursor))
        except (json.JSONDecodeError, TypeError) as exc:
            print(f"Invalid --cursor: {exc}", file=sys.stderr)
            return 2

    async def run(service: CrossedPaths) -> int:
        if args.all:
            people = [p async for p in service.iter_people(args.day, args.place, args.limit)]
            next_cursor = None
        else:
            page = await service.fetch_people_page(args.day, args.place, args.limit, cursor)
            people = page.people
            next_cursor = page.next_cursor
        if args.json:
            _print_json(
                {
                    "people": [p.to_dict() for p in people],
                    "next_cursor": asdict(next_cursor) if next_cursor else None,
                }
            )
            return 0
        for p in people:
            name = p.username or p.full_name or p.user_id
            print(f"{name}  match={p.match_percent:g}%  same_intent={p.same_intent}  last_seen={p.last_seen}")
        if next_cursor is not None:
            print(f"more: --cursor '{json.dumps(asdict(next_cursor))}'", file=sys.stderr)
        return 0

    return asyncio.run(_with_service(args, run))


def _cmd_export(args: argparse.Namespace) -> int:
    async def run(service: CrossedPaths) -> int:
        visits = await service.fetch_local_visits(args.user)
        edges = await service.fetch_crossed_paths(args.user)
        write_visits_csv(visits, args.out_visits)
        write_edges_csv(edges, args.out_edges)
        print(f"Exported: {args.out_visits} ({len(visits)} visits), {args.out_edges} ({len(edges)} edges)")
        return 0

    return asyncio.run(_with_service(args, run))


def _add_address_args(p: argparse.ArgumentParser) -> None:
    g = p.add_argument_group("address")
    g.add_argument("--name", type=str, default="", help="Venue/place name from the geocoder")
    g.add_argument("--street-number", type=str, default="")
    g.add_argument("--street", type=str, default="")
    g.add_argument("--postal-code", type=str, default="")
    g.add_argument("--city", type=str, default="")
    g.add_argument("--region", type=str, default="")
    g.add_argument("--country", type=str, default="")
    g.add_argument("--lat", type=float, default=None)
    g.add_argument("--lon", type=float, default=None)
    g.add_argument("--geocode", action="store_true", help="Reverse geocode --lat/--lon via Nominatim")
    g.add_argument("--geocode-cache", type=str, default="geocode_cache.json", help="Reverse geocoding cache file")
    g.add_argument(
        "--geocode-user-agent",
        type=str,
        default="crossed-paths/0.1.0 (reverse-geocode; set your own UA)",
        help="HTTP User-Agent for Nominatim",
    )


def _add_backend_args(p: argparse.ArgumentParser) -> None:
    g = p.add_argument_group("backend")
    g.add_argument("--storage", type=str, default=DEFAULT_STORAGE_PATH, help="Local cache file")
    g.add_argument("--url", type=str, default=None, help="Backend base URL (else CROSSED_PATHS_URL)")
    g.add_argument("--api-key", type=str, default=None)
    g.add_argument("--access-token", type=str, default=None, help="User JWT for the routines")
    g.add_argument("--tz", type=str, default=DEFAULT_TZ, help="IANA timezone for day keys (default: device)")


def build_parser() -> argparse.ArgumentParser:
    """Build CLI parser."""

    p = argparse.ArgumentParser(prog="crossed_paths")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = p.add_subparsers(dest="cmd", required=True)

    p_label = sub.add_parser("label", help="Format the redacted display label of an address")
    _add_address_args(p_label)
    p_label.set_defaults(func=_cmd_label)

    p_key = sub.add_parser("place-key", help="Compute the place fingerprint")
    _add_address_args(p_key)
    p_key.add_argument("--label", type=str, default="", help="Display label (default: formatted)")
    p_key.set_defaults(func=_cmd_place_key)

    p_rec = sub.add_parser("record-visit", help="Record a visit (and optionally crossed users)")
    p_rec.add_argument("--user", type=str, required=True)
    _add_address_args(p_rec)
    _add_backend_args(p_rec)
    p_rec.add_argument("--label", type=str, default="", help="Display label (default: formatted)")
    p_rec.add_argument("--seen-at", type=str, default=None, help="ISO timestamp (default: now)")
    p_rec.add_argument(
        "--with", dest="with_users", action="append", default=[], help="Co-located user id (repeatable)"
    )
    p_rec.set_defaults(func=_cmd_record_visit)

    p_hist = sub.add_parser("history", help="Grouped crossed paths of the last 7 days")
    p_hist.add_argument("--user", type=str, required=True)
    _add_backend_args(p_hist)
    p_hist.add_argument("--json", action="store_true")
    p_hist.set_defaults(func=_cmd_history)

    p_vis = sub.add_parser("visits", help="Visits held in the local fallback cache")
    p_vis.add_argument("--user", type=str, required=True)
    _add_backend_args(p_vis)
    p_vis.add_argument("--json", action="store_true")
    p_vis.set_defaults(func=_cmd_visits)

    p_groups = sub.add_parser("groups", help="Day/place groups from the backend")
    _add_backend_args(p_groups)
    p_groups.add_argument("--json", action="store_true")
    p_groups.set_defaults(func=_cmd_groups)

    p_people = sub.add_parser("people", help="People in one day/place group")
    _add_backend_args(p_people)
    p_people.add_argument("--day", type=str, required=True, help="Day key YYYY-MM-DD")
    p_people.add_argument("--place", type=str, required=True, help="Place key")
    p_people.add_argument("--limit", type=int, default=DEFAULT_PAGE_SIZE)
    p_people.add_argument("--cursor", type=str, default=None, help="JSON cursor printed by a previous page")
    p_people.add_argument("--all", action="store_true", help="Follow cursors until exhausted")
    p_people.add_argument("--json", action="store_true")
    p_people.set_defaults(func=_cmd_people)

    p_exp = sub.add_parser("export", help="Export visits and crossed paths to CSV")
    p_exp.add_argument("--user", type=str, required=True)
    _add_backend_args(p_exp)
    p_exp.add_argument("--out-visits", type=str, default="visits.csv")
    p_exp.add_argument("--out-edges", type=str, default="crossed_paths.csv")
    p_exp.set_defaults(func=_cmd_export)

    return p


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint."""

    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if getattr(args, "storage", None):
        Path(args.storage).parent.mkdir(parents=True, exist_ok=True)
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
