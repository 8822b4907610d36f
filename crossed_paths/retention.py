"""Retention and de-duplication for the on-device fallback lists.

Rows older than ``now - 7 days`` are dropped both when the lists are read
and when they are rewritten. This is a soft policy for the local cache only.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Iterable, Sequence

from crossed_paths.models import RETENTION_DAYS, CrossedPathRow, VisitRow
from crossed_paths.timeutils import is_within_retention

logger = logging.getLogger(__name__)


def _parse_rows(raw_rows: Iterable[Any], factory: Any) -> list[Any]:
    out = []
    for raw in raw_rows:
        if not isinstance(raw, dict):
            continue
        try:
            out.append(factory(raw))
        except (KeyError, TypeError, ValueError):
            # broken entries are skipped, not fatal
            continue
    return out


def parse_visits(raw_rows: Iterable[Any]) -> list[VisitRow]:
    return _parse_rows(raw_rows, VisitRow.from_dict)


def parse_edges(raw_rows: Iterable[Any]) -> list[CrossedPathRow]:
    return _parse_rows(raw_rows, CrossedPathRow.from_dict)


def prune_visits(rows: Iterable[VisitRow], now: datetime, days: int = RETENTION_DAYS) -> list[VisitRow]:
    return [r for r in rows if is_within_retention(r.seen_at, now, days)]


def prune_edges(
    rows: Iterable[CrossedPathRow], now: datetime, days: int = RETENTION_DAYS
) -> list[CrossedPathRow]:
    return [r for r in rows if is_within_retention(r.seen_at, now, days)]


def upsert_visit(rows: list[VisitRow], visit: VisitRow) -> list[VisitRow]:
    """Insert ``visit`` or update the row with the same (user, day, place) signature in place."""

    sig = visit.signature()
    found = False
    for r in rows:
        if r.signature() == sig:
            r.seen_at = visit.seen_at
            r.address_label = visit.address_label
            found = True
    if not found:
        rows.append(visit)
    return rows


def merge_edges(rows: list[CrossedPathRow], new_rows: Sequence[CrossedPathRow]) -> list[CrossedPathRow]:
    """Append edges whose (crossed user, day, place) signature is not present yet."""

    sig = {r.signature() for r in rows}
    added = 0
    for r in new_rows:
        k = r.signature()
        if k in sig:
            continue
        rows.append(r)
        sig.add(k)
        added += 1
    logger.debug("Merged %s of %s edge rows into local cache", added, len(new_rows))
    return rows
