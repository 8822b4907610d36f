"""CSV export of the (retention-filtered) history for manual inspection."""

from __future__ import annotations

import csv
import logging
from pathlib import Path
from typing import Iterator, Sequence

from crossed_paths.models import CrossedPathRow, VisitRow

logger = logging.getLogger(__name__)

VISIT_FIELDS = ["user_id", "day_key", "place_key", "seen_at", "address_label"]
EDGE_FIELDS = ["user_id", "crossed_user_id", "day_key", "address_key", "seen_at", "address_label"]


def write_visits_csv(rows: Sequence[VisitRow], out_path: str | Path) -> None:
    p = Path(out_path)
    with p.open("w", encoding="utf-8", newline="") as f:
        w = csv.DictWriter(f, fieldnames=VISIT_FIELDS)
        w.writeheader()
        for r in rows:
            w.writerow({k: getattr(r, k) or "" for k in VISIT_FIELDS})


def write_edges_csv(rows: Sequence[CrossedPathRow], out_path: str | Path) -> None:
    p = Path(out_path)
    with p.open("w", encoding="utf-8", newline="") as f:
        w = csv.DictWriter(f, fieldnames=EDGE_FIELDS)
        w.writeheader()
        for r in rows:
            w.writerow({k: getattr(r, k) for k in EDGE_FIELDS})


def iter_visits_from_csv(csv_path: str | Path) -> Iterator[VisitRow]:
    """Read a visits CSV (possibly hand-edited) back into VisitRow objects.

    Rows missing a required column are skipped.
    """

    p = Path(csv_path)
    skipped = 0
    with p.open("r", encoding="utf-8", newline="") as f:
        reader = csv.DictReader(f)
        for row in reader:
            if not all(row.get(k) for k in ("user_id", "day_key", "place_key", "seen_at")):
                skipped += 1
                continue
            yield VisitRow(
                user_id=row["user_id"],
                place_key=row["place_key"],
                day_key=row["day_key"],
                seen_at=row["seen_at"],
                address_label=row.get("address_label") or None,
            )
    if skipped:
        logger.warning("Skipped %s incomplete rows in %s", skipped, p)
