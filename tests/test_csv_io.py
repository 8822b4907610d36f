from __future__ import annotations

from pathlib import Path

from crossed_paths.csv_io import iter_visits_from_csv, write_visits_csv
from crossed_paths.models import VisitRow


def test_hand_edited_visits_csv(tmp_path: Path):
    out = tmp_path / "visits.csv"
    write_visits_csv([VisitRow("u1", "habc", "2024-03-01", "2024-03-01T09:05:00.000Z", None)], out)
    with out.open("a", encoding="utf-8", newline="") as f:
        f.write("u1,2024-03-01,,2024-03-01T10:00:00.000Z,missing place\n")

    rows = list(iter_visits_from_csv(out))
    assert rows == [VisitRow("u1", "habc", "2024-03-01", "2024-03-01T09:05:00.000Z", None)]
