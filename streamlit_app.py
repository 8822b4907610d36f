from __future__ import annotations

import asyncio
from collections import Counter
from pathlib import Path

import streamlit as st

from crossed_paths.config import DEFAULT_STORAGE_PATH
from crossed_paths.labels import format_address_label
from crossed_paths.models import CrossedPathRow, GeocodedAddress, HistoryGroup, VisitRow
from crossed_paths.placekey import compute_place_key
from crossed_paths.remote import OfflineStore
from crossed_paths.service import CrossedPaths
from crossed_paths.storage import JsonFileStorage


async def _load(storage_path: str, user_id: str) -> tuple[list[VisitRow], list[CrossedPathRow], list[HistoryGroup]]:
    service = CrossedPaths(OfflineStore(), JsonFileStorage(storage_path))
    visits = await service.fetch_local_visits(user_id)
    edges = await service.fetch_crossed_paths(user_id)
    history = await service.load_history(user_id)
    return visits, edges, history


@st.cache_data(show_spinner=False)
def _load_cached(
    storage_path: str, user_id: str, mtime: float
) -> tuple[list[VisitRow], list[CrossedPathRow], list[HistoryGroup]]:
    _ = mtime  # part of cache key so updated files reload automatically
    return asyncio.run(_load(storage_path, user_id))


def _mtime(storage_path: str) -> float:
    p = Path(storage_path)
    journal = p.with_name(f"{p.stem}.journal.jsonl")
    return max((f.stat().st_mtime for f in (p, journal) if f.exists()), default=0.0)


def _label_playground() -> None:
    st.subheader("Label & place key")
    c1, c2, c3 = st.columns(3)
    name = c1.text_input("name", value="")
    street_number = c2.text_input("street number", value="742")
    street = c3.text_input("street", value="Evergreen Terrace")
    c4, c5, c6 = st.columns(3)
    city = c4.text_input("city", value="Springfield")
    region = c5.text_input("region", value="")
    postal_code = c6.text_input("postal code", value="")
    address = GeocodedAddress(
        name=name, street_number=street_number, street=street, postal_code=postal_code, city=city, region=region
    )
    label = format_address_label(address)
    if label is None:
        st.warning("No usable label for this address; a visit would not be recorded.")
        return
    st.metric("Display label", label)
    st.code(compute_place_key(label, address), language=None)


def main() -> None:
    st.set_page_config(page_title="Crossed Paths: local history", layout="wide")
    st.title("Crossed Paths: local fallback history")

    with st.sidebar:
        st.subheader("Data")
        storage_path = st.text_input("Local cache file", value=DEFAULT_STORAGE_PATH)
        user_id = st.text_input("User id", value="")

    if not user_id.strip():
        st.info("Enter a user id in the sidebar to load their history.")
        _label_playground()
        return

    p = Path(storage_path)
    if not p.exists() and not p.with_name(f"{p.stem}.journal.jsonl").exists():
        st.error(f"File not found: {storage_path!r}")
        return

    try:
        visits, edges, history = _load_cached(storage_path, user_id.strip(), _mtime(storage_path))
    except Exception as exc:
        st.exception(exc)
        return

    st.subheader("Summary (last 7 days)")
    c1, c2, c3 = st.columns(3)
    c1.metric("Visits", str(len(visits)))
    c2.metric("Crossed paths", str(len(edges)))
    c3.metric("Groups", str(len(history)))

    per_day = Counter(v.day_key for v in visits)
    if per_day:
        st.subheader("Visits per day")
        st.bar_chart([{"day": d, "visits": per_day[d]} for d in sorted(per_day)], x="day", y="visits")

    st.subheader("Grouped history")
    for g in history:
        with st.expander(f"{g.day_key} · {g.address_label or '(unknown place)'} · {len(g.crossed_user_ids)} people"):
            st.write(", ".join(p.username or p.full_name or p.id for p in g.profiles))

    with st.expander("Visits", expanded=False):
        st.dataframe([v.to_dict() for v in visits], use_container_width=True, height=360)
    with st.expander("Crossed-path edges", expanded=False):
        st.dataframe([e.to_dict() for e in edges], use_container_width=True, height=360)

    _label_playground()
    st.caption("Reads the on-device fallback cache only; rows older than 7 days are hidden.")


if __name__ == "__main__":
    main()
