"""Tests for loading found items."""

from __future__ import annotations

from datetime import datetime, timezone

import sqlalchemy as sa

from lostfound.store import sql as sql_schema
from lostfound.store.found_item_store import FoundItemStore


def test_bulk_load_matches_columns_case_insensitively(session_factory, engine):
    store = FoundItemStore(session_factory=session_factory)
    result = store.bulk_load(
        [
            {"FILENAME": "img001.jpg", "Location": "T2, G14", "FOUND_TIME": "2025-03-01T08:00:00Z", "extra": 1},
            {"filename": "img002.jpg", "location": "T1, G3", "found_time": "2025-03-02T10:15:00+00:00"},
        ]
    )

    assert result.inserted == 2
    assert result.skipped == 0
    assert result.rejected == 0

    item = store.get("img001.jpg")
    assert item is not None
    assert item.location == "T2, G14"
    assert item.found_time == datetime(2025, 3, 1, 8, 0, tzinfo=timezone.utc)

    with engine.connect() as conn:
        seqs = conn.execute(sa.select(sql_schema.found_items.c.seq).order_by(sql_schema.found_items.c.seq)).scalars().all()
    assert len(seqs) == 2
    assert seqs[0] < seqs[1]


def test_bulk_load_skips_known_filenames_and_rejects_bad_rows(session_factory):
    store = FoundItemStore(session_factory=session_factory)
    store.insert(filename="img001.jpg", location="T2, G14", found_time="2025-03-01T08:00:00Z")

    result = store.bulk_load(
        [
            {"filename": "img001.jpg", "location": "T2, G14", "found_time": "2025-03-01T08:00:00Z"},
            {"filename": "img003.jpg", "location": "T2, G14", "found_time": "2025-03-01T08:00:00Z"},
            {"filename": "img003.jpg", "location": "T2, G14", "found_time": "2025-03-01T08:00:00Z"},
            {"location": "T9, G9"},
            {"filename": "img004.jpg", "found_time": "not-a-date"},
        ]
    )

    assert result.inserted == 1
    assert result.skipped == 2
    assert result.rejected == 2
    assert len(result.errors) == 2
    assert store.exists("img003.jpg")
    assert not store.exists("img004.jpg")
