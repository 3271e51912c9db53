"""Tests for offset-based change tracking over found_items."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
import sqlalchemy as sa
from sqlalchemy.exc import OperationalError

from lostfound.errors import RecordStoreUnavailable
from lostfound.store import sql as sql_schema
from lostfound.store.change_tracker import ChangeTracker
from lostfound.store.enrichment_store import EnrichmentStore
from lostfound.store.found_item_store import FoundItemStore
from lostfound.store.schema import ParsedDetails


def _seed(session_factory, *filenames):
    store = FoundItemStore(session_factory=session_factory)
    found_time = datetime(2025, 3, 1, 9, 30, tzinfo=timezone.utc)
    return [store.insert(filename=name, location="T1, G1", found_time=found_time) for name in filenames]


def test_poll_returns_rows_after_offset_in_insertion_order(session_factory):
    items = _seed(session_factory, "a.jpg", "b.jpg", "c.jpg")
    tracker = ChangeTracker(session_factory=session_factory)

    batch = tracker.poll(0)
    assert [item.filename for item in batch.items] == ["a.jpg", "b.jpg", "c.jpg"]
    assert batch.next_offset == items[-1].seq

    tail = tracker.poll(items[0].seq)
    assert [item.filename for item in tail.items] == ["b.jpg", "c.jpg"]

    limited = tracker.poll(0, limit=2)
    assert [item.filename for item in limited.items] == ["a.jpg", "b.jpg"]
    assert limited.next_offset == items[1].seq


def test_empty_poll_keeps_offset(session_factory):
    tracker = ChangeTracker(session_factory=session_factory)
    batch = tracker.poll(7)
    assert batch.items == []
    assert batch.next_offset == 7


def test_checkpoint_only_moves_forward(session_factory):
    tracker = ChangeTracker(session_factory=session_factory)

    assert tracker.load_checkpoint("enrichment") == 0
    assert tracker.commit_checkpoint("enrichment", 5) is True
    assert tracker.load_checkpoint("enrichment") == 5

    assert tracker.commit_checkpoint("enrichment", 3) is False
    assert tracker.commit_checkpoint("enrichment", 5) is False
    assert tracker.load_checkpoint("enrichment") == 5

    assert tracker.commit_checkpoint("enrichment", 9) is True
    assert tracker.load_checkpoint("enrichment") == 9
    assert tracker.load_checkpoint("other-consumer") == 0


def test_has_pending_is_level_triggered(session_factory):
    tracker = ChangeTracker(session_factory=session_factory)
    assert tracker.has_pending("enrichment") is False

    items = _seed(session_factory, "a.jpg", "b.jpg")
    assert tracker.has_pending("enrichment") is True
    assert tracker.has_pending("enrichment") is True
    assert tracker.pending_count("enrichment") == 2

    tracker.commit_checkpoint("enrichment", items[0].seq)
    assert tracker.pending_count("enrichment") == 1

    tracker.commit_checkpoint("enrichment", items[1].seq)
    assert tracker.has_pending("enrichment") is False


def test_each_record_surfaces_once_across_restarts(session_factory):
    _seed(session_factory, "a.jpg", "b.jpg", "c.jpg")
    seen = []
    for _ in range(3):
        # Fresh tracker per iteration simulates a restarted worker process.
        tracker = ChangeTracker(session_factory=session_factory)
        offset = tracker.load_checkpoint("enrichment")
        batch = tracker.poll(offset, limit=2)
        seen.extend(item.filename for item in batch.items)
        tracker.commit_checkpoint("enrichment", batch.next_offset)

    assert seen == ["a.jpg", "b.jpg", "c.jpg"]


def test_store_failure_surfaces_as_record_store_unavailable():
    class _BrokenSession:
        def execute(self, *_args, **_kwargs):
            raise OperationalError("SELECT 1", {}, Exception("database is locked"))

        def rollback(self):
            pass

        def close(self):
            pass

        def commit(self):
            pass

    tracker = ChangeTracker(session_factory=_BrokenSession)
    with pytest.raises(RecordStoreUnavailable):
        tracker.poll(0)


def test_stragglers_surface_rows_committed_below_the_checkpoint(session_factory, engine):
    tracker = ChangeTracker(session_factory=session_factory)
    enrichment = EnrichmentStore(session_factory=session_factory)
    found_time = datetime(2025, 3, 1, 9, 30, tzinfo=timezone.utc)

    def insert(seq, filename):
        with engine.begin() as conn:
            conn.execute(
                sa.insert(sql_schema.found_items).values(
                    seq=seq, filename=filename, location="T1, G1", found_time=found_time
                )
            )

    insert(6, "f.jpg")
    [item] = tracker.poll(0).items
    enrichment.commit_enrichment(item, classification="wallet", details=ParsedDetails(fields={}))
    tracker.commit_checkpoint("enrichment", 6)
    assert tracker.stragglers(6) == []

    # Allocated before seq 6, visible only after the checkpoint moved past it.
    insert(5, "e.jpg")

    assert tracker.poll(6).items == []
    assert [late.filename for late in tracker.stragglers(6)] == ["e.jpg"]
    assert tracker.straggler_count(6) == 1

    enrichment.quarantine("e.jpg", reason="resolution failed")
    assert tracker.stragglers(6) == []
    assert tracker.straggler_count(6) == 0
