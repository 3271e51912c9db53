"""Tests for the ingest, enrich and match job entrypoints."""

from __future__ import annotations

import io
import json
import threading
from datetime import datetime, timezone
from unittest.mock import Mock

import pytest

from lostfound.errors import RecordStoreUnavailable
from lostfound.services.enrichment import EnrichmentRunSummary
from lostfound.store.found_item_store import FoundItemStore
from lostfound.store.schema import Match
from lostfound.worker.jobs import enrich as enrich_job
from lostfound.worker.jobs import ingest as ingest_job
from lostfound.worker.jobs import match as match_job


def test_load_records_handles_arrays_objects_and_lines(tmp_path):
    array_file = tmp_path / "array.json"
    array_file.write_text(json.dumps([{"filename": "a.jpg"}, "junk", {"filename": "b.jpg"}]))
    object_file = tmp_path / "object.json"
    object_file.write_text(json.dumps({"filename": "c.jpg"}))
    lines_file = tmp_path / "lines.json"
    lines_file.write_text('{"filename": "d.jpg"}\n\n{"filename": "e.jpg"}\n')

    assert [r["filename"] for r in ingest_job._load_records(array_file)] == ["a.jpg", "b.jpg"]
    assert [r["filename"] for r in ingest_job._load_records(object_file)] == ["c.jpg"]
    assert [r["filename"] for r in ingest_job._load_records(lines_file)] == ["d.jpg", "e.jpg"]


def test_load_records_reports_bad_line(tmp_path):
    bad = tmp_path / "bad.json"
    bad.write_text('{"filename": "d.jpg"}\nnot json\n')

    with pytest.raises(ValueError, match="line 2"):
        list(ingest_job._load_records(bad))


def test_ingest_main_loads_drop_files(monkeypatch, settings, session_factory):
    drop_dir = settings.ingestion.source_dir / "lost_items" / "json"
    drop_dir.mkdir(parents=True)
    (drop_dir / "batch1.json").write_text(
        json.dumps(
            [
                {"Filename": "img001.jpg", "Location": "T2, G14", "Found_Time": "2025-03-01T08:00:00Z"},
                {"filename": "img002.jpg", "location": "T1, G3", "found_time": "2025-03-01T09:00:00Z"},
            ]
        )
    )
    (drop_dir / "batch2.json").write_text(
        json.dumps({"filename": "img001.jpg", "location": "T2, G14", "found_time": "2025-03-01T08:00:00Z"})
    )
    store = FoundItemStore(session_factory=session_factory)
    monkeypatch.setattr(ingest_job, "get_settings", lambda: settings)
    monkeypatch.setattr(ingest_job, "build_found_item_store", lambda: store)

    assert ingest_job.main() == 0
    assert store.exists("img001.jpg")
    assert store.get("img002.jpg").location == "T1, G3"


def test_ingest_main_without_drops_is_noop(monkeypatch, settings):
    factory = Mock()
    monkeypatch.setattr(ingest_job, "get_settings", lambda: settings)
    monkeypatch.setattr(ingest_job, "build_found_item_store", factory)

    assert ingest_job.main() == 0
    factory.assert_not_called()


def test_enrich_run_once_exit_codes():
    stop = threading.Event()
    worker = Mock()
    worker.run_if_pending.return_value = None
    assert enrich_job.run_once(worker, stop) == 0
    worker.run_if_pending.assert_called_once_with(cancel_event=stop)

    worker.run_if_pending.return_value = EnrichmentRunSummary(
        run_id="run-1", consumer="enrichment", status="completed", checkpoint_before=0, checkpoint_after=4
    )
    assert enrich_job.run_once(worker, stop) == 0

    worker.run_if_pending.side_effect = RecordStoreUnavailable("database locked")
    assert enrich_job.run_once(worker, stop) == 1


def test_env_flag(monkeypatch):
    monkeypatch.setenv("LOSTFOUND_ENRICH_WATCH", "yes")
    assert enrich_job._env_flag("LOSTFOUND_ENRICH_WATCH") is True
    monkeypatch.setenv("LOSTFOUND_ENRICH_WATCH", "off")
    assert enrich_job._env_flag("LOSTFOUND_ENRICH_WATCH") is False
    monkeypatch.delenv("LOSTFOUND_ENRICH_WATCH")
    assert enrich_job._env_flag("LOSTFOUND_ENRICH_WATCH") is None


def test_export_matches_pages_until_short_page():
    found = datetime(2025, 3, 1, 8, 0, tzinfo=timezone.utc)
    rows = [
        Match(claim_id=f"claim-{i}", filename=f"img{i:03d}.jpg", found_time=found, item_details_text="{}", similarity_score_percent=50.0)
        for i in range(5)
    ]
    engine = Mock()
    engine.match_all.side_effect = lambda limit, offset: rows[offset : offset + limit]
    handle = io.StringIO()

    written = match_job.export_matches(engine, handle, page_size=2)

    assert written == 5
    lines = [json.loads(line) for line in handle.getvalue().splitlines()]
    assert [line["filename"] for line in lines] == [row.filename for row in rows]
    assert lines[0]["found_time"] == "2025-03-01T08:00:00+00:00"
    assert engine.match_all.call_count == 3
