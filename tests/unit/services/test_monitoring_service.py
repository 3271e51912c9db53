"""Tests for the monitoring aggregates."""

from __future__ import annotations

from datetime import datetime, timezone

from lostfound.services.monitoring import MonitoringService
from lostfound.store.change_tracker import ChangeTracker
from lostfound.store.enrichment_run_tracker import EnrichmentRunTracker
from lostfound.store.enrichment_store import EnrichmentStore
from lostfound.store.found_item_store import FoundItemStore
from lostfound.store.schema import ParsedDetails
from lostfound.store.usage_store import UsageRecorder


def _service(session_factory, settings):
    return MonitoringService(
        settings=settings,
        session_factory=session_factory,
        tracker=ChangeTracker(session_factory=session_factory),
        enrichment_store=EnrichmentStore(session_factory=session_factory),
        run_tracker=EnrichmentRunTracker(session_factory=session_factory),
        usage_recorder=UsageRecorder(
            session_factory=session_factory, credits_per_million_tokens={}, dollars_per_credit=3.0
        ),
        found_item_store=FoundItemStore(session_factory=session_factory),
    )


def _seed(session_factory, *filenames):
    store = FoundItemStore(session_factory=session_factory)
    found_time = datetime(2025, 3, 1, 8, 0, tzinfo=timezone.utc)
    return [store.insert(filename=name, location="T2, G14", found_time=found_time) for name in filenames]


def test_item_status_reports_ledger_failures_and_rows(session_factory, settings):
    ok, failing = _seed(session_factory, "img001.jpg", "img002.jpg")
    enrichment = EnrichmentStore(session_factory=session_factory)
    enrichment.commit_enrichment(ok, classification="wallet", details=ParsedDetails(fields={"brand": "Gucci"}))
    enrichment.record_failure(failing.filename, kind="resolution", error="missing blob")
    service = _service(session_factory, settings)

    enriched = service.item_status("img001.jpg")
    assert enriched["ledger_status"] == "enriched"
    assert enriched["failure_count"] == 0
    assert [row["classification"] for row in enriched["enriched"]] == ["wallet"]
    assert enriched["enriched"][0]["item_details"] == '{"brand": "Gucci"}'

    pending = service.item_status("img002.jpg")
    assert pending["ledger_status"] is None
    assert pending["failure_count"] == 1
    assert pending["enriched"] == []

    assert service.item_status("unknown.jpg") is None


def test_summary_counts_pending_and_failing(session_factory, settings):
    _seed(session_factory, "img001.jpg", "img002.jpg")
    EnrichmentStore(session_factory=session_factory).record_failure("img002.jpg", kind="unexpected", error="boom")
    service = _service(session_factory, settings)

    summary = service.summary()

    assert summary["checkpoint"] == 0
    assert summary["pending_changes"] == 2
    assert summary["late_changes"] == 0
    assert summary["enrichment"] == {"enriched": 0, "quarantined": 0, "failing": 1}
    assert summary["row_counts"]["found_items"] == 2
    assert summary["latest_run"] is None
