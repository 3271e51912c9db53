"""Read-only aggregate queries backing the monitoring endpoints."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import sqlalchemy as sa
from sqlalchemy.orm import sessionmaker

from lostfound.settings import Settings, get_settings
from lostfound.store import sql as sql_schema
from lostfound.store.change_tracker import ChangeTracker
from lostfound.store.enrichment_run_tracker import EnrichmentRunTracker
from lostfound.store.enrichment_store import EnrichmentStore
from lostfound.store.found_item_store import FoundItemStore
from lostfound.store.usage_store import UsageRecorder

LOGGER = logging.getLogger(__name__)


class MonitoringService:
    """Pending-change, enrichment outcome, row count and AI usage summaries."""

    def __init__(
        self,
        *,
        session_factory: sessionmaker,
        tracker: ChangeTracker,
        enrichment_store: EnrichmentStore,
        run_tracker: EnrichmentRunTracker,
        usage_recorder: UsageRecorder,
        settings: Settings | None = None,
        found_item_store: FoundItemStore | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._session_factory = session_factory
        self.tracker = tracker
        self.enrichment_store = enrichment_store
        self.run_tracker = run_tracker
        self.usage = usage_recorder
        self.found_items = found_item_store or FoundItemStore(session_factory=session_factory)

    def row_counts(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        session = self._session_factory()
        try:
            for name, table in sql_schema.TABLES_BY_NAME.items():
                counts[name] = int(session.execute(sa.select(sa.func.count()).select_from(table)).scalar_one())
        finally:
            session.close()
        return counts

    def summary(self) -> Dict[str, Any]:
        """Return the pipeline health snapshot."""

        consumer = self.settings.enrichment.consumer_name
        checkpoint = self.tracker.load_checkpoint(consumer)
        ledger = self.enrichment_store.ledger_counts()
        latest = self.run_tracker.latest_run()
        if latest is not None:
            latest = {key: value.isoformat() if hasattr(value, "isoformat") else value for key, value in latest.items()}
        return {
            "consumer": consumer,
            "checkpoint": checkpoint,
            "pending_changes": self.tracker.pending_count(consumer),
            "late_changes": self.tracker.straggler_count(checkpoint),
            "enrichment": {
                "enriched": ledger.get("enriched", 0),
                "quarantined": ledger.get("quarantined", 0),
                "failing": self.enrichment_store.failing_count(),
            },
            "row_counts": self.row_counts(),
            "latest_run": latest,
        }

    def item_status(self, filename: str) -> Optional[Dict[str, Any]]:
        """Return the enrichment state of one found item, or ``None`` when it was never logged."""

        if not self.found_items.exists(filename):
            return None
        enriched = self.enrichment_store.get_for_filename(filename)
        return {
            "filename": filename,
            "ledger_status": self.enrichment_store.ledger_status(filename),
            "failure_count": self.enrichment_store.failure_count(filename),
            "enriched": [
                {
                    "id": item.id,
                    "classification": item.classification,
                    "item_details": item.item_details.as_text() if item.item_details is not None else None,
                    "etl_timestamp": item.etl_timestamp.isoformat() if item.etl_timestamp else None,
                }
                for item in enriched
            ],
        }

    def usage_report(self, *, days: int = 10) -> Dict[str, Any]:
        """Return per-call AI usage for the last ``days`` days with totals."""

        records = self.usage.recent(days=days)
        return {
            "days": days,
            "calls": len(records),
            "total_tokens": sum(record.tokens for record in records),
            "total_credits": round(sum(record.credits for record in records), 6),
            "total_dollar_cost": round(sum(record.dollar_cost for record in records), 6),
            "records": [record.to_dict() for record in records],
        }


__all__ = ["MonitoringService"]
