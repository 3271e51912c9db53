"""Helpers to persist enrichment_runs rows for monitoring."""

from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Literal, Optional

import sqlalchemy as sa
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from lostfound.errors import RecordStoreUnavailable
from lostfound.store import sql as sql_schema
from lostfound.store.schema import as_utc, utcnow
from lostfound.store.sql import session_factory as default_session_factory

LOGGER = logging.getLogger(__name__)

RunStatus = Literal["running", "succeeded", "failed", "cancelled"]

COUNTER_COLUMNS = (
    "polled_count",
    "enriched_count",
    "duplicate_count",
    "unparsed_count",
    "failed_count",
    "quarantined_count",
)


class EnrichmentRunTracker:
    """Persist one row per enrichment worker invocation."""

    def __init__(self, *, session_factory: sessionmaker | None = None) -> None:
        self._session_factory = session_factory or default_session_factory()

    @contextmanager
    def _session_scope(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            raise RecordStoreUnavailable(f"Run tracker unavailable: {exc}", original_error=exc) from exc
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def start_run(self, *, consumer: str, checkpoint_before: int) -> str:
        """Create an enrichment_runs row and return its identifier."""

        run_id = str(uuid.uuid4())
        with self._session_scope() as session:
            session.execute(
                sa.insert(sql_schema.enrichment_runs).values(
                    run_id=run_id,
                    consumer=consumer,
                    status="running",
                    started_at=utcnow(),
                    checkpoint_before=checkpoint_before,
                )
            )
        LOGGER.info("Started enrichment run run_id=%s consumer=%s offset=%s", run_id, consumer, checkpoint_before)
        return run_id

    def complete_run(
        self,
        run_id: str,
        *,
        status: RunStatus,
        counters: Dict[str, int],
        checkpoint_after: Optional[int],
        last_error: Optional[str] = None,
    ) -> None:
        """Mark a run as completed with the supplied status and counters."""

        values: Dict[str, Any] = {
            "status": status,
            "completed_at": utcnow(),
            "checkpoint_after": checkpoint_after,
            "last_error": last_error,
        }
        values.update({column: int(counters.get(column, 0)) for column in COUNTER_COLUMNS})
        with self._session_scope() as session:
            session.execute(
                sa.update(sql_schema.enrichment_runs)
                .where(sql_schema.enrichment_runs.c.run_id == run_id)
                .values(**values)
            )
        LOGGER.info("Completed enrichment run run_id=%s status=%s", run_id, status)

    def latest_run(self) -> Optional[Dict[str, Any]]:
        """Return the most recently started run as a plain dict."""

        table = sql_schema.enrichment_runs
        with self._session_scope() as session:
            row = session.execute(sa.select(table).order_by(table.c.started_at.desc()).limit(1)).mappings().first()
        if row is None:
            return None
        payload = dict(row)
        for key in ("started_at", "completed_at"):
            payload[key] = as_utc(payload[key])
        return payload


__all__ = ["EnrichmentRunTracker", "RunStatus", "COUNTER_COLUMNS"]
