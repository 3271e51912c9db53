"""Persistence for enriched items, the per-filename ledger and failure accounting."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Mapping, Optional

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from lostfound.errors import DuplicateEnrichmentAttempt, RecordStoreUnavailable
from lostfound.store import sql as sql_schema
from lostfound.store.schema import EnrichedItem, FoundItem, ItemDetails, as_utc, details_from_json, utcnow
from lostfound.store.sql import session_factory as default_session_factory

LOGGER = logging.getLogger(__name__)

LEDGER_ENRICHED = "enriched"
LEDGER_QUARANTINED = "quarantined"


def _row_to_enriched_item(row: Mapping[str, Any]) -> EnrichedItem:
    return EnrichedItem(
        id=int(row["id"]),
        filename=row["filename"],
        classification=row["classification"],
        location=row["location"],
        found_time=as_utc(row["found_time"]),
        item_details=details_from_json(row["item_details"]),
        etl_timestamp=as_utc(row["etl_timestamp"]),
    )


class EnrichmentStore:
    """Append-only enrichment log guarded by a conditional ledger insert."""

    def __init__(self, *, session_factory: sessionmaker | None = None) -> None:
        self._session_factory = session_factory or default_session_factory()

    @contextmanager
    def _session_scope(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except IntegrityError:
            session.rollback()
            raise
        except SQLAlchemyError as exc:
            session.rollback()
            raise RecordStoreUnavailable(f"Enrichment store unavailable: {exc}", original_error=exc) from exc
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def ledger_status(self, filename: str) -> Optional[str]:
        """Return ``enriched``/``quarantined`` for a final filename, else ``None``."""

        with self._session_scope() as session:
            return session.execute(
                sa.select(sql_schema.enrichment_ledger.c.status).where(
                    sql_schema.enrichment_ledger.c.filename == filename
                )
            ).scalar_one_or_none()

    def commit_enrichment(self, item: FoundItem, *, classification: str, details: ItemDetails) -> int:
        """Persist the enriched row and its ledger entry in one transaction.

        Raises:
            DuplicateEnrichmentAttempt: another attempt already committed ``item.filename``.
            RecordStoreUnavailable: the store could not be written.
        """

        timestamp = utcnow()
        try:
            with self._session_scope() as session:
                result = session.execute(
                    sa.insert(sql_schema.enriched_items).values(
                        filename=item.filename,
                        classification=classification,
                        location=item.location,
                        found_time=item.found_time,
                        item_details=details.to_json(),
                        etl_timestamp=timestamp,
                    )
                )
                enriched_id = int(result.inserted_primary_key[0])
                session.execute(
                    sa.insert(sql_schema.enrichment_ledger).values(
                        filename=item.filename,
                        status=LEDGER_ENRICHED,
                        enriched_item_id=enriched_id,
                        committed_at=timestamp,
                    )
                )
                session.execute(
                    sa.delete(sql_schema.enrichment_failures).where(
                        sql_schema.enrichment_failures.c.filename == item.filename
                    )
                )
        except IntegrityError as exc:
            if self.ledger_status(item.filename) is None:
                raise
            raise DuplicateEnrichmentAttempt(
                f"{item.filename} already has a final enrichment", filename=item.filename, original_error=exc
            ) from exc
        LOGGER.info("Committed enrichment filename=%s id=%s class=%s", item.filename, enriched_id, classification)
        return enriched_id

    def quarantine(self, filename: str, *, reason: str) -> bool:
        """Mark ``filename`` as quarantined; ``False`` if it was already final."""

        try:
            with self._session_scope() as session:
                session.execute(
                    sa.insert(sql_schema.enrichment_ledger).values(
                        filename=filename,
                        status=LEDGER_QUARANTINED,
                        reason=reason[:2000],
                        committed_at=utcnow(),
                    )
                )
        except IntegrityError:
            return False
        LOGGER.warning("Quarantined filename=%s reason=%s", filename, reason)
        return True

    def record_failure(self, filename: str, *, kind: str, error: str) -> int:
        """Increment the failure counter for ``filename`` and return the new count."""

        table = sql_schema.enrichment_failures
        timestamp = utcnow()
        message = error[:2000]
        with self._session_scope() as session:
            updated = session.execute(
                sa.update(table)
                .where(table.c.filename == filename)
                .values(
                    failure_count=table.c.failure_count + 1,
                    last_error_kind=kind,
                    last_error=message,
                    last_failed_at=timestamp,
                )
            )
            if not updated.rowcount:
                session.execute(
                    sa.insert(table).values(
                        filename=filename,
                        failure_count=1,
                        last_error_kind=kind,
                        last_error=message,
                        first_failed_at=timestamp,
                        last_failed_at=timestamp,
                    )
                )
            count = session.execute(sa.select(table.c.failure_count).where(table.c.filename == filename)).scalar_one()
        return int(count)

    def failure_count(self, filename: str) -> int:
        table = sql_schema.enrichment_failures
        with self._session_scope() as session:
            value = session.execute(sa.select(table.c.failure_count).where(table.c.filename == filename)).scalar_one_or_none()
        return int(value or 0)

    def get_for_filename(self, filename: str) -> List[EnrichedItem]:
        """Return every enriched row recorded for ``filename``."""

        table = sql_schema.enriched_items
        with self._session_scope() as session:
            rows = (
                session.execute(sa.select(table).where(table.c.filename == filename).order_by(table.c.id.asc()))
                .mappings()
                .all()
            )
        return [_row_to_enriched_item(row) for row in rows]

    def candidates_for_category(self, category: str) -> List[EnrichedItem]:
        """Return enriched items with non-null details whose classification matches ``category``."""

        table = sql_schema.enriched_items
        query = (
            sa.select(table)
            .where(table.c.item_details.is_not(None))
            .where(sa.func.lower(sa.func.trim(table.c.classification)) == category.strip().lower())
            .order_by(table.c.id.asc())
        )
        with self._session_scope() as session:
            rows = session.execute(query).mappings().all()
        return [_row_to_enriched_item(row) for row in rows if row["item_details"] is not None]

    def ledger_counts(self) -> Dict[str, int]:
        """Return ledger row counts keyed by status."""

        table = sql_schema.enrichment_ledger
        with self._session_scope() as session:
            rows = session.execute(sa.select(table.c.status, sa.func.count()).group_by(table.c.status)).all()
        counts = {LEDGER_ENRICHED: 0, LEDGER_QUARANTINED: 0}
        counts.update({status: int(total) for status, total in rows})
        return counts

    def failing_count(self) -> int:
        """Number of filenames with recorded failures that are not yet final."""

        failures = sql_schema.enrichment_failures
        ledger = sql_schema.enrichment_ledger
        query = (
            sa.select(sa.func.count())
            .select_from(failures.outerjoin(ledger, failures.c.filename == ledger.c.filename))
            .where(ledger.c.filename.is_(None))
        )
        with self._session_scope() as session:
            return int(session.execute(query).scalar_one())


__all__ = ["EnrichmentStore", "LEDGER_ENRICHED", "LEDGER_QUARANTINED"]
