"""Insert and read helpers for the ``found_items`` table."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator, List, Mapping, Optional

import sqlalchemy as sa
from sqlalchemy.orm import Session, sessionmaker

from lostfound.store import sql as sql_schema
from lostfound.store.schema import FoundItem, as_utc, parse_timestamp, utcnow
from lostfound.store.sql import session_factory as default_session_factory

LOGGER = logging.getLogger(__name__)

LOAD_COLUMNS = ("filename", "location", "found_time")


@dataclass(slots=True)
class BulkLoadResult:
    """Counters returned by :meth:`FoundItemStore.bulk_load`."""

    inserted: int = 0
    skipped: int = 0
    rejected: int = 0
    errors: List[str] = field(default_factory=list)


def _fold_keys(record: Mapping[str, Any]) -> dict[str, Any]:
    """Match load columns case-insensitively and drop everything else."""

    folded = {str(key).strip().lower(): value for key, value in record.items()}
    return {column: folded.get(column) for column in LOAD_COLUMNS}


def row_to_found_item(row: Mapping[str, Any]) -> FoundItem:
    return FoundItem(
        seq=int(row["seq"]),
        filename=row["filename"],
        location=row["location"],
        found_time=as_utc(row["found_time"]),
        inserted_at=as_utc(row["inserted_at"]),
    )


class FoundItemStore:
    """Load-once persistence for found-item records."""

    def __init__(self, *, session_factory: sessionmaker | None = None) -> None:
        self._session_factory = session_factory or default_session_factory()

    @contextmanager
    def _session_scope(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def insert(self, *, filename: str, location: Optional[str], found_time: Any) -> FoundItem:
        """Insert a single found item and return it with its assigned ``seq``."""

        timestamp = utcnow()
        with self._session_scope() as session:
            result = session.execute(
                sa.insert(sql_schema.found_items).values(
                    filename=filename,
                    location=location,
                    found_time=parse_timestamp(found_time),
                    inserted_at=timestamp,
                )
            )
            seq = int(result.inserted_primary_key[0])
        LOGGER.debug("Inserted found item filename=%s seq=%s", filename, seq)
        return FoundItem(
            seq=seq,
            filename=filename,
            location=location,
            found_time=parse_timestamp(found_time),
            inserted_at=timestamp,
        )

    def bulk_load(self, records: Iterable[Mapping[str, Any]]) -> BulkLoadResult:
        """Insert records whose filename is not already present.

        Field names are matched case-insensitively and unknown columns are
        ignored. Rows without a filename or with an unparseable ``found_time``
        are rejected and reported in ``errors``.
        """

        result = BulkLoadResult()
        pending: dict[str, dict[str, Any]] = {}
        for index, record in enumerate(records):
            values = _fold_keys(record)
            raw_filename = values.get("filename")
            filename = str(raw_filename).strip() if raw_filename is not None else ""
            if not filename:
                result.rejected += 1
                result.errors.append(f"record {index}: missing filename")
                continue
            try:
                found_time = parse_timestamp(values.get("found_time"))
            except ValueError as exc:
                result.rejected += 1
                result.errors.append(f"record {index}: invalid found_time ({exc})")
                continue
            if filename in pending:
                result.skipped += 1
                continue
            pending[filename] = {"filename": filename, "location": values.get("location"), "found_time": found_time}

        if not pending:
            return result

        with self._session_scope() as session:
            existing = set(
                session.execute(
                    sa.select(sql_schema.found_items.c.filename).where(
                        sql_schema.found_items.c.filename.in_(list(pending))
                    )
                ).scalars()
            )
            timestamp = utcnow()
            rows = [{**values, "inserted_at": timestamp} for name, values in pending.items() if name not in existing]
            if rows:
                session.execute(sa.insert(sql_schema.found_items), rows)
            result.inserted = len(rows)
            result.skipped += len(existing)

        LOGGER.info(
            "Loaded found items inserted=%d skipped=%d rejected=%d",
            result.inserted,
            result.skipped,
            result.rejected,
        )
        return result

    def get(self, filename: str) -> Optional[FoundItem]:
        """Return the found item for ``filename`` or ``None``."""

        with self._session_scope() as session:
            row = (
                session.execute(sa.select(sql_schema.found_items).where(sql_schema.found_items.c.filename == filename))
                .mappings()
                .first()
            )
        return row_to_found_item(row) if row else None

    def exists(self, filename: str) -> bool:
        return self.get(filename) is not None


__all__ = ["BulkLoadResult", "FoundItemStore", "row_to_found_item"]
