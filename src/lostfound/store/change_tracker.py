"""Offset-based change tracking over the append-only ``found_items`` table.

Each found item carries a monotonically increasing ``seq``. A consumer keeps
its position as an explicit offset persisted in ``change_checkpoints``;
``poll`` is a pure read of rows past that offset and ``commit_checkpoint``
only ever moves the offset forward.

A ``seq`` is assigned when a row is inserted but becomes visible only when its
transaction commits, so on MVCC backends a row can appear below an offset that
was already committed. ``stragglers`` sweeps those rows: anything at or below
the offset without an ``enrichment_ledger`` entry.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator, List, Optional

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from lostfound.errors import RecordStoreUnavailable
from lostfound.store import sql as sql_schema
from lostfound.store.found_item_store import row_to_found_item
from lostfound.store.schema import FoundItem, utcnow
from lostfound.store.sql import session_factory as default_session_factory

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ChangeBatch:
    """Rows surfaced by one :meth:`ChangeTracker.poll` call."""

    offset: int
    items: List[FoundItem] = field(default_factory=list)

    @property
    def next_offset(self) -> int:
        """Offset a consumer would commit after processing every item."""

        return self.items[-1].seq if self.items else self.offset

    def __len__(self) -> int:
        return len(self.items)


class ChangeTracker:
    """Surface newly inserted found items past a persisted checkpoint."""

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
            raise RecordStoreUnavailable(f"Change log unavailable: {exc}", original_error=exc) from exc
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def poll(self, offset: int, *, limit: Optional[int] = None) -> ChangeBatch:
        """Return found items with ``seq > offset`` in insertion order."""

        query = (
            sa.select(sql_schema.found_items)
            .where(sql_schema.found_items.c.seq > offset)
            .order_by(sql_schema.found_items.c.seq.asc())
        )
        if limit is not None:
            query = query.limit(limit)
        with self._session_scope() as session:
            rows = session.execute(query).mappings().all()
        batch = ChangeBatch(offset=offset, items=[row_to_found_item(row) for row in rows])
        LOGGER.debug("Polled change log offset=%s returned=%d", offset, len(batch))
        return batch

    def load_checkpoint(self, consumer: str) -> int:
        """Return the committed offset for ``consumer`` (0 when never committed)."""

        with self._session_scope() as session:
            value = session.execute(
                sa.select(sql_schema.change_checkpoints.c.last_offset).where(
                    sql_schema.change_checkpoints.c.consumer == consumer
                )
            ).scalar_one_or_none()
        return int(value) if value is not None else 0

    def commit_checkpoint(self, consumer: str, new_offset: int) -> bool:
        """Advance ``consumer`` to ``new_offset`` if it is ahead of the stored value.

        Returns ``True`` when the stored offset moved. A stale or equal offset is
        a no-op, so concurrent consumers can never move the checkpoint back.
        """

        table = sql_schema.change_checkpoints
        for _ in range(2):
            try:
                with self._session_scope() as session:
                    result = session.execute(
                        sa.update(table)
                        .where(table.c.consumer == consumer)
                        .where(table.c.last_offset < new_offset)
                        .values(last_offset=new_offset, updated_at=utcnow())
                    )
                    if result.rowcount:
                        LOGGER.info("Advanced checkpoint consumer=%s offset=%s", consumer, new_offset)
                        return True
                    present = session.execute(
                        sa.select(table.c.consumer).where(table.c.consumer == consumer)
                    ).scalar_one_or_none()
                    if present is not None:
                        return False
                    session.execute(
                        sa.insert(table).values(consumer=consumer, last_offset=new_offset, updated_at=utcnow())
                    )
                LOGGER.info("Created checkpoint consumer=%s offset=%s", consumer, new_offset)
                return True
            except IntegrityError:
                # Another consumer created the row first; retry as an update.
                continue
        return False

    def _straggler_filter(self, offset: int):
        items = sql_schema.found_items
        ledger = sql_schema.enrichment_ledger
        return sa.and_(items.c.seq <= offset, ~sa.exists().where(ledger.c.filename == items.c.filename))

    def stragglers(self, offset: int, *, limit: Optional[int] = None) -> List[FoundItem]:
        """Return rows at or below ``offset`` that never reached the ledger, oldest first."""

        query = (
            sa.select(sql_schema.found_items)
            .where(self._straggler_filter(offset))
            .order_by(sql_schema.found_items.c.seq.asc())
        )
        if limit is not None:
            query = query.limit(limit)
        with self._session_scope() as session:
            rows = session.execute(query).mappings().all()
        if rows:
            LOGGER.warning("Found %d late-committed found item(s) at or below offset=%s", len(rows), offset)
        return [row_to_found_item(row) for row in rows]

    def straggler_count(self, offset: int) -> int:
        with self._session_scope() as session:
            count = session.execute(
                sa.select(sa.func.count()).select_from(sql_schema.found_items).where(self._straggler_filter(offset))
            ).scalar_one()
        return int(count)

    def has_pending(self, consumer: str) -> bool:
        """Level-triggered gate: ``True`` while rows exist past the checkpoint."""

        return self.pending_count(consumer) > 0

    def pending_count(self, consumer: str) -> int:
        """Number of found items past the committed offset for ``consumer``."""

        offset = self.load_checkpoint(consumer)
        with self._session_scope() as session:
            count = session.execute(
                sa.select(sa.func.count()).select_from(sql_schema.found_items).where(sql_schema.found_items.c.seq > offset)
            ).scalar_one()
        return int(count)


__all__ = ["ChangeBatch", "ChangeTracker"]
