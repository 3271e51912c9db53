"""Per-call AI usage and cost accounting."""

from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Iterator, List, Mapping, Optional

import sqlalchemy as sa
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from lostfound.store import sql as sql_schema
from lostfound.store.schema import as_utc, utcnow
from lostfound.store.sql import session_factory as default_session_factory

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class UsageRecord:
    """One AI call as recorded in ``ai_usage``."""

    usage_id: str
    function_name: str
    model_name: Optional[str]
    subject: Optional[str]
    tokens: int
    credits: float
    dollar_cost: float
    duration_ms: float
    started_at: datetime
    ended_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "usage_id": self.usage_id,
            "function_name": self.function_name,
            "model_name": self.model_name,
            "subject": self.subject,
            "tokens": self.tokens,
            "credits": self.credits,
            "dollar_cost": self.dollar_cost,
            "duration_ms": self.duration_ms,
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat(),
        }


def _row_to_record(row: Mapping[str, Any]) -> UsageRecord:
    return UsageRecord(
        usage_id=row["usage_id"],
        function_name=row["function_name"],
        model_name=row["model_name"],
        subject=row["subject"],
        tokens=int(row["tokens"]),
        credits=float(row["credits"]),
        dollar_cost=float(row["dollar_cost"]),
        duration_ms=float(row["duration_ms"]),
        started_at=as_utc(row["started_at"]),
        ended_at=as_utc(row["ended_at"]),
    )


class UsageRecorder:
    """Write ``ai_usage`` rows, pricing tokens with per-function credit rates."""

    def __init__(
        self,
        *,
        session_factory: sessionmaker | None = None,
        credits_per_million_tokens: Mapping[str, float] | None = None,
        dollars_per_credit: float = 3.0,
    ) -> None:
        self._session_factory = session_factory or default_session_factory()
        self._rates = dict(credits_per_million_tokens or {})
        self._dollars_per_credit = dollars_per_credit

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

    def credits_for(self, function_name: str, tokens: int) -> float:
        return tokens * self._rates.get(function_name, 0.0) / 1_000_000

    def record(
        self,
        *,
        function_name: str,
        model_name: Optional[str],
        tokens: int,
        started_at: datetime,
        ended_at: datetime,
        subject: Optional[str] = None,
    ) -> Optional[UsageRecord]:
        """Persist one usage row. Accounting failures are logged, never raised."""

        credits = self.credits_for(function_name, tokens)
        record = UsageRecord(
            usage_id=str(uuid.uuid4()),
            function_name=function_name,
            model_name=model_name,
            subject=subject,
            tokens=int(tokens),
            credits=credits,
            dollar_cost=credits * self._dollars_per_credit,
            duration_ms=(ended_at - started_at).total_seconds() * 1000.0,
            started_at=started_at,
            ended_at=ended_at,
        )
        try:
            with self._session_scope() as session:
                session.execute(
                    sa.insert(sql_schema.ai_usage).values(
                        usage_id=record.usage_id,
                        function_name=record.function_name,
                        model_name=record.model_name,
                        subject=record.subject,
                        tokens=record.tokens,
                        credits=record.credits,
                        dollar_cost=record.dollar_cost,
                        duration_ms=record.duration_ms,
                        started_at=record.started_at,
                        ended_at=record.ended_at,
                    )
                )
        except SQLAlchemyError:
            LOGGER.warning("Failed to record AI usage function=%s", function_name, exc_info=True)
            return None
        return record

    def recent(self, *, days: int = 10) -> List[UsageRecord]:
        """Return usage rows started within the last ``days`` days, newest first."""

        table = sql_schema.ai_usage
        cutoff = utcnow() - timedelta(days=days)
        query = sa.select(table).where(table.c.started_at >= cutoff).order_by(table.c.started_at.desc())
        with self._session_scope() as session:
            rows = session.execute(query).mappings().all()
        return [_row_to_record(row) for row in rows]


__all__ = ["UsageRecord", "UsageRecorder"]
