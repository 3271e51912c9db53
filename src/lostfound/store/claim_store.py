"""CRUD helpers around the ``claims`` table."""

from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from typing import Any, Iterator, List, Mapping, Optional

import sqlalchemy as sa
from sqlalchemy.orm import Session, sessionmaker

from lostfound.errors import InvalidClaimTransition
from lostfound.store import sql as sql_schema
from lostfound.store.schema import ALLOWED_TRANSITIONS, Claim, ClaimStatus, as_utc, utcnow
from lostfound.store.sql import session_factory as default_session_factory

LOGGER = logging.getLogger(__name__)


def _row_to_claim(row: Mapping[str, Any]) -> Claim:
    return Claim(
        claim_id=row["claim_id"],
        commentary=row["commentary"],
        category=row["category"],
        brand=row["brand"],
        terminal=row["terminal"],
        gate=row["gate"],
        name=row["name"],
        email=row["email"],
        phone_number=row["phone_number"],
        helpdesk_location=row["helpdesk_location"],
        status=ClaimStatus(row["status"]),
        claim_lodged_at=as_utc(row["claim_lodged_at"]),
    )


class ClaimStore:
    """Create claims, read them back and apply status transitions."""

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

    def create(
        self,
        *,
        category: str,
        terminal: str,
        gate: str,
        commentary: Optional[str] = None,
        brand: Optional[str] = None,
        name: Optional[str] = None,
        email: Optional[str] = None,
        phone_number: Optional[str] = None,
        helpdesk_location: Optional[str] = None,
        claim_lodged_at=None,
        claim_id: Optional[str] = None,
    ) -> Claim:
        """Insert a new ``Outstanding`` claim and return it."""

        claim = Claim(
            claim_id=claim_id or str(uuid.uuid4()),
            category=category,
            terminal=terminal,
            gate=gate,
            commentary=commentary,
            brand=brand,
            name=name,
            email=email,
            phone_number=phone_number,
            helpdesk_location=helpdesk_location,
            status=ClaimStatus.OUTSTANDING,
            claim_lodged_at=as_utc(claim_lodged_at) or utcnow(),
        )
        with self._session_scope() as session:
            session.execute(
                sa.insert(sql_schema.claims).values(
                    claim_id=claim.claim_id,
                    commentary=claim.commentary,
                    category=claim.category,
                    brand=claim.brand,
                    terminal=claim.terminal,
                    gate=claim.gate,
                    name=claim.name,
                    email=claim.email,
                    phone_number=claim.phone_number,
                    helpdesk_location=claim.helpdesk_location,
                    status=claim.status.value,
                    claim_lodged_at=claim.claim_lodged_at,
                )
            )
        LOGGER.info("Created claim claim_id=%s category=%s", claim.claim_id, claim.category)
        return claim

    def get(self, claim_id: str) -> Optional[Claim]:
        with self._session_scope() as session:
            row = (
                session.execute(sa.select(sql_schema.claims).where(sql_schema.claims.c.claim_id == claim_id))
                .mappings()
                .first()
            )
        return _row_to_claim(row) if row else None

    def list_outstanding(self) -> List[Claim]:
        """Return outstanding claims ordered by lodge time then id."""

        table = sql_schema.claims
        query = (
            sa.select(table)
            .where(table.c.status == ClaimStatus.OUTSTANDING.value)
            .order_by(table.c.claim_lodged_at.asc(), table.c.claim_id.asc())
        )
        with self._session_scope() as session:
            rows = session.execute(query).mappings().all()
        return [_row_to_claim(row) for row in rows]

    def update_status(self, claim_id: str, status: ClaimStatus | str) -> Optional[Claim]:
        """Apply a status transition; returns ``None`` for an unknown claim.

        Raises:
            InvalidClaimTransition: the transition is not permitted from the current status.
        """

        requested = ClaimStatus(status)
        table = sql_schema.claims
        with self._session_scope() as session:
            current_value = session.execute(
                sa.select(table.c.status).where(table.c.claim_id == claim_id)
            ).scalar_one_or_none()
            if current_value is None:
                return None
            current = ClaimStatus(current_value)
            if requested not in ALLOWED_TRANSITIONS[current]:
                raise InvalidClaimTransition(claim_id, current.value, requested.value)
            updated = session.execute(
                sa.update(table)
                .where(table.c.claim_id == claim_id)
                .where(table.c.status == current.value)
                .values(status=requested.value)
            )
            if not updated.rowcount:
                raise InvalidClaimTransition(claim_id, current.value, requested.value)
        LOGGER.info("Claim status changed claim_id=%s %s->%s", claim_id, current.value, requested.value)
        return self.get(claim_id)


__all__ = ["ClaimStore"]
