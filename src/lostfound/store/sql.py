"""SQLAlchemy metadata and engine helpers for the lost-and-found record store."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import sqlalchemy as sa
from sqlalchemy import Engine
from sqlalchemy.dialects import postgresql
from sqlalchemy.engine import URL
from sqlalchemy.orm import sessionmaker

from lostfound.settings import Settings, get_settings

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), "postgresql")
TIMESTAMP = sa.DateTime(timezone=True)
UUID_TYPE = sa.String(length=64)

METADATA = sa.MetaData()

found_items = sa.Table(
    "found_items",
    METADATA,
    sa.Column("seq", sa.Integer(), primary_key=True, autoincrement=True),
    sa.Column("filename", sa.Text(), nullable=False, unique=True),
    sa.Column("location", sa.Text(), nullable=True),
    sa.Column("found_time", TIMESTAMP, nullable=True),
    sa.Column("inserted_at", TIMESTAMP, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
)

enriched_items = sa.Table(
    "enriched_items",
    METADATA,
    sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
    sa.Column("filename", sa.Text(), nullable=False),
    sa.Column("classification", sa.Text(), nullable=False),
    sa.Column("location", sa.Text(), nullable=True),
    sa.Column("found_time", TIMESTAMP, nullable=True),
    sa.Column("item_details", JSON_TYPE, nullable=True),
    sa.Column("etl_timestamp", TIMESTAMP, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
)
sa.Index("idx_enriched_items_filename", enriched_items.c.filename)
sa.Index("idx_enriched_items_classification", enriched_items.c.classification)

enrichment_ledger = sa.Table(
    "enrichment_ledger",
    METADATA,
    sa.Column("filename", sa.Text(), primary_key=True),
    sa.Column("status", sa.Text(), nullable=False),
    sa.Column("enriched_item_id", sa.Integer(), nullable=True),
    sa.Column("reason", sa.Text(), nullable=True),
    sa.Column("committed_at", TIMESTAMP, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
)
sa.Index("idx_enrichment_ledger_status", enrichment_ledger.c.status)

enrichment_failures = sa.Table(
    "enrichment_failures",
    METADATA,
    sa.Column("filename", sa.Text(), primary_key=True),
    sa.Column("failure_count", sa.Integer(), nullable=False, server_default="0"),
    sa.Column("last_error_kind", sa.Text(), nullable=True),
    sa.Column("last_error", sa.Text(), nullable=True),
    sa.Column("first_failed_at", TIMESTAMP, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
    sa.Column("last_failed_at", TIMESTAMP, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
)

change_checkpoints = sa.Table(
    "change_checkpoints",
    METADATA,
    sa.Column("consumer", sa.Text(), primary_key=True),
    sa.Column("last_offset", sa.Integer(), nullable=False, server_default="0"),
    sa.Column("updated_at", TIMESTAMP, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
)

enrichment_runs = sa.Table(
    "enrichment_runs",
    METADATA,
    sa.Column("run_id", UUID_TYPE, primary_key=True),
    sa.Column("consumer", sa.Text(), nullable=False),
    sa.Column("started_at", TIMESTAMP, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
    sa.Column("completed_at", TIMESTAMP, nullable=True),
    sa.Column("status", sa.Text(), nullable=False),
    sa.Column("polled_count", sa.Integer(), nullable=False, server_default="0"),
    sa.Column("enriched_count", sa.Integer(), nullable=False, server_default="0"),
    sa.Column("duplicate_count", sa.Integer(), nullable=False, server_default="0"),
    sa.Column("unparsed_count", sa.Integer(), nullable=False, server_default="0"),
    sa.Column("failed_count", sa.Integer(), nullable=False, server_default="0"),
    sa.Column("quarantined_count", sa.Integer(), nullable=False, server_default="0"),
    sa.Column("checkpoint_before", sa.Integer(), nullable=True),
    sa.Column("checkpoint_after", sa.Integer(), nullable=True),
    sa.Column("last_error", sa.Text(), nullable=True),
)
sa.Index("idx_enrichment_runs_started_at", enrichment_runs.c.started_at)

claims = sa.Table(
    "claims",
    METADATA,
    sa.Column("claim_id", UUID_TYPE, primary_key=True),
    sa.Column("commentary", sa.Text(), nullable=True),
    sa.Column("category", sa.Text(), nullable=False),
    sa.Column("brand", sa.Text(), nullable=True),
    sa.Column("terminal", sa.Text(), nullable=False),
    sa.Column("gate", sa.Text(), nullable=False),
    sa.Column("name", sa.Text(), nullable=True),
    sa.Column("email", sa.Text(), nullable=True),
    sa.Column("phone_number", sa.Text(), nullable=True),
    sa.Column("helpdesk_location", sa.Text(), nullable=True),
    sa.Column("status", sa.Text(), nullable=False, server_default="Outstanding"),
    sa.Column("claim_lodged_at", TIMESTAMP, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
)
sa.Index("idx_claims_status", claims.c.status)

ai_usage = sa.Table(
    "ai_usage",
    METADATA,
    sa.Column("usage_id", UUID_TYPE, primary_key=True),
    sa.Column("function_name", sa.Text(), nullable=False),
    sa.Column("model_name", sa.Text(), nullable=True),
    sa.Column("subject", sa.Text(), nullable=True),
    sa.Column("tokens", sa.Integer(), nullable=False, server_default="0"),
    sa.Column("credits", sa.Float(), nullable=False, server_default="0"),
    sa.Column("dollar_cost", sa.Float(), nullable=False, server_default="0"),
    sa.Column("duration_ms", sa.Float(), nullable=False, server_default="0"),
    sa.Column("started_at", TIMESTAMP, nullable=False),
    sa.Column("ended_at", TIMESTAMP, nullable=False),
)
sa.Index("idx_ai_usage_started_at", ai_usage.c.started_at)

TABLES_BY_NAME = {
    "found_items": found_items,
    "enriched_items": enriched_items,
    "claims": claims,
    "enrichment_ledger": enrichment_ledger,
    "enrichment_failures": enrichment_failures,
    "enrichment_runs": enrichment_runs,
    "ai_usage": ai_usage,
}


def _resolve_database_url(settings: Settings | None = None) -> str:
    """Return the SQLAlchemy URL, preferring an explicit ``database_url``."""

    resolved = settings or get_settings()
    if resolved.storage.database_url:
        return resolved.storage.database_url

    sqlite_path = Path(resolved.storage.sqlite_path)
    sqlite_path.parent.mkdir(parents=True, exist_ok=True)
    return URL.create("sqlite", database=sqlite_path.as_posix()).render_as_string(hide_password=False)


def build_engine(*, echo: bool = False, settings: Settings | None = None) -> Engine:
    """Instantiate a SQLAlchemy engine aligned with project settings."""

    url = _resolve_database_url(settings)
    connect_args: dict[str, Any] = {}
    if url.startswith("sqlite:///"):
        connect_args["check_same_thread"] = False
    return sa.create_engine(url, echo=echo, future=True, pool_pre_ping=True, connect_args=connect_args)


def ensure_schema(engine: Engine) -> None:
    """Create any missing tables on ``engine``."""

    METADATA.create_all(engine)


def session_factory(*, settings: Settings | None = None, create_schema: bool = True) -> sessionmaker:
    """Return a configured sessionmaker bound to the active engine."""

    engine = build_engine(settings=settings)
    if create_schema:
        ensure_schema(engine)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
