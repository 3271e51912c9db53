"""Shared fixtures for lostfound unit tests."""

from __future__ import annotations

from types import SimpleNamespace

import pytest
import sqlalchemy as sa
from sqlalchemy.orm import sessionmaker

from lostfound.observability import reset_observability_cache
from lostfound.store import sql as sql_schema


def make_settings(tmp_path, **sections):
    """Return a SimpleNamespace shaped like :class:`lostfound.settings.Settings`.

    Keyword arguments are per-section overrides, e.g. ``matching={"top_k": 5}``.
    """

    defaults = {
        "api": {"key": "test-key"},
        "storage": {
            "database_url": None,
            "sqlite_path": tmp_path / "lostfound.db",
            "image_bucket": None,
            "image_local_dir": tmp_path / "images",
            "image_prefix": "lost_items/",
            "gcp_project": None,
            "request_timeout_seconds": 5.0,
            "presigned_url_ttl_seconds": 3600,
        },
        "llm": {
            "provider": "mock",
            "vision_model": "llava",
            "embedding_model": "nomic-embed-text",
            "temperature": 0.0,
            "ollama_base_url": "http://127.0.0.1:11434",
            "request_timeout_seconds": 5.0,
        },
        "enrichment": {
            "consumer_name": "enrichment",
            "batch_limit": 100,
            "max_workers": 4,
            "max_retries": 2,
            "retry_base_delay_seconds": 0.5,
            "retry_max_delay_seconds": 4.0,
            "quarantine_threshold": 3,
            "poll_interval_seconds": 1,
            "dry_run": False,
        },
        "matching": {"top_k": 3, "temporal_window_enabled": False, "temporal_window_days": 1},
        "usage": {"dollars_per_credit": 3.0, "credits_per_million_tokens": {"classify": 1.0, "complete": 2.0}},
        "observability": {
            "structured_logging": False,
            "statsd_host": None,
            "statsd_port": 8125,
            "statsd_prefix": "lostfound",
            "service_name": "lostfound-test",
        },
        "ingestion": {"source_dir": tmp_path / "drops", "area": "lost_items"},
    }
    for name, overrides in sections.items():
        defaults[name].update(overrides)
    return SimpleNamespace(env="test", **{name: SimpleNamespace(**values) for name, values in defaults.items()})


@pytest.fixture()
def engine(tmp_path):
    db_path = tmp_path / "lostfound.db"
    engine = sa.create_engine(
        f"sqlite:///{db_path}", future=True, connect_args={"check_same_thread": False}
    )
    sql_schema.METADATA.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, future=True)


@pytest.fixture()
def settings(tmp_path):
    return make_settings(tmp_path)


@pytest.fixture(autouse=True)
def _reset_observability():
    reset_observability_cache()
    yield
    reset_observability_cache()


@pytest.fixture()
def settings_factory(tmp_path):
    def _factory(**sections):
        return make_settings(tmp_path, **sections)

    return _factory
