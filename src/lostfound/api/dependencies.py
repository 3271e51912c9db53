"""Dependency providers shared by the API routers."""

from __future__ import annotations

from functools import lru_cache

from sqlalchemy.orm import sessionmaker

from lostfound.services.factories import (
    build_claim_store,
    build_image_store,
    build_matching_engine,
    build_monitoring_service,
    build_session_factory,
)
from lostfound.services.matching import MatchingEngine
from lostfound.services.monitoring import MonitoringService
from lostfound.storage.images import ImageStore
from lostfound.store.claim_store import ClaimStore


@lru_cache(maxsize=1)
def get_session_factory() -> sessionmaker:
    return build_session_factory()


def get_claim_store() -> ClaimStore:
    return build_claim_store(session_factory=get_session_factory())


@lru_cache(maxsize=1)
def get_matching_engine() -> MatchingEngine:
    return build_matching_engine(session_factory=get_session_factory())


@lru_cache(maxsize=1)
def get_image_store() -> ImageStore:
    return build_image_store()


def get_monitoring_service() -> MonitoringService:
    return build_monitoring_service(session_factory=get_session_factory())
