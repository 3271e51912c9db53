"""Factory helpers that wire pipeline services from configuration.

Every builder accepts an optional ``sessionmaker`` so one engine can be shared
by all stores in a process; when omitted, a session factory bound to the
configured database is created.
"""

from __future__ import annotations

from sqlalchemy.orm import sessionmaker

from lostfound.classification.classifier import ImageClassifier
from lostfound.embedding.similarity import SimilarityOracle
from lostfound.extraction.describer import ItemDescriber
from lostfound.services.enrichment import EnrichmentWorker
from lostfound.services.matching import MatchingEngine
from lostfound.services.monitoring import MonitoringService
from lostfound.services.vision_client import VisionChatClient
from lostfound.settings import Settings, get_settings
from lostfound.storage.images import ImageStore
from lostfound.store.change_tracker import ChangeTracker
from lostfound.store.claim_store import ClaimStore
from lostfound.store.enrichment_run_tracker import EnrichmentRunTracker
from lostfound.store.enrichment_store import EnrichmentStore
from lostfound.store.found_item_store import FoundItemStore
from lostfound.store.sql import session_factory as build_sql_session_factory
from lostfound.store.usage_store import UsageRecorder


def build_session_factory(settings: Settings | None = None) -> sessionmaker:
    """Return a sessionmaker for the configured database with the schema in place."""

    return build_sql_session_factory(settings=settings or get_settings())


def build_usage_recorder(
    *, settings: Settings | None = None, session_factory: sessionmaker | None = None
) -> UsageRecorder:
    resolved = settings or get_settings()
    return UsageRecorder(
        session_factory=session_factory or build_session_factory(resolved),
        credits_per_million_tokens=resolved.usage.credits_per_million_tokens,
        dollars_per_credit=resolved.usage.dollars_per_credit,
    )


def build_image_store(settings: Settings | None = None) -> ImageStore:
    """Instantiate the GCS or local image store chosen by ``storage.image_bucket``."""

    return ImageStore(settings=settings or get_settings())


def build_found_item_store(*, session_factory: sessionmaker | None = None) -> FoundItemStore:
    return FoundItemStore(session_factory=session_factory or build_session_factory())


def build_claim_store(*, session_factory: sessionmaker | None = None) -> ClaimStore:
    return ClaimStore(session_factory=session_factory or build_session_factory())


def build_enrichment_worker(
    *, settings: Settings | None = None, session_factory: sessionmaker | None = None
) -> EnrichmentWorker:
    """Assemble an :class:`EnrichmentWorker` with classifier and describer sharing one vision client."""

    resolved = settings or get_settings()
    factory = session_factory or build_session_factory(resolved)
    usage = build_usage_recorder(settings=resolved, session_factory=factory)
    vision = VisionChatClient(settings=resolved, usage_recorder=usage) if resolved.llm.provider != "mock" else None
    return EnrichmentWorker(
        settings=resolved,
        tracker=ChangeTracker(session_factory=factory),
        enrichment_store=EnrichmentStore(session_factory=factory),
        run_tracker=EnrichmentRunTracker(session_factory=factory),
        image_store=build_image_store(resolved),
        classifier=ImageClassifier(settings=resolved, usage_recorder=usage, vision_client=vision),
        describer=ItemDescriber(settings=resolved, usage_recorder=usage, vision_client=vision),
    )


def build_matching_engine(
    *, settings: Settings | None = None, session_factory: sessionmaker | None = None
) -> MatchingEngine:
    resolved = settings or get_settings()
    factory = session_factory or build_session_factory(resolved)
    usage = build_usage_recorder(settings=resolved, session_factory=factory)
    return MatchingEngine(
        settings=resolved,
        claim_store=ClaimStore(session_factory=factory),
        enrichment_store=EnrichmentStore(session_factory=factory),
        similarity=SimilarityOracle(settings=resolved, usage_recorder=usage),
    )


def build_monitoring_service(
    *, settings: Settings | None = None, session_factory: sessionmaker | None = None
) -> MonitoringService:
    resolved = settings or get_settings()
    factory = session_factory or build_session_factory(resolved)
    return MonitoringService(
        settings=resolved,
        session_factory=factory,
        tracker=ChangeTracker(session_factory=factory),
        enrichment_store=EnrichmentStore(session_factory=factory),
        run_tracker=EnrichmentRunTracker(session_factory=factory),
        usage_recorder=build_usage_recorder(settings=resolved, session_factory=factory),
        found_item_store=FoundItemStore(session_factory=factory),
    )


__all__ = [
    "build_claim_store",
    "build_enrichment_worker",
    "build_found_item_store",
    "build_image_store",
    "build_matching_engine",
    "build_monitoring_service",
    "build_session_factory",
    "build_usage_recorder",
]
