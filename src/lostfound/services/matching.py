"""Matching engine ranking enriched items against outstanding claims.

Candidates are narrowed with an exact structural join (category, terminal and
gate, case-insensitive and trimmed) before the similarity oracle scores
``brand + item details`` against ``brand + commentary``. Results are pure
query output and are never persisted.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, time as dt_time, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Tuple

from lostfound.embedding.similarity import SimilarityOracle, clamp_unit
from lostfound.observability import Observability, get_observability
from lostfound.settings import Settings, get_settings
from lostfound.store.claim_store import ClaimStore
from lostfound.store.enrichment_store import EnrichmentStore
from lostfound.store.schema import Claim, ClaimStatus, EnrichedItem, Match, normalize_key, split_location

LOGGER = logging.getLogger(__name__)


def score_percent(similarity: float) -> float:
    """Scale a ``[0, 1]`` similarity to a percentage rounded to 2 decimals."""

    return round(clamp_unit(similarity) * 100.0, 2)


def item_text(item: EnrichedItem) -> str:
    details = item.item_details
    if details is None:
        return ""
    return f"{details.brand.lower()} {details.as_text()}"


def claim_text(claim: Claim) -> str:
    return f"{(claim.brand or '').strip().lower()} {claim.commentary or ''}"


def _sort_key(match: Match) -> Tuple[float, float, str]:
    found = match.found_time.timestamp() if match.found_time else float("-inf")
    return (-match.similarity_score_percent, -found, match.filename)


def within_window(item: EnrichedItem, claim: Claim, days: int) -> bool:
    """True when ``found_time`` is within ``days`` of the claim's lodge date."""

    if item.found_time is None or claim.claim_lodged_at is None:
        return False
    lodged_day = datetime.combine(claim.claim_lodged_at.astimezone(timezone.utc).date(), dt_time.min, tzinfo=timezone.utc)
    return lodged_day - timedelta(days=days) <= item.found_time < lodged_day + timedelta(days=days)


class MatchingEngine:
    """Rank enriched items for outstanding claims."""

    def __init__(
        self,
        *,
        claim_store: ClaimStore,
        enrichment_store: EnrichmentStore,
        similarity: SimilarityOracle,
        settings: Settings | None = None,
        observability: Observability | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.claims = claim_store
        self.items = enrichment_store
        self.similarity = similarity
        self.observability = observability or get_observability(component="matching", settings=self.settings)
        config = self.settings.matching
        self.top_k = int(config.top_k)
        self.temporal_window_enabled = bool(config.temporal_window_enabled)
        self.temporal_window_days = int(config.temporal_window_days)

    def match(self, claim_id: str) -> List[Match]:
        """Return at most ``top_k`` matches for ``claim_id``.

        Unknown or non-outstanding claims yield an empty list.
        """

        started = time.perf_counter()
        claim = self.claims.get(claim_id)
        if claim is None or claim.status != ClaimStatus.OUTSTANDING:
            LOGGER.info("No outstanding claim for claim_id=%s", claim_id)
            return []
        candidates = self.items.candidates_for_category(claim.category)
        results = self._rank(claim, candidates, {})[: self.top_k]
        self._report("match", started, claims=1, matches=len(results))
        return results

    def match_all(self, *, limit: Optional[int] = None, offset: int = 0) -> List[Match]:
        """Return every match across outstanding claims, paginated by ``limit``/``offset``."""

        started = time.perf_counter()
        claims = self.claims.list_outstanding()
        by_category: Dict[str, List[EnrichedItem]] = {}
        cache: Dict[Tuple[str, str], float] = {}
        results: List[Match] = []
        for claim in claims:
            category = normalize_key(claim.category)
            if category not in by_category:
                by_category[category] = self.items.candidates_for_category(category)
            results.extend(self._rank(claim, by_category[category], cache))
        page = results[offset:] if limit is None else results[offset : offset + limit]
        self._report("match_all", started, claims=len(claims), matches=len(page))
        return page

    def candidates(self, claim: Claim, items: Iterable[EnrichedItem]) -> List[EnrichedItem]:
        """Apply the structural filter (category, terminal, gate, optional window)."""

        category = normalize_key(claim.category)
        terminal = normalize_key(claim.terminal)
        gate = normalize_key(claim.gate)
        survivors: List[EnrichedItem] = []
        for item in items:
            if item.item_details is None or normalize_key(item.classification) != category:
                continue
            if split_location(item.location) != (terminal, gate):
                continue
            if self.temporal_window_enabled and not within_window(item, claim, self.temporal_window_days):
                continue
            survivors.append(item)
        return survivors

    def _rank(self, claim: Claim, items: Iterable[EnrichedItem], cache: Dict[Tuple[str, str], float]) -> List[Match]:
        query = claim_text(claim)
        matches: List[Match] = []
        for item in self.candidates(claim, items):
            text = item_text(item)
            key = (query, text) if query <= text else (text, query)
            if key not in cache:
                cache[key] = self.similarity.similarity(text, query)
            matches.append(
                Match(
                    claim_id=claim.claim_id,
                    filename=item.filename,
                    found_time=item.found_time,
                    item_details_text=item.item_details.as_text(),
                    similarity_score_percent=score_percent(cache[key]),
                )
            )
        matches.sort(key=_sort_key)
        return matches

    def _report(self, operation: str, started: float, *, claims: int, matches: int) -> None:
        elapsed_ms = (time.perf_counter() - started) * 1000.0
        self.observability.record_timing(f"matching.{operation}_ms", elapsed_ms)
        self.observability.emit_event("matching.query", operation=operation, claims=claims, matches=matches)


__all__ = ["MatchingEngine", "claim_text", "item_text", "score_percent", "within_window"]
