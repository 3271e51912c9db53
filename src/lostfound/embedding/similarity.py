"""Semantic similarity between claim text and enriched item text."""

from __future__ import annotations

import logging
import math
import re
from typing import List, Sequence

from lostfound.settings import Settings, get_settings
from lostfound.store.schema import utcnow
from lostfound.store.usage_store import UsageRecorder

LOGGER = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"[a-z0-9]+")


def cosine_similarity(left: Sequence[float], right: Sequence[float]) -> float:
    dot = sum(a * b for a, b in zip(left, right))
    norm = math.sqrt(sum(a * a for a in left)) * math.sqrt(sum(b * b for b in right))
    if not norm:
        return 0.0
    return dot / norm


def token_jaccard(left: str, right: str) -> float:
    """Deterministic lexical overlap used by the mock provider."""

    left_tokens = set(_TOKEN_RE.findall(left.lower()))
    right_tokens = set(_TOKEN_RE.findall(right.lower()))
    if not left_tokens or not right_tokens:
        return 0.0
    return len(left_tokens & right_tokens) / len(left_tokens | right_tokens)


def clamp_unit(value: float) -> float:
    if math.isnan(value):
        return 0.0
    return max(0.0, min(1.0, value))


class SimilarityOracle:
    """Score two text spans in ``[0, 1]`` with embeddings or the mock provider."""

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        usage_recorder: UsageRecorder | None = None,
        embedder=None,
    ) -> None:
        self.settings = settings or get_settings()
        self.provider = self.settings.llm.provider
        self.model_name = self.settings.llm.embedding_model
        self._usage = usage_recorder
        self._embedder = embedder
        if self._embedder is None and self.provider != "mock":
            self._embedder = self._build_embedder()

    def _build_embedder(self):
        from langchain_ollama import OllamaEmbeddings

        return OllamaEmbeddings(
            model=self.model_name,
            base_url=self.settings.llm.ollama_base_url,
            client_kwargs={"timeout": self.settings.llm.request_timeout_seconds},
        )

    def similarity(self, left: str, right: str) -> float:
        """Return a symmetric closeness score clamped to ``[0, 1]``."""

        if self._embedder is None:
            return clamp_unit(token_jaccard(left, right))

        started_at = utcnow()
        vectors: List[List[float]] = self._embedder.embed_documents([left, right])
        ended_at = utcnow()
        if self._usage is not None:
            tokens = len(_TOKEN_RE.findall(left.lower())) + len(_TOKEN_RE.findall(right.lower()))
            self._usage.record(
                function_name="similarity",
                model_name=self.model_name,
                tokens=tokens,
                started_at=started_at,
                ended_at=ended_at,
            )
        return clamp_unit(cosine_similarity(vectors[0], vectors[1]))


__all__ = ["SimilarityOracle", "clamp_unit", "cosine_similarity", "token_jaccard"]
