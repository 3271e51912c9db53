"""Tests for similarity scoring helpers."""

from __future__ import annotations

import math
from unittest.mock import Mock

import pytest

from lostfound.embedding.similarity import SimilarityOracle, clamp_unit, cosine_similarity, token_jaccard


def test_cosine_similarity_edges():
    assert cosine_similarity([1.0, 0.0], [1.0, 0.0]) == pytest.approx(1.0)
    assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)
    assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0


def test_clamp_unit():
    assert clamp_unit(-0.3) == 0.0
    assert clamp_unit(1.2) == 1.0
    assert clamp_unit(math.nan) == 0.0


def test_token_jaccard_is_symmetric():
    assert token_jaccard("black wallet", "Wallet black") == 1.0
    assert token_jaccard("black wallet", "red wallet") == pytest.approx(1 / 3)
    assert token_jaccard("", "wallet") == 0.0


def test_oracle_uses_embedder_and_records_usage(settings):
    embedder = Mock()
    embedder.embed_documents.return_value = [[1.0, 0.0], [-1.0, 0.0]]
    usage = Mock()
    oracle = SimilarityOracle(settings=settings, usage_recorder=usage, embedder=embedder)

    assert oracle.similarity("gucci wallet", "red umbrella") == 0.0
    embedder.embed_documents.assert_called_once_with(["gucci wallet", "red umbrella"])
    assert usage.record.call_args.kwargs["function_name"] == "similarity"
    assert usage.record.call_args.kwargs["tokens"] == 4
