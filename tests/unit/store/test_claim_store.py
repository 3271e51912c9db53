"""Tests for claim persistence and status transitions."""

from __future__ import annotations

import pytest

from lostfound.errors import InvalidClaimTransition
from lostfound.store.claim_store import ClaimStore
from lostfound.store.schema import ClaimStatus


def test_create_defaults_to_outstanding(session_factory):
    store = ClaimStore(session_factory=session_factory)
    claim = store.create(category="wallet", terminal="T2", gate="G14", brand="Gucci", commentary="black leather wallet")

    assert claim.claim_id
    assert claim.status is ClaimStatus.OUTSTANDING
    assert claim.claim_lodged_at.tzinfo is not None

    fetched = store.get(claim.claim_id)
    assert fetched is not None
    assert fetched.brand == "Gucci"
    assert [c.claim_id for c in store.list_outstanding()] == [claim.claim_id]


def test_status_transitions(session_factory):
    store = ClaimStore(session_factory=session_factory)
    claim = store.create(category="wallet", terminal="T2", gate="G14")

    resolved = store.update_status(claim.claim_id, "Resolved")
    assert resolved.status is ClaimStatus.RESOLVED
    assert store.list_outstanding() == []

    with pytest.raises(InvalidClaimTransition):
        store.update_status(claim.claim_id, ClaimStatus.CANCELLED)
    with pytest.raises(InvalidClaimTransition):
        store.update_status(claim.claim_id, ClaimStatus.OUTSTANDING)

    other = store.create(category="keys", terminal="T1", gate="G1")
    assert store.update_status(other.claim_id, ClaimStatus.CANCELLED).status is ClaimStatus.CANCELLED


def test_update_unknown_claim_returns_none(session_factory):
    store = ClaimStore(session_factory=session_factory)
    assert store.update_status("does-not-exist", "Resolved") is None
    assert store.get("does-not-exist") is None
