"""Tests for the help-desk API routers."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from lostfound.api.app import create_app
from lostfound.api.auth import get_api_settings
from lostfound.api.dependencies import (
    get_claim_store,
    get_image_store,
    get_matching_engine,
    get_monitoring_service,
)
from lostfound.errors import BlobNotFoundError
from lostfound.store.claim_store import ClaimStore
from lostfound.store.schema import Match

HEADERS = {"X-API-KEY": "test-key"}


class _StubEngine:
    def __init__(self, matches):
        self.matches = matches
        self.seen = []

    def match(self, claim_id):
        self.seen.append(("match", claim_id))
        return [m for m in self.matches if m.claim_id == claim_id][:3]

    def match_all(self, *, limit=None, offset=0):
        self.seen.append(("match_all", limit, offset))
        rows = self.matches[offset:]
        return rows if limit is None else rows[:limit]


class _StubImages:
    def presigned_url(self, filename, ttl_seconds=None):
        if filename != "img001.jpg":
            raise BlobNotFoundError("missing", filename=filename)
        return f"https://storage.example/lost_items/{filename}?ttl={ttl_seconds}"


class _StubMonitoring:
    def summary(self):
        return {"pending_changes": 2, "row_counts": {"found_items": 5}}

    def usage_report(self, *, days=10):
        return {"days": days, "calls": 0, "records": []}

    def item_status(self, filename):
        if filename != "img001.jpg":
            return None
        return {"filename": filename, "ledger_status": "enriched", "failure_count": 0, "enriched": []}


@pytest.fixture()
def client(session_factory, settings):
    matches = [
        Match(
            claim_id="claim-1",
            filename="img001.jpg",
            found_time=datetime(2025, 3, 1, 8, 0, tzinfo=timezone.utc),
            item_details_text='{"brand": "Gucci"}',
            similarity_score_percent=81.23,
        )
    ]
    app = create_app()
    app.dependency_overrides[get_api_settings] = lambda: settings
    app.dependency_overrides[get_claim_store] = lambda: ClaimStore(session_factory=session_factory)
    app.dependency_overrides[get_matching_engine] = lambda: _StubEngine(matches)
    app.dependency_overrides[get_image_store] = lambda: _StubImages()
    app.dependency_overrides[get_monitoring_service] = lambda: _StubMonitoring()
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_requires_api_key(client):
    assert client.get("/claims/claim-1/matches").status_code == 401
    assert client.get("/claims/claim-1/matches", headers={"X-API-KEY": "wrong"}).status_code == 403


def test_get_matches_returns_rows(client):
    response = client.get("/claims/claim-1/matches", headers=HEADERS)
    assert response.status_code == 200
    body = response.json()
    assert body["count"] == 1
    row = body["matches"][0]
    assert row["filename"] == "img001.jpg"
    assert row["similarity_score"] == 81.23
    assert row["item_details"] == '{"brand": "Gucci"}'


def test_unknown_claim_matches_is_empty_not_error(client):
    response = client.get("/claims/unknown/matches", headers=HEADERS)
    assert response.status_code == 200
    assert response.json() == {"matches": [], "count": 0}


def test_presigned_url_and_not_found(client):
    ok = client.get("/items/img001.jpg/url", headers=HEADERS)
    assert ok.status_code == 200
    assert ok.json()["ttl_seconds"] == 3600
    assert ok.json()["url"].endswith("ttl=3600")

    custom = client.get("/items/img001.jpg/url", params={"ttl_seconds": 60}, headers=HEADERS)
    assert custom.json()["ttl_seconds"] == 60

    missing = client.get("/items/nope.jpg/url", headers=HEADERS)
    assert missing.status_code == 404


def test_claim_lifecycle(client):
    created = client.post(
        "/claims",
        json={
            "category": "Wallet",
            "terminal": "T2",
            "gate": "G14",
            "brand": "Gucci",
            "commentary": "black leather wallet",
            "email": "traveller@example.com",
        },
        headers=HEADERS,
    )
    assert created.status_code == 201
    claim = created.json()
    assert claim["status"] == "Outstanding"
    assert claim["category"] == "wallet"

    fetched = client.get(f"/claims/{claim['claim_id']}", headers=HEADERS)
    assert fetched.status_code == 200
    assert fetched.json()["brand"] == "Gucci"

    resolved = client.post(f"/claims/{claim['claim_id']}/status", json={"status": "Resolved"}, headers=HEADERS)
    assert resolved.status_code == 200
    assert resolved.json()["status"] == "Resolved"

    conflict = client.post(f"/claims/{claim['claim_id']}/status", json={"status": "Cancelled"}, headers=HEADERS)
    assert conflict.status_code == 409

    assert client.get("/claims/missing", headers=HEADERS).status_code == 404
    assert client.post("/claims/missing/status", json={"status": "Resolved"}, headers=HEADERS).status_code == 404


def test_claim_with_unknown_category_is_rejected(client):
    response = client.post("/claims", json={"category": "spaceship", "terminal": "T1", "gate": "G1"}, headers=HEADERS)
    assert response.status_code == 422


def test_bulk_matches_and_monitoring(client):
    bulk = client.get("/matches", params={"limit": 5, "offset": 0}, headers=HEADERS)
    assert bulk.status_code == 200
    assert bulk.json()["count"] == 1

    summary = client.get("/monitoring/summary", headers=HEADERS)
    assert summary.json()["pending_changes"] == 2

    usage = client.get("/monitoring/usage", params={"days": 3}, headers=HEADERS)
    assert usage.json()["days"] == 3


def test_presigned_url_default_follows_configured_ttl(client, settings_factory):
    client.app.dependency_overrides[get_api_settings] = lambda: settings_factory(
        storage={"presigned_url_ttl_seconds": 900}
    )

    response = client.get("/items/img001.jpg/url", headers=HEADERS)

    assert response.status_code == 200
    assert response.json()["ttl_seconds"] == 900
    assert response.json()["url"].endswith("ttl=900")


def test_monitoring_item_status(client):
    found = client.get("/monitoring/items/img001.jpg", headers=HEADERS)
    assert found.status_code == 200
    assert found.json()["ledger_status"] == "enriched"

    assert client.get("/monitoring/items/unknown.jpg", headers=HEADERS).status_code == 404
