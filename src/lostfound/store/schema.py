"""Domain records for found items, enrichments, claims and matches.

These dataclasses are the in-memory shape of rows persisted by the stores in
:mod:`lostfound.store`. ``item_details`` is schema-on-read: a model response is
either parsed into attribute fields or kept verbatim with an ``_unparsed``
marker so it can be reviewed by hand.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Union

DETAIL_FIELDS = ("item_type", "color", "brand", "distinguishing_features", "condition")
UNPARSED_MARKER = "_unparsed"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Return ``value`` as an aware UTC datetime (SQLite drops tzinfo)."""

    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Coerce ISO strings or datetimes from ingestion payloads into UTC datetimes."""

    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return as_utc(datetime.fromisoformat(text))


class ClaimStatus(str, Enum):
    """Lifecycle states of a claim."""

    OUTSTANDING = "Outstanding"
    RESOLVED = "Resolved"
    CANCELLED = "Cancelled"


ALLOWED_TRANSITIONS = {
    ClaimStatus.OUTSTANDING: {ClaimStatus.RESOLVED, ClaimStatus.CANCELLED},
    ClaimStatus.RESOLVED: set(),
    ClaimStatus.CANCELLED: set(),
}


@dataclass(slots=True)
class ParsedDetails:
    """Structured attributes extracted from an item image."""

    fields: Dict[str, Any]

    @property
    def brand(self) -> str:
        value = self.fields.get("brand")
        return str(value).strip() if value else ""

    def to_json(self) -> Dict[str, Any]:
        return dict(self.fields)

    def as_text(self) -> str:
        return json.dumps(self.fields, ensure_ascii=False)


@dataclass(slots=True)
class UnparsedDetails:
    """Raw model output that could not be parsed into attribute fields."""

    raw_text: str
    parse_error: str = ""

    @property
    def brand(self) -> str:
        return ""

    def to_json(self) -> Dict[str, Any]:
        return {UNPARSED_MARKER: True, "raw_text": self.raw_text, "parse_error": self.parse_error}

    def as_text(self) -> str:
        return self.raw_text


ItemDetails = Union[ParsedDetails, UnparsedDetails]


def details_from_json(payload: Optional[Mapping[str, Any]]) -> Optional[ItemDetails]:
    """Rebuild the tagged ``item_details`` value from its stored JSON form."""

    if payload is None:
        return None
    if isinstance(payload, str):
        return UnparsedDetails(raw_text=payload)
    if payload.get(UNPARSED_MARKER):
        return UnparsedDetails(raw_text=str(payload.get("raw_text", "")), parse_error=str(payload.get("parse_error", "")))
    return ParsedDetails(fields=dict(payload))


def split_location(location: Optional[str]) -> tuple[str, str]:
    """Split ``"T2, G14"`` into normalized ``("t2", "g14")`` components."""

    parts = (location or "").split(",")
    terminal = parts[0].strip().lower() if len(parts) > 0 else ""
    gate = parts[1].strip().lower() if len(parts) > 1 else ""
    return terminal, gate


def normalize_key(value: Optional[str]) -> str:
    return (value or "").strip().lower()


@dataclass(slots=True)
class FoundItem:
    """A found object logged by the ingestion collaborator."""

    seq: int
    filename: str
    location: Optional[str]
    found_time: Optional[datetime]
    inserted_at: Optional[datetime] = None


@dataclass(slots=True)
class EnrichedItem:
    """Append-only enrichment of a found item."""

    id: int
    filename: str
    classification: str
    location: Optional[str]
    found_time: Optional[datetime]
    item_details: Optional[ItemDetails]
    etl_timestamp: Optional[datetime] = None


@dataclass(slots=True)
class Claim:
    """A report of a lost possession."""

    claim_id: str
    category: str
    terminal: str
    gate: str
    commentary: Optional[str] = None
    brand: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None
    phone_number: Optional[str] = None
    helpdesk_location: Optional[str] = None
    status: ClaimStatus = ClaimStatus.OUTSTANDING
    claim_lodged_at: datetime = field(default_factory=utcnow)


@dataclass(slots=True)
class Match:
    """Ephemeral ranking result pairing a claim with an enriched item."""

    claim_id: str
    filename: str
    found_time: Optional[datetime]
    item_details_text: str
    similarity_score_percent: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "claim_id": self.claim_id,
            "filename": self.filename,
            "found_time": self.found_time.isoformat() if self.found_time else None,
            "item_details": self.item_details_text,
            "similarity_score": self.similarity_score_percent,
        }


__all__ = [
    "ALLOWED_TRANSITIONS",
    "Claim",
    "ClaimStatus",
    "DETAIL_FIELDS",
    "EnrichedItem",
    "FoundItem",
    "ItemDetails",
    "Match",
    "ParsedDetails",
    "UNPARSED_MARKER",
    "UnparsedDetails",
    "as_utc",
    "details_from_json",
    "normalize_key",
    "parse_timestamp",
    "split_location",
    "utcnow",
]
