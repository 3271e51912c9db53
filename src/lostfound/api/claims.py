"""Claim intake, status transitions and per-claim matches."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field, field_validator

from lostfound.api.auth import require_api_key
from lostfound.api.dependencies import get_claim_store, get_matching_engine
from lostfound.classification.vocabulary import canonical_label
from lostfound.errors import InvalidClaimTransition
from lostfound.services.matching import MatchingEngine
from lostfound.store.claim_store import ClaimStore
from lostfound.store.schema import Claim

router = APIRouter(prefix="/claims", tags=["claims"], dependencies=[Depends(require_api_key)])
LOGGER = logging.getLogger(__name__)


class ClaimCreateRequest(BaseModel):
    """Payload for filing a lost-item claim."""

    category: str
    terminal: str = Field(min_length=1)
    gate: str = Field(min_length=1)
    commentary: Optional[str] = None
    brand: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None
    phone_number: Optional[str] = None
    helpdesk_location: Optional[str] = None
    claim_lodged_at: Optional[datetime] = None

    @field_validator("category")
    @classmethod
    def _known_category(cls, value: str) -> str:
        label = canonical_label(value)
        if label is None:
            raise ValueError(f"Unknown category '{value}'")
        return label


class ClaimResponse(BaseModel):
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
    status: str
    claim_lodged_at: datetime

    @classmethod
    def from_claim(cls, claim: Claim) -> "ClaimResponse":
        return cls(
            claim_id=claim.claim_id,
            category=claim.category,
            terminal=claim.terminal,
            gate=claim.gate,
            commentary=claim.commentary,
            brand=claim.brand,
            name=claim.name,
            email=claim.email,
            phone_number=claim.phone_number,
            helpdesk_location=claim.helpdesk_location,
            status=claim.status.value,
            claim_lodged_at=claim.claim_lodged_at,
        )


class ClaimStatusRequest(BaseModel):
    status: Literal["Outstanding", "Resolved", "Cancelled"]


class MatchRow(BaseModel):
    """One ranked match as returned to help-desk callers."""

    claim_id: str
    filename: str
    found_time: Optional[datetime] = None
    item_details: str
    similarity_score: float


class MatchListResponse(BaseModel):
    matches: List[MatchRow]
    count: int


@router.post("", response_model=ClaimResponse, status_code=status.HTTP_201_CREATED)
def create_claim(payload: ClaimCreateRequest, store: ClaimStore = Depends(get_claim_store)) -> ClaimResponse:
    """File a new outstanding claim."""

    claim = store.create(**payload.model_dump())
    return ClaimResponse.from_claim(claim)


@router.get("/{claim_id}", response_model=ClaimResponse)
def get_claim(claim_id: str, store: ClaimStore = Depends(get_claim_store)) -> ClaimResponse:
    claim = store.get(claim_id)
    if claim is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Claim not found")
    return ClaimResponse.from_claim(claim)


@router.post("/{claim_id}/status", response_model=ClaimResponse)
def update_claim_status(
    claim_id: str,
    payload: ClaimStatusRequest,
    store: ClaimStore = Depends(get_claim_store),
) -> ClaimResponse:
    """Resolve or cancel an outstanding claim."""

    try:
        claim = store.update_status(claim_id, payload.status)
    except InvalidClaimTransition as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if claim is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Claim not found")
    LOGGER.info("Claim %s moved to %s", claim_id, payload.status)
    return ClaimResponse.from_claim(claim)


@router.get("/{claim_id}/matches", response_model=MatchListResponse)
def get_matches(claim_id: str, engine: MatchingEngine = Depends(get_matching_engine)) -> MatchListResponse:
    """Top matches for a claim; unknown claims return an empty list."""

    rows = [MatchRow(**match.to_dict()) for match in engine.match(claim_id)]
    return MatchListResponse(matches=rows, count=len(rows))
