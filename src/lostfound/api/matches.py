"""Bulk matching across every outstanding claim."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from lostfound.api.auth import require_api_key
from lostfound.api.claims import MatchListResponse, MatchRow
from lostfound.api.dependencies import get_matching_engine
from lostfound.services.matching import MatchingEngine

router = APIRouter(prefix="/matches", tags=["matches"], dependencies=[Depends(require_api_key)])


@router.get("", response_model=MatchListResponse)
def list_matches(
    limit: Optional[int] = Query(None, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    engine: MatchingEngine = Depends(get_matching_engine),
) -> MatchListResponse:
    rows = [MatchRow(**match.to_dict()) for match in engine.match_all(limit=limit, offset=offset)]
    return MatchListResponse(matches=rows, count=len(rows))
