"""Read-only monitoring endpoints."""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Query, status

from lostfound.api.auth import require_api_key
from lostfound.api.dependencies import get_monitoring_service
from lostfound.services.monitoring import MonitoringService

router = APIRouter(prefix="/monitoring", tags=["monitoring"], dependencies=[Depends(require_api_key)])


@router.get("/summary")
def monitoring_summary(service: MonitoringService = Depends(get_monitoring_service)) -> Dict[str, Any]:
    """Pending changes, enrichment outcomes, row counts and the latest run."""

    return service.summary()


@router.get("/usage")
def monitoring_usage(
    days: int = Query(10, ge=1, le=365),
    service: MonitoringService = Depends(get_monitoring_service),
) -> Dict[str, Any]:
    """Per-call AI usage and derived dollar cost."""

    return service.usage_report(days=days)


@router.get("/items/{filename:path}")
def monitoring_item(filename: str, service: MonitoringService = Depends(get_monitoring_service)) -> Dict[str, Any]:
    """Ledger status, failure count and enriched rows for one found item."""

    item = service.item_status(filename)
    if item is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown item {filename}")
    return item
