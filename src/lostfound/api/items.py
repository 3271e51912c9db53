"""Time-limited access URLs for found-item images."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from lostfound.api.auth import get_api_settings, require_api_key
from lostfound.api.dependencies import get_image_store
from lostfound.errors import BlobNotFoundError
from lostfound.settings import Settings
from lostfound.storage.images import ImageStore

router = APIRouter(prefix="/items", tags=["items"], dependencies=[Depends(require_api_key)])


class PresignedUrlResponse(BaseModel):
    filename: str
    url: str
    ttl_seconds: int


@router.get("/{filename:path}/url", response_model=PresignedUrlResponse)
def get_presigned_access_url(
    filename: str,
    ttl_seconds: Optional[int] = Query(None, ge=1, le=7 * 24 * 3600),
    images: ImageStore = Depends(get_image_store),
    settings: Settings = Depends(get_api_settings),
) -> PresignedUrlResponse:
    """Mint a URL valid for ``ttl_seconds`` (defaults to ``storage.presigned_url_ttl_seconds``)."""

    ttl = int(ttl_seconds or settings.storage.presigned_url_ttl_seconds)
    try:
        url = images.presigned_url(filename, ttl_seconds=ttl)
    except BlobNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown item {filename}") from exc
    return PresignedUrlResponse(filename=filename, url=url, ttl_seconds=ttl)
