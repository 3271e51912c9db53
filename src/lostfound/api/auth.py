"""API key authentication for the lostfound query surface."""

import hmac
from typing import Optional

from fastapi import Depends, Header, HTTPException, status

from lostfound.settings import Settings, get_settings


def get_api_settings() -> Settings:
    """Dependency provider for the active settings."""

    return get_settings()


def require_api_key(
    x_api_key: Optional[str] = Header(None),
    settings: Settings = Depends(get_api_settings),
) -> None:
    """Validate the ``X-API-KEY`` header against ``settings.api.key``.

    Raises:
        HTTPException: 401 when the header is missing, 403 when it does not match.
    """
    if not x_api_key:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-API-KEY")
    expected = settings.api.key
    if not expected:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="API key not configured")
    if not hmac.compare_digest(x_api_key.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid API key")
