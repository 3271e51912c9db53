"""FastAPI app factory for the lostfound help-desk API."""

from fastapi import FastAPI

from lostfound.api.claims import router as claims_router
from lostfound.api.items import router as items_router
from lostfound.api.matches import router as matches_router
from lostfound.api.monitoring import router as monitoring_router


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI instance.
    """
    app = FastAPI(title="lostfound Help Desk API", version="0.1")
    app.include_router(claims_router)
    app.include_router(items_router)
    app.include_router(matches_router)
    app.include_router(monitoring_router)

    @app.get("/health", tags=["health"])
    def health() -> dict:
        return {"status": "ok"}

    return app


# For uvicorn, expose `app` at module level
app = create_app()
