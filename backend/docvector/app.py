"""FastAPI application setup for docvector."""

from __future__ import annotations

from fastapi import FastAPI

from docvector.api.dependencies import ServiceContainer
from docvector.api.routes_admin import router as admin_router
from docvector.api.routes_index import router as index_router
from docvector.api.routes_query import router as query_router
from docvector.core.config import Settings, get_settings
from docvector.core.logging import configure_logging


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level, use_json=settings.log_json)

    app = FastAPI(
        title="docvector",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.container = ServiceContainer(settings)

    app.include_router(index_router, prefix="/index", tags=["index"])
    app.include_router(query_router, prefix="", tags=["query"])
    app.include_router(admin_router, prefix="", tags=["admin"])

    @app.on_event("startup")
    async def startup() -> None:
        """Open the store and start watching when enabled."""
        await app.state.container.startup()

    @app.on_event("shutdown")
    async def shutdown() -> None:
        await app.state.container.shutdown()

    return app


app = create_app()
