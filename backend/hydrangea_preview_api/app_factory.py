from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import Settings
from .preview.resources import ObjectHandleRegistry
from .routers import preview
from .session_store import PreviewSessionStore


logger = logging.getLogger(__name__)


def create_app(settings: Settings) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):  # noqa: ANN001
        logger.info("preview api using %s transport", settings.acquisition_transport)
        yield
        await app.state.sessions.close_all()

    app = FastAPI(title="Hydrangea Preview API", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.handles = ObjectHandleRegistry()
    app.state.sessions = PreviewSessionStore(
        ttl_seconds=max(0, int(settings.session_ttl_minutes)) * 60,
        max_sessions=settings.max_sessions,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(preview.router, prefix="/api")

    @app.get("/health")
    def health() -> dict:
        return {"ok": True, "sessions": len(app.state.sessions), "handles": len(app.state.handles)}

    return app
