"""
FastAPI Application Entry Point.

Usage:
    uvicorn tts_saas.main:app --host 0.0.0.0 --port 8080

Startup builds the service container from settings (unless one was
passed to create_app); shutdown drains pending audio saves before closing
the gateway and database connections.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI

from tts_saas import __version__
from tts_saas.api.dependencies import ensure_container
from tts_saas.api.routes import router
from tts_saas.core.logging import configure_logging, get_logger, info
from tts_saas.services.container import ServiceContainer

_LOG = get_logger("tts-saas.main")


def create_app(container: Optional[ServiceContainer] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        container: Prebuilt services (tests); built from settings on
            startup when omitted. A passed container is drained but not
            closed on shutdown.
    """
    configure_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        current = ensure_container(app)
        info(_LOG, "startup", version=__version__)
        try:
            yield
        finally:
            await current.pipeline.drain()
            if container is None:
                await current.aclose()
            info(_LOG, "shutdown")

    app = FastAPI(title="tts-saas", version=__version__, lifespan=lifespan)
    app.state.container = container
    app.include_router(router)
    return app


app = create_app()
