"""
FastAPI Dependency Providers.

    get_settings()   - Loads and caches application configuration
    get_container()  - The ServiceContainer held on app.state

The container is built once at startup (main.py) unless a test put a
prebuilt one on the app first. Route handlers receive it via Depends().

Usage in Route Handlers:
    @router.get("/v1/account")
    async def account(request: Request, container: ServiceContainer = Depends(get_container)):
        ...
"""
from __future__ import annotations

from functools import lru_cache

from fastapi import Request

from tts_saas.core.config import Settings, load_settings
from tts_saas.services.container import ServiceContainer, build_container


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Load and cache application settings.

    The path comes from TTS_SAAS_SETTINGS, falling back to
    config/settings.yaml.
    """
    return load_settings()


def ensure_container(app) -> ServiceContainer:
    """Build the app's container from settings if none is installed."""
    container = getattr(app.state, "container", None)
    if container is None:
        container = build_container(get_settings())
        app.state.container = container
    return container


def get_container(request: Request) -> ServiceContainer:
    return ensure_container(request.app)
