"""
Service Container.

Builds every long-lived collaborator from Settings once, so the API layer
and the CLI share the same wiring. Tests build a container by hand with a
mock-transport gateway and a temporary database.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import httpx

from tts_saas.audio import AudioStore
from tts_saas.core.config import ServiceConfig, Settings
from tts_saas.core.logging import get_logger, info
from tts_saas.core.metrics import TTSSaaSMetrics, metrics as default_metrics
from tts_saas.gateway import SynthesisGateway
from tts_saas.ledger import LedgerStore

from .credit_guard import CreditGuard
from .identity import HeaderIdentityProvider, IdentityProvider
from .pipeline import GenerationPipeline

_LOG = get_logger("tts-saas.container")


@dataclass
class ServiceContainer:
    config: ServiceConfig
    ledger: LedgerStore
    gateway: SynthesisGateway
    audio_store: AudioStore
    guard: CreditGuard
    pipeline: GenerationPipeline
    identity: IdentityProvider
    metrics: TTSSaaSMetrics

    async def aclose(self) -> None:
        """Finish background work, then release connections."""
        await self.pipeline.drain()
        await self.gateway.aclose()
        self.ledger.dispose()


def build_container(
    settings: Settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    metrics: Optional[TTSSaaSMetrics] = None,
) -> ServiceContainer:
    """
    Wire the services described by ``settings``.

    Args:
        settings: Loaded settings
        transport: httpx transport for the gateway (tests pass MockTransport)
        metrics: Metrics collector (global one by default)
    """
    config = settings.get_service_config()
    metrics = metrics or default_metrics

    ledger = LedgerStore.from_url(config.ledger.database_url)
    gateway = SynthesisGateway.from_config(config.gateway, transport=transport)
    audio_store = AudioStore(config.storage.audio_dir, config.storage.url_prefix)
    guard = CreditGuard(ledger, metrics)
    pipeline = GenerationPipeline(
        ledger,
        gateway,
        audio_store,
        config=config.generation,
        guard=guard,
        metrics=metrics,
    )
    identity = HeaderIdentityProvider(
        user_header=config.auth.user_header,
        role_header=config.auth.role_header,
        proxy_secret=config.auth.proxy_secret,
    )

    info(_LOG, "services_ready", gateway=gateway.base_url, audio_dir=str(audio_store.directory))
    return ServiceContainer(
        config=config,
        ledger=ledger,
        gateway=gateway,
        audio_store=audio_store,
        guard=guard,
        pipeline=pipeline,
        identity=identity,
        metrics=metrics,
    )
