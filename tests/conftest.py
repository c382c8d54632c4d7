"""
Shared fixtures for tts-saas tests.

Nothing here touches the network: the synthesis service is an
httpx.MockTransport and the ledger is a SQLite file under tmp_path.
"""
from __future__ import annotations

import asyncio
from typing import Callable, Iterable, List, Optional

import httpx
import pytest

from tts_saas.audio import AudioStore
from tts_saas.core.config import GenerationConfig
from tts_saas.core.metrics import TTSSaaSMetrics
from tts_saas.gateway import SynthesisGateway
from tts_saas.ledger import LedgerStore
from tts_saas.services.credit_guard import CreditGuard
from tts_saas.services.pipeline import GenerationPipeline

BASE_URL = "http://tts.test"

WAV_CHUNKS = [b"RIFF\x24\x00\x00\x00WAVEfmt ", b"\x00\x01" * 64, b"\x02\x03" * 64, b"\x04\x05" * 32]


def audio_handler(
    chunks: Iterable[bytes] = WAV_CHUNKS,
    status: int = 200,
    delay: float = 0.0,
    fail_after: Optional[int] = None,
    seen: Optional[List[httpx.Request]] = None,
) -> Callable[[httpx.Request], httpx.Response]:
    """
    Fake synthesis endpoint answering every request with a chunked body.

    Args:
        chunks: Body chunks, yielded in order
        status: Response status code
        delay: Seconds to sleep before each chunk
        fail_after: Raise httpx.ReadError after this many chunks
        seen: List collecting every request received
    """
    chunks = list(chunks)

    async def body():
        for i, chunk in enumerate(chunks):
            if fail_after is not None and i == fail_after:
                raise httpx.ReadError("connection reset by peer")
            if delay:
                await asyncio.sleep(delay)
            yield chunk

    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        if status != 200:
            return httpx.Response(status, content=b"engine exploded")
        return httpx.Response(200, content=body(), headers={"content-type": "audio/wav"})

    return handler


def make_gateway(handler, timeout_s: float = 5.0, api_key: str = "") -> SynthesisGateway:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return SynthesisGateway(
        client,
        BASE_URL,
        api_key=api_key,
        timeout_s=timeout_s,
        health_timeout_s=1.0,
        owns_client=True,
    )


@pytest.fixture
def fresh_metrics() -> TTSSaaSMetrics:
    return TTSSaaSMetrics()


@pytest.fixture
def ledger(tmp_path):
    store = LedgerStore.from_url(f"sqlite:///{tmp_path / 'ledger.db'}")
    yield store
    store.dispose()


@pytest.fixture
def audio_store(tmp_path) -> AudioStore:
    return AudioStore(tmp_path / "audio")


@pytest.fixture
def make_pipeline(ledger, audio_store, fresh_metrics):
    """Factory: a pipeline over the shared ledger with the given fake upstream."""

    def _make(handler=None, timeout_s: float = 5.0, store: Optional[AudioStore] = None, **config):
        gateway = make_gateway(handler or audio_handler(), timeout_s=timeout_s)
        return GenerationPipeline(
            ledger,
            gateway,
            store or audio_store,
            config=GenerationConfig(**config),
            guard=CreditGuard(ledger, fresh_metrics),
            metrics=fresh_metrics,
        )

    return _make


def sample_value(metrics: TTSSaaSMetrics, name: str, labels: Optional[dict] = None) -> float:
    """Current value of a metric sample (0.0 if never recorded)."""
    value = metrics.registry.get_sample_value(name, labels or {})
    return value or 0.0
