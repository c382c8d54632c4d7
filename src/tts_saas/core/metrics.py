"""
Prometheus Metrics for the Generation Pipeline.

Metrics Exposed:
    tts_saas_generations_total{type,outcome}  - Generations by terminal outcome
    tts_saas_credits_reserved_total           - Characters deducted up front
    tts_saas_credits_released_total           - Characters given back on failure
    tts_saas_audio_bytes_total{branch}        - Bytes delivered per splitter branch
    tts_saas_persistence_failures_total       - Streams delivered but not saved
    tts_saas_upstream_first_byte_seconds      - Latency to the first audio chunk
    tts_saas_active_streams                   - Streams currently in flight

Usage:
    from tts_saas.core.metrics import metrics

    metrics.record_generation("tts", "completed")
    metrics.record_reserved(150)
    content, content_type = metrics.get_metrics_response()

Each TTSSaaSMetrics instance owns its CollectorRegistry, so tests can build
a fresh collector without clashing with the global one.
"""
from __future__ import annotations

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)


class TTSSaaSMetrics:
    """
    Metrics collector for the front end.

    Thread Safety:
        Prometheus metric operations are thread-safe, so ledger worker
        threads and the event loop may both record.
    """

    def __init__(self) -> None:
        self._registry = CollectorRegistry()

        self._generations_total = Counter(
            "tts_saas_generations_total",
            "Generation requests by type and terminal outcome",
            ["type", "outcome"],
            registry=self._registry,
        )
        self._credits_reserved = Counter(
            "tts_saas_credits_reserved_total",
            "Credits deducted before calling the synthesis service",
            registry=self._registry,
        )
        self._credits_released = Counter(
            "tts_saas_credits_released_total",
            "Credits returned after a failed generation",
            registry=self._registry,
        )
        self._audio_bytes_total = Counter(
            "tts_saas_audio_bytes_total",
            "Audio bytes passed through each splitter branch",
            ["branch"],
            registry=self._registry,
        )
        self._persistence_failures = Counter(
            "tts_saas_persistence_failures_total",
            "Streams delivered to the client but not durably saved",
            registry=self._registry,
        )
        self._first_byte = Histogram(
            "tts_saas_upstream_first_byte_seconds",
            "Time from opening the upstream stream to its first chunk",
            buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
            registry=self._registry,
        )
        self._active_streams = Gauge(
            "tts_saas_active_streams",
            "Streaming generations currently in flight",
            registry=self._registry,
        )

    @property
    def registry(self) -> CollectorRegistry:
        return self._registry

    def record_generation(self, gen_type: str, outcome: str) -> None:
        """
        Record a generation that reached a terminal outcome.

        Args:
            gen_type: "tts" or "translate-tts"
            outcome: Terminal status ("completed", "failed", "completed_unsaved")
                or a denial reason code
        """
        self._generations_total.labels(type=gen_type, outcome=outcome).inc()

    def record_reserved(self, amount: int) -> None:
        if amount > 0:
            self._credits_reserved.inc(amount)

    def record_released(self, amount: int) -> None:
        if amount > 0:
            self._credits_released.inc(amount)

    def record_audio_bytes(self, branch: str, nbytes: int) -> None:
        if nbytes > 0:
            self._audio_bytes_total.labels(branch=branch).inc(nbytes)

    def record_persistence_failure(self) -> None:
        self._persistence_failures.inc()

    def observe_first_byte(self, seconds: float) -> None:
        self._first_byte.observe(seconds)

    def stream_started(self) -> None:
        self._active_streams.inc()

    def stream_finished(self) -> None:
        self._active_streams.dec()

    def get_metrics_response(self) -> tuple[bytes, str]:
        """
        Get metrics in Prometheus format.

        Returns:
            Tuple of (content_bytes, content_type)
        """
        return (generate_latest(self._registry), CONTENT_TYPE_LATEST)


metrics = TTSSaaSMetrics()
