"""
Generation Pipeline: Credits In, Audio Out, Ledger Reconciled.

This module provides GenerationPipeline, the orchestrator behind both
generation endpoints. For one request it:

    1. Validates the request (nothing is charged for a bad request)
    2. Authorizes the caller against their subscription
    3. Deducts the credits up front and creates the generation record
    4. Opens the upstream audio stream and waits for its first chunk
    5. Hands one copy of the stream to the caller and saves the other
       copy to disk in a background task
    6. Moves the record to its terminal status

State Machine:
    VALIDATING -> AUTHORIZED -> RESERVED -> STREAMING
        -> {PERSISTING, DELIVERED} -> COMPLETED | FAILED

Failure Handling:
    Stage                     Credits     Record
    ------------------------  ----------  -----------------
    validation / denial       untouched   none
    record creation           released    none
    upstream (before audio)   released    failed
    persistence (streaming)   kept        completed_unsaved
    persistence (buffered)    released    failed

Once the first audio chunk is on its way to the caller the deduction is
committed: the caller has the audio whether or not the disk copy lands.

Concurrency:
    Persistence tasks are detached from the request. drain() waits for all
    of them; the app calls it on shutdown so no record is left in
    processing by a clean stop.

Example:
    >>> generation = await pipeline.run_streaming("user-1", payload)
    >>> async for chunk in generation.body:
    ...     await send(chunk)
    >>> await pipeline.drain()
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional, Set, Tuple, Union
from uuid import uuid4

from tts_saas.audio import AudioStore, split
from tts_saas.core.config import GenerationConfig
from tts_saas.core.logging import (
    error,
    fail,
    get_logger,
    info,
    preview,
    success,
    verbose,
    warn,
)
from tts_saas.core.metrics import TTSSaaSMetrics, metrics as default_metrics
from tts_saas.gateway import ByteStream, SynthesisGateway, resolve_speaker
from tts_saas.ledger import GenerationRecord, GenerationStatus, LedgerStore
from tts_saas.utils.timeit import timeit

from .credit_guard import CreditGuard, Denial, ReservationHandle
from .errors import GenerationError, PersistenceError
from .requests import TranslateTTSRequest, TTSRequest, parse_generation_request

_LOG = get_logger("tts-saas.pipeline")

AnyRequest = Union[TTSRequest, TranslateTTSRequest]


class PipelineState:
    VALIDATING = "VALIDATING"
    AUTHORIZED = "AUTHORIZED"
    RESERVED = "RESERVED"
    STREAMING = "STREAMING"
    PERSISTING = "PERSISTING"
    DELIVERED = "DELIVERED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


def new_generation_id() -> str:
    """``<unix-millis>-<7 hex chars>``, sortable by creation time."""
    return f"{int(time.time() * 1000)}-{uuid4().hex[:7]}"


@dataclass
class StreamingGeneration:
    """
    An accepted streaming generation.

    Attributes:
        generation_id: Record id (also the audio file stem).
        audio_url: Where the saved audio will be served from.
        text_length: Credits charged.
        credits_remaining: Balance after the charge.
        body: Audio chunks for the caller, in upstream order.
        persist_task: Background task saving the audio.
    """
    generation_id: str
    audio_url: str
    text_length: int
    credits_remaining: int
    body: AsyncIterator[bytes]
    persist_task: "asyncio.Task[str]"


@dataclass
class BufferedGeneration:
    generation_id: str
    audio_url: str
    duration: float
    type: str
    text_length: int
    credits_purchased: int
    credits_used: int

    @property
    def credits_remaining(self) -> int:
        return self.credits_purchased - self.credits_used


class GenerationPipeline:
    """
    Orchestrates one generation request end to end.

    Args:
        ledger: Subscriptions and generation records
        gateway: External synthesis service client
        audio_store: Where audio files are saved
        config: Generation limits (text length, stored text, duration rate)
        guard: Credit guard (built from ``ledger`` if omitted)
        metrics: Metrics collector (global one by default)
    """

    def __init__(
        self,
        ledger: LedgerStore,
        gateway: SynthesisGateway,
        audio_store: AudioStore,
        config: Optional[GenerationConfig] = None,
        guard: Optional[CreditGuard] = None,
        metrics: Optional[TTSSaaSMetrics] = None,
    ):
        self._ledger = ledger
        self._gateway = gateway
        self._store = audio_store
        self._config = config or GenerationConfig()
        self._metrics = metrics or default_metrics
        self._guard = guard or CreditGuard(ledger, self._metrics)
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        """Persistence tasks still running."""
        return len(self._tasks)

    @property
    def config(self) -> GenerationConfig:
        return self._config

    # ─── Shared stages ─────────────────────────────────────────────────────

    def _state(self, state: str, **fields: Any) -> None:
        verbose(_LOG, "state", state=state, **fields)

    def estimate_duration(self, text_length: int) -> float:
        """Estimated seconds of speech for ``text_length`` characters."""
        return max(1.0, text_length / self._config.chars_per_second)

    async def _admit(
        self, user_id: str, payload: Any
    ) -> Tuple[AnyRequest, ReservationHandle, GenerationRecord]:
        """VALIDATING through RESERVED: validated, charged and recorded."""
        self._state(PipelineState.VALIDATING)
        request = parse_generation_request(payload, self._config.max_text_length)
        info(_LOG, "generation_request", user_id=user_id, type=request.type,
             chars=request.text_length, text_preview=preview(request.text))

        decision = await self._guard.authorize(user_id, request.text_length)
        if isinstance(decision, Denial):
            self._metrics.record_generation(request.type, decision.reason)
            warn(_LOG, "generation_denied", user_id=user_id, reason=decision.reason)
            raise decision.to_error()
        self._state(PipelineState.AUTHORIZED, subscription_id=decision.subscription_id)

        try:
            handle = await self._guard.reserve(decision)
        except GenerationError as e:
            self._metrics.record_generation(request.type, e.code)
            raise

        generation_id = new_generation_id()
        record = GenerationRecord(
            id=generation_id,
            user_id=user_id,
            text=request.text[: self._config.stored_text_chars],
            text_length=request.text_length,
            audio_url=self._store.url_for(generation_id),
            duration=self.estimate_duration(request.text_length),
            status=GenerationStatus.PROCESSING,
            type=request.type,
            source_language=request.source_language if isinstance(request, TranslateTTSRequest) else None,
            target_language=request.target_language,
        )
        try:
            record = await self._ledger.create_generation(record)
        except Exception as e:
            await handle.release()
            self._metrics.record_generation(request.type, GenerationStatus.FAILED)
            error(_LOG, "record_create_failed", generation_id=generation_id, error=str(e))
            raise GenerationError("Failed to create generation record") from e

        self._state(PipelineState.RESERVED, generation_id=generation_id, amount=handle.amount)
        return request, handle, record

    async def _abort(self, handle: ReservationHandle, record: GenerationRecord, exc: BaseException) -> None:
        """Upstream failed before any audio reached the caller."""
        await handle.release()
        await self._ledger.finish_generation(record.id, GenerationStatus.FAILED)
        self._metrics.record_generation(record.type, GenerationStatus.FAILED)
        code = exc.code if isinstance(exc, GenerationError) else type(exc).__name__
        fail(_LOG, "generation_failed", generation_id=record.id, reason=code)
        self._state(PipelineState.FAILED, generation_id=record.id)

    async def _open_stream(self, user_id: str, request: AnyRequest) -> ByteStream:
        speaker_id = await resolve_speaker(self._ledger, user_id, request.voice_id)
        if isinstance(request, TranslateTTSRequest):
            return await self._gateway.translate_and_synthesize(
                request.text, speaker_id, request.source_lang, request.target_lang
            )
        return await self._gateway.synthesize(request.text, speaker_id, request.language)

    # ─── Streaming mode ────────────────────────────────────────────────────

    async def run_streaming(self, user_id: str, payload: Any) -> StreamingGeneration:
        """
        Start a streaming generation.

        Returns once the first audio chunk has arrived; the caller then
        iterates ``body``. Saving happens in the background.

        Raises:
            ValidationError: Malformed request (nothing charged)
            AuthorizationError: Denied (nothing charged)
            UpstreamError / UpstreamTimeoutError: Synthesis failed before
                any audio (credits released, record failed)
        """
        request, handle, record = await self._admit(user_id, payload)

        self._state(PipelineState.STREAMING, generation_id=record.id)
        try:
            with timeit("upstream_open") as t_open:
                stream = await self._open_stream(user_id, request)
                await stream.prime()
        except Exception as e:
            await self._abort(handle, record, e)
            raise
        if stream.first_byte_seconds is not None:
            self._metrics.observe_first_byte(stream.first_byte_seconds)
        verbose(_LOG, "stage", event="upstream_open", seconds=t_open.seconds)

        handle.commit()
        split_stream = split(stream, observer=self._metrics.record_audio_bytes)
        self._metrics.stream_started()

        filename = self._store.filename_for(record.id)
        task = asyncio.create_task(self._persist(record, filename, split_stream.persist))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        self._state(PipelineState.DELIVERED, generation_id=record.id)

        return StreamingGeneration(
            generation_id=record.id,
            audio_url=record.audio_url,
            text_length=record.text_length,
            credits_remaining=handle.credits_remaining,
            body=split_stream.client,
            persist_task=task,
        )

    async def _persist(self, record: GenerationRecord, filename: str, chunks: AsyncIterator[bytes]) -> str:
        """Save the persistence branch and settle the record's status."""
        self._state(PipelineState.PERSISTING, generation_id=record.id)
        try:
            with timeit("persist") as t_persist:
                nbytes = await self._store.save_stream(filename, chunks)
        except Exception as e:
            # Stop queueing chunks nobody will write
            aclose = getattr(chunks, "aclose", None)
            if aclose is not None:
                await aclose()
            status = GenerationStatus.COMPLETED_UNSAVED
            self._metrics.record_persistence_failure()
            fail(_LOG, "audio_not_saved", generation_id=record.id, error=f"{type(e).__name__}: {e}")
        else:
            status = GenerationStatus.COMPLETED
            success(_LOG, "audio_saved", generation_id=record.id, file=filename,
                    bytes=nbytes, seconds=t_persist.seconds)
        finally:
            self._metrics.stream_finished()

        try:
            await self._ledger.finish_generation(record.id, status)
        except Exception as e:
            error(_LOG, "record_finish_failed", generation_id=record.id, status=status, error=str(e))
            raise

        self._metrics.record_generation(record.type, status)
        self._state(PipelineState.COMPLETED, generation_id=record.id, status=status)
        return status

    # ─── Buffered mode ─────────────────────────────────────────────────────

    async def run_buffered(self, user_id: str, payload: Any) -> BufferedGeneration:
        """
        Generate, save, then answer.

        Nothing reaches the caller before the audio is on disk, so a failed
        save refunds the credits.

        Raises:
            ValidationError, AuthorizationError, UpstreamError,
            UpstreamTimeoutError, PersistenceError
        """
        request, handle, record = await self._admit(user_id, payload)

        self._state(PipelineState.STREAMING, generation_id=record.id)
        try:
            with timeit("upstream_generate") as t_gen:
                stream = await self._open_stream(user_id, request)
                audio = await stream.read_all()
        except Exception as e:
            await self._abort(handle, record, e)
            raise
        if stream.first_byte_seconds is not None:
            self._metrics.observe_first_byte(stream.first_byte_seconds)
        verbose(_LOG, "stage", event="upstream_generate", seconds=t_gen.seconds, bytes=len(audio))

        self._state(PipelineState.PERSISTING, generation_id=record.id)
        filename = self._store.filename_for(record.id)
        try:
            await self._store.save(filename, audio)
        except Exception as e:
            await self._abort(handle, record, e)
            raise PersistenceError(
                "Failed to save generated audio",
                details={"generation_id": record.id},
            ) from e

        handle.commit()
        self._metrics.record_audio_bytes("persist", len(audio))
        await self._ledger.finish_generation(record.id, GenerationStatus.COMPLETED)
        self._metrics.record_generation(record.type, GenerationStatus.COMPLETED)
        success(_LOG, "generation_completed", generation_id=record.id, bytes=len(audio))
        self._state(PipelineState.COMPLETED, generation_id=record.id)

        return BufferedGeneration(
            generation_id=record.id,
            audio_url=record.audio_url,
            duration=record.duration,
            type=record.type,
            text_length=record.text_length,
            credits_purchased=handle.credits_purchased,
            credits_used=handle.credits_used,
        )

    # ─── Lifecycle ─────────────────────────────────────────────────────────

    async def drain(self) -> None:
        """Wait for every background persistence task to finish."""
        while self._tasks:
            pending = list(self._tasks)
            info(_LOG, "draining", pending=len(pending))
            await asyncio.gather(*pending, return_exceptions=True)
