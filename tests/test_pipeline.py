"""
Tests for the generation pipeline.

Tests cover:
- Scenario A: 5 chars with 10 remaining -> charged, record completed
- Scenario B: 20 chars with 10 remaining -> INSUFFICIENT_CREDITS, shortfall 10
- Scenario C: overdue subscription -> flipped to expired, EXPIRED
- Scenario D: upstream timeout after reservation -> exact refund, record failed
- Scenario E: concurrent requests jointly over balance -> one rejected
- Client and stored bytes are identical
- Client disconnect does not stop persistence
- Every accepted request reaches a terminal status
- Persistence failure: completed_unsaved (streaming) or refund (buffered)
"""
from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from tts_saas.audio import AudioStore
from tts_saas.ledger import GenerationStatus, SubscriptionStatus, utcnow
from tts_saas.services.errors import (
    AuthorizationError,
    ErrorCode,
    PersistenceError,
    UpstreamError,
    UpstreamTimeoutError,
    ValidationError,
)
from tts_saas.services.pipeline import new_generation_id

from conftest import WAV_CHUNKS, audio_handler, sample_value

FULL_AUDIO = b"".join(WAV_CHUNKS)


def _payload(text: str = "Hello", voice: str = "default_female_01") -> dict:
    return {"type": "tts", "text": text, "voiceId": voice}


async def _grant(ledger, credits=1000, used=0, **kw):
    sub = await ledger.grant_subscription("user-1", credits=credits, days=30, **kw)
    if used:
        assert await ledger.try_deduct(sub.id, used)
    return sub


async def _consume(body) -> bytes:
    return b"".join([chunk async for chunk in body])


class FailingAudioStore(AudioStore):
    """Audio store whose disk is full."""

    async def open_for_write(self, filename):
        raise OSError("No space left on device")


class TestGenerationId:
    def test_format(self):
        millis, suffix = new_generation_id().split("-")
        assert millis.isdigit() and len(millis) == 13
        assert len(suffix) == 7

    def test_unique(self):
        assert len({new_generation_id() for _ in range(100)}) == 100


class TestScenarios:
    def test_scenario_a_authorized_and_completed(self, ledger, make_pipeline, fresh_metrics):
        pipeline = make_pipeline()

        async def scenario():
            sub = await _grant(ledger, credits=1000, used=990)
            generation = await pipeline.run_streaming("user-1", _payload("Hello"))
            body = await _consume(generation.body)
            status = await generation.persist_task
            return sub, generation, body, status

        sub, generation, body, status = asyncio.run(scenario())
        assert body == FULL_AUDIO
        assert status == GenerationStatus.COMPLETED
        assert generation.text_length == 5
        assert generation.credits_remaining == 5

        stored = asyncio.run(ledger.get_subscription(sub.id))
        record = asyncio.run(ledger.get_generation(generation.generation_id))
        assert stored.credits_used == 995
        assert record.status == GenerationStatus.COMPLETED
        assert record.completed_at is not None
        assert sample_value(fresh_metrics, "tts_saas_generations_total",
                            {"type": "tts", "outcome": "completed"}) == 1

    def test_scenario_b_insufficient_credits(self, ledger, make_pipeline):
        seen = []
        pipeline = make_pipeline(audio_handler(seen=seen))

        async def scenario():
            sub = await _grant(ledger, credits=1000, used=990)
            with pytest.raises(AuthorizationError) as exc:
                await pipeline.run_streaming("user-1", _payload("x" * 20))
            return exc.value, await ledger.get_subscription(sub.id), await ledger.count_generations("user-1")

        err, sub, records = asyncio.run(scenario())
        assert err.code == ErrorCode.INSUFFICIENT_CREDITS
        assert err.details["shortfall"] == 10
        assert sub.credits_used == 990
        assert records == 0
        assert seen == []

    def test_scenario_c_expired(self, ledger, make_pipeline):
        pipeline = make_pipeline()

        async def scenario():
            sub = await _grant(ledger, now=utcnow() - timedelta(days=31))
            with pytest.raises(AuthorizationError) as exc:
                await pipeline.run_buffered("user-1", _payload())
            return exc.value, await ledger.get_subscription(sub.id)

        err, sub = asyncio.run(scenario())
        assert err.code == ErrorCode.EXPIRED
        assert sub.status == SubscriptionStatus.EXPIRED
        assert sub.credits_used == 0

    def test_scenario_d_timeout_refunds(self, ledger, make_pipeline, fresh_metrics):
        pipeline = make_pipeline(audio_handler(delay=1.0), timeout_s=0.2)

        async def scenario():
            sub = await _grant(ledger, credits=1000, used=990)
            with pytest.raises(UpstreamTimeoutError):
                await pipeline.run_streaming("user-1", _payload("Hello"))
            records, _ = await ledger.list_generations("user-1")
            return await ledger.get_subscription(sub.id), records

        sub, records = asyncio.run(scenario())
        assert sub.credits_used == 990
        assert len(records) == 1
        assert records[0].status == GenerationStatus.FAILED
        assert sample_value(fresh_metrics, "tts_saas_credits_released_total") == 5

    def test_scenario_e_concurrent_requests(self, ledger, make_pipeline):
        pipeline = make_pipeline()

        async def scenario():
            sub = await _grant(ledger, credits=100)
            results = await asyncio.gather(
                pipeline.run_buffered("user-1", _payload("a" * 60)),
                pipeline.run_buffered("user-1", _payload("b" * 60)),
                return_exceptions=True,
            )
            return results, await ledger.get_subscription(sub.id)

        results, sub = asyncio.run(scenario())
        errors = [r for r in results if isinstance(r, Exception)]
        assert len(errors) == 1
        assert isinstance(errors[0], AuthorizationError)
        assert errors[0].code == ErrorCode.INSUFFICIENT_CREDITS
        assert sub.credits_used == 60

    def test_concurrent_streams_report_their_own_balance(self, ledger, make_pipeline):
        pipeline = make_pipeline()

        async def scenario():
            sub = await _grant(ledger, credits=100)
            generations = await asyncio.gather(
                pipeline.run_streaming("user-1", _payload("a" * 30)),
                pipeline.run_streaming("user-1", _payload("b" * 30)),
            )
            for generation in generations:
                await _consume(generation.body)
            await pipeline.drain()
            return generations, await ledger.get_subscription(sub.id)

        generations, sub = asyncio.run(scenario())
        assert sorted(g.credits_remaining for g in generations) == [40, 70]
        assert sub.credits_remaining == 40

    def test_concurrent_buffered_report_their_own_balance(self, ledger, make_pipeline):
        pipeline = make_pipeline()

        async def scenario():
            await _grant(ledger, credits=100)
            return await asyncio.gather(
                pipeline.run_buffered("user-1", _payload("a" * 30)),
                pipeline.run_buffered("user-1", _payload("b" * 30)),
            )

        results = asyncio.run(scenario())
        assert sorted(r.credits_used for r in results) == [30, 60]
        assert sorted(r.credits_remaining for r in results) == [40, 70]


class TestStreaming:
    def test_client_and_stored_bytes_identical(self, ledger, make_pipeline, audio_store):
        chunks = [bytes([i]) * (i + 1) for i in range(40)]
        pipeline = make_pipeline(audio_handler(chunks))

        async def scenario():
            await _grant(ledger)
            generation = await pipeline.run_streaming("user-1", _payload())
            body = await _consume(generation.body)
            await pipeline.drain()
            return generation, body

        generation, body = asyncio.run(scenario())
        stored = (audio_store.directory / f"{generation.generation_id}.wav").read_bytes()
        assert body == stored == b"".join(chunks)
        assert generation.audio_url == f"/v1/audio/{generation.generation_id}.wav"

    def test_client_disconnect_keeps_persisting(self, ledger, make_pipeline, audio_store):
        pipeline = make_pipeline(audio_handler(delay=0.01))

        async def scenario():
            await _grant(ledger)
            generation = await pipeline.run_streaming("user-1", _payload())
            first = await generation.body.__anext__()
            await generation.body.aclose()
            status = await generation.persist_task
            return generation, first, status

        generation, first, status = asyncio.run(scenario())
        assert first == WAV_CHUNKS[0]
        assert status == GenerationStatus.COMPLETED
        stored = (audio_store.directory / f"{generation.generation_id}.wav").read_bytes()
        assert stored == FULL_AUDIO

    def test_persistence_failure_is_completed_unsaved(self, ledger, make_pipeline, tmp_path, fresh_metrics):
        pipeline = make_pipeline(store=FailingAudioStore(tmp_path / "full"))

        async def scenario():
            sub = await _grant(ledger, credits=100)
            generation = await pipeline.run_streaming("user-1", _payload("Hello"))
            body = await _consume(generation.body)
            status = await generation.persist_task
            return sub, generation, body, status

        sub, generation, body, status = asyncio.run(scenario())
        assert body == FULL_AUDIO
        assert status == GenerationStatus.COMPLETED_UNSAVED
        assert asyncio.run(ledger.get_subscription(sub.id)).credits_used == 5
        record = asyncio.run(ledger.get_generation(generation.generation_id))
        assert record.status == GenerationStatus.COMPLETED_UNSAVED
        assert sample_value(fresh_metrics, "tts_saas_persistence_failures_total") == 1

    def test_mid_stream_failure_keeps_credits(self, ledger, make_pipeline):
        pipeline = make_pipeline(audio_handler(fail_after=2))

        async def scenario():
            sub = await _grant(ledger, credits=100)
            generation = await pipeline.run_streaming("user-1", _payload("Hello"))
            with pytest.raises(UpstreamError):
                await _consume(generation.body)
            status = await generation.persist_task
            return sub, status

        sub, status = asyncio.run(scenario())
        assert status == GenerationStatus.COMPLETED_UNSAVED
        assert asyncio.run(ledger.get_subscription(sub.id)).credits_used == 5

    def test_upstream_error_status_refunds(self, ledger, make_pipeline):
        pipeline = make_pipeline(audio_handler(status=502))

        async def scenario():
            sub = await _grant(ledger, credits=100)
            with pytest.raises(UpstreamError) as exc:
                await pipeline.run_streaming("user-1", _payload())
            records, _ = await ledger.list_generations("user-1")
            return exc.value, await ledger.get_subscription(sub.id), records

        err, sub, records = asyncio.run(scenario())
        assert err.code == ErrorCode.UPSTREAM_FAILURE
        assert sub.credits_used == 0
        assert [r.status for r in records] == [GenerationStatus.FAILED]

    def test_empty_upstream_body_refunds(self, ledger, make_pipeline):
        pipeline = make_pipeline(audio_handler([]))

        async def scenario():
            sub = await _grant(ledger, credits=100)
            with pytest.raises(UpstreamError, match="No audio"):
                await pipeline.run_streaming("user-1", _payload())
            return await ledger.get_subscription(sub.id)

        assert asyncio.run(scenario()).credits_used == 0

    def test_validation_touches_nothing(self, ledger, make_pipeline):
        seen = []
        pipeline = make_pipeline(audio_handler(seen=seen), max_text_length=10)

        async def scenario():
            sub = await _grant(ledger, credits=100)
            with pytest.raises(ValidationError):
                await pipeline.run_streaming("user-1", _payload("x" * 11))
            return await ledger.get_subscription(sub.id), await ledger.count_generations("user-1")

        sub, records = asyncio.run(scenario())
        assert sub.credits_used == 0
        assert records == 0
        assert seen == []

    def test_every_accepted_request_is_terminal(self, ledger, make_pipeline):
        ok = make_pipeline()
        broken = make_pipeline(audio_handler(status=500))

        async def scenario():
            await _grant(ledger, credits=1000)
            for _ in range(3):
                generation = await ok.run_streaming("user-1", _payload())
                await _consume(generation.body)
            for _ in range(2):
                with pytest.raises(UpstreamError):
                    await broken.run_streaming("user-1", _payload())
            await ok.drain()
            records, _ = await ledger.list_generations("user-1", limit=10)
            return records

        records = asyncio.run(scenario())
        assert len(records) == 5
        assert all(r.status in GenerationStatus.TERMINAL for r in records)


class TestRecords:
    def test_record_fields(self, ledger, make_pipeline):
        pipeline = make_pipeline(stored_text_chars=10)
        text = "Bonjour tout le monde, comment allez-vous?"

        async def scenario():
            await _grant(ledger)
            result = await pipeline.run_buffered(
                "user-1",
                {
                    "type": "translate-tts",
                    "text": text,
                    "voiceId": "default_male_01",
                    "sourceLanguage": "fra_Latn",
                    "targetLanguage": "eng_Latn",
                },
            )
            return result, await ledger.get_generation(result.generation_id)

        result, record = asyncio.run(scenario())
        assert record.text == text[:10]
        assert record.text_length == len(text)
        assert record.type == "translate-tts"
        assert record.source_language == "fra_Latn"
        assert record.target_language == "eng_Latn"
        assert record.duration == pytest.approx(len(text) / 15)

    def test_duration_floor(self, make_pipeline):
        assert make_pipeline().estimate_duration(3) == 1.0

    def test_translate_request_upstream(self, ledger, make_pipeline):
        seen = []
        pipeline = make_pipeline(audio_handler(seen=seen))

        async def scenario():
            await _grant(ledger)
            await pipeline.run_buffered(
                "user-1",
                {"type": "translate-tts", "text": "Hola", "voiceId": "unknown",
                 "sourceLanguage": "spa_Latn", "targetLanguage": "eng_Latn"},
            )

        asyncio.run(scenario())
        assert seen[0].url.path == "/translate-tts/stream"
        assert b'"speaker_id":"default_female_01"' in seen[0].content.replace(b" ", b"")


class TestBuffered:
    def test_buffered_success(self, ledger, make_pipeline, audio_store):
        pipeline = make_pipeline()

        async def scenario():
            await _grant(ledger, credits=100)
            return await pipeline.run_buffered("user-1", _payload("Hello"))

        result = asyncio.run(scenario())
        assert result.credits_purchased == 100
        assert result.credits_used == 5
        assert result.credits_remaining == 95
        assert result.type == "tts"
        assert (audio_store.directory / f"{result.generation_id}.wav").read_bytes() == FULL_AUDIO

    def test_buffered_save_failure_refunds(self, ledger, make_pipeline, tmp_path):
        pipeline = make_pipeline(store=FailingAudioStore(tmp_path / "full"))

        async def scenario():
            sub = await _grant(ledger, credits=100)
            with pytest.raises(PersistenceError) as exc:
                await pipeline.run_buffered("user-1", _payload())
            records, _ = await ledger.list_generations("user-1")
            return exc.value, await ledger.get_subscription(sub.id), records

        err, sub, records = asyncio.run(scenario())
        assert err.code == ErrorCode.PERSISTENCE_FAILURE
        assert sub.credits_used == 0
        assert records[0].status == GenerationStatus.FAILED
