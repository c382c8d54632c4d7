"""
Tests for the HTTP surface with FastAPI's TestClient.

The app gets a hand-built service container: a temporary SQLite ledger,
a temporary audio directory and a MockTransport synthesis service.
"""
from __future__ import annotations

import asyncio

import httpx
import pytest
from fastapi.testclient import TestClient

from tts_saas.core.config import Settings
from tts_saas.core.metrics import TTSSaaSMetrics
from tts_saas.ledger import GenerationStatus
from tts_saas.main import create_app
from tts_saas.services.container import build_container

from conftest import BASE_URL, WAV_CHUNKS, audio_handler

FULL_AUDIO = b"".join(WAV_CHUNKS)
USER = {"X-User-Id": "user-1"}


def upstream(status: int = 200, chunks=WAV_CHUNKS):
    audio = audio_handler(chunks, status=status)

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/health":
            return httpx.Response(200, json={"status": "ok", "model": "qwen3-tts"})
        if request.url.path == "/languages":
            return httpx.Response(503)
        return audio(request)

    return handler


def make_container(tmp_path, handler=None, **sections):
    raw = {
        "gateway": {"base_url": BASE_URL, "timeout_s": 5},
        "ledger": {"database_url": f"sqlite:///{tmp_path / 'api.db'}"},
        "storage": {"audio_dir": str(tmp_path / "audio")},
    }
    raw.update(sections)
    return build_container(
        Settings(raw=raw),
        transport=httpx.MockTransport(handler or upstream()),
        metrics=TTSSaaSMetrics(),
    )


def grant(container, credits=1000, user_id="user-1"):
    return asyncio.run(container.ledger.grant_subscription(user_id, credits=credits, days=30))


@pytest.fixture
def container(tmp_path):
    c = make_container(tmp_path)
    yield c
    c.ledger.dispose()


class TestStreamingEndpoint:
    def test_stream_returns_audio_and_headers(self, container):
        sub = grant(container, credits=100)
        with TestClient(create_app(container)) as client:
            r = client.post(
                "/v1/generate/stream",
                json={"type": "tts", "text": "Hello", "voiceId": "default_female_01"},
                headers=USER,
            )
            client.portal.call(container.pipeline.drain)

            assert r.status_code == 200
            assert r.headers["content-type"].startswith("audio/wav")
            assert r.content == FULL_AUDIO
            gen_id = r.headers["X-Generation-Id"]
            assert r.headers["X-Audio-Url"] == f"/v1/audio/{gen_id}.wav"
            assert r.headers["X-Credits-Remaining"] == "95"
            assert r.headers["X-Text-Length"] == "5"
            assert r.headers["X-Request-Id"]

            audio = client.get(r.headers["X-Audio-Url"])
            assert audio.status_code == 200
            assert audio.content == FULL_AUDIO

        record = asyncio.run(container.ledger.get_generation(gen_id))
        assert record.status == GenerationStatus.COMPLETED
        assert asyncio.run(container.ledger.get_subscription(sub.id)).credits_used == 5

    def test_unauthenticated(self, container):
        with TestClient(create_app(container)) as client:
            r = client.post("/v1/generate/stream", json={"type": "tts", "text": "Hi", "voiceId": "v"})
        assert r.status_code == 401
        body = r.json()
        assert body["ok"] is False
        assert body["error"] == "UNAUTHENTICATED"
        assert body["request_id"] == r.headers["X-Request-Id"]

    def test_no_subscription(self, container):
        with TestClient(create_app(container)) as client:
            r = client.post(
                "/v1/generate/stream",
                json={"type": "tts", "text": "Hi", "voiceId": "v"},
                headers=USER,
            )
        assert r.status_code == 403
        assert r.json()["error"] == "NO_SUBSCRIPTION"
        assert r.json()["hint"]

    def test_insufficient_credits(self, container):
        grant(container, credits=3)
        with TestClient(create_app(container)) as client:
            r = client.post(
                "/v1/generate/stream",
                json={"type": "tts", "text": "Hello", "voiceId": "v"},
                headers=USER,
            )
        assert r.status_code == 403
        body = r.json()
        assert body["error"] == "INSUFFICIENT_CREDITS"
        assert body["details"] == {"creditsNeeded": 5, "creditsRemaining": 3, "shortfall": 2}

    def test_text_too_long(self, tmp_path):
        c = make_container(tmp_path, generation={"max_text_length": 10})
        grant(c)
        with TestClient(create_app(c)) as client:
            r = client.post(
                "/v1/generate/stream",
                json={"type": "tts", "text": "x" * 11, "voiceId": "v"},
                headers=USER,
            )
        c.ledger.dispose()
        assert r.status_code == 413
        assert r.json()["details"]["reason"] == "TEXT_TOO_LONG"

    def test_invalid_json(self, container):
        with TestClient(create_app(container)) as client:
            r = client.post(
                "/v1/generate/stream",
                content=b"{not json",
                headers={**USER, "Content-Type": "application/json"},
            )
        assert r.status_code == 400
        assert r.json()["details"]["reason"] == "INVALID_JSON"

    def test_upstream_failure_refunds(self, tmp_path):
        c = make_container(tmp_path, handler=upstream(status=500))
        sub = grant(c, credits=100)
        with TestClient(create_app(c)) as client:
            r = client.post(
                "/v1/generate/stream",
                json={"type": "tts", "text": "Hello", "voiceId": "v"},
                headers=USER,
            )
        assert r.status_code == 502
        assert r.json()["error"] == "UPSTREAM_FAILURE"
        assert asyncio.run(c.ledger.get_subscription(sub.id)).credits_used == 0
        c.ledger.dispose()


class TestBufferedEndpoint:
    def test_generate(self, container):
        grant(container, credits=100)
        with TestClient(create_app(container)) as client:
            r = client.post(
                "/v1/generate",
                json={
                    "type": "translate-tts",
                    "text": "Hola",
                    "voiceId": "default_male_01",
                    "sourceLanguage": "spa_Latn",
                    "targetLanguage": "eng_Latn",
                },
                headers=USER,
            )
            assert r.status_code == 200
            body = r.json()
            assert body["type"] == "translate-tts"
            assert body["textLength"] == 4
            assert body["credits"] == {"purchased": 100, "used": 4, "remaining": 96}
            assert body["duration"] == 1.0
            assert client.get(body["url"]).content == FULL_AUDIO

    def test_timeout_maps_to_504(self, tmp_path):
        c = make_container(tmp_path, handler=audio_handler(delay=1.0), gateway={"base_url": BASE_URL, "timeout_s": 0.2})
        grant(c)
        with TestClient(create_app(c)) as client:
            r = client.post("/v1/generate", json={"type": "tts", "text": "Hi", "voiceId": "v"}, headers=USER)
        c.ledger.dispose()
        assert r.status_code == 504
        assert r.json()["error"] == "TIMEOUT"
        assert "shorter" in r.json()["hint"]


class TestAudioEndpoint:
    @pytest.mark.parametrize("name", ["notes.txt", ".hidden.wav", "..%2Fapi.db"])
    def test_rejects_bad_names(self, container, name):
        with TestClient(create_app(container)) as client:
            r = client.get(f"/v1/audio/{name}")
        assert r.status_code in (400, 404)
        if r.status_code == 400:
            assert r.json()["details"]["reason"] == "FILENAME_INVALID"

    def test_missing_file(self, container):
        with TestClient(create_app(container)) as client:
            r = client.get("/v1/audio/1712345678901-abcdef0.wav")
        assert r.status_code == 404
        assert r.json()["error"] == "NOT_FOUND"


class TestHistoryAndAccount:
    def test_generations_paging(self, container):
        grant(container)
        with TestClient(create_app(container)) as client:
            for text in ("one", "two", "three"):
                client.post("/v1/generate", json={"type": "tts", "text": text, "voiceId": "v"}, headers=USER)
            r = client.get("/v1/generations?limit=2&offset=0", headers=USER)
            other = client.get("/v1/generations", headers={"X-User-Id": "user-2"})

        assert r.status_code == 200
        body = r.json()
        assert body["total"] == 3
        assert body["limit"] == 2
        assert len(body["generations"]) == 2
        item = body["generations"][0]
        assert {"id", "text", "textLength", "audioUrl", "status", "createdAt"} <= set(item)
        assert item["status"] == "completed"
        assert other.json()["total"] == 0

    def test_generations_limit_validated(self, container):
        with TestClient(create_app(container)) as client:
            r = client.get("/v1/generations?limit=0", headers=USER)
        assert r.status_code == 422

    def test_account(self, container):
        grant(container, credits=1000)
        with TestClient(create_app(container)) as client:
            client.post("/v1/generate", json={"type": "tts", "text": "Hello", "voiceId": "v"}, headers=USER)
            r = client.get("/v1/account", headers={**USER, "X-User-Role": "admin"})

        body = r.json()
        assert body["userId"] == "user-1"
        assert body["isAdmin"] is True
        sub = body["subscription"]
        assert sub["creditsRemaining"] == 995
        assert sub["creditsPercentage"] == 1
        assert sub["daysRemaining"] == 30
        assert body["stats"] == {"generationsThisMonth": 1, "totalGenerations": 1}

    @pytest.mark.parametrize("path, method", [
        ("/v1/generations", "list_generations"),
        ("/v1/account", "expire_overdue"),
    ])
    def test_ledger_failure_is_json_internal_error(self, container, monkeypatch, path, method):
        async def broken(*args, **kwargs):
            raise RuntimeError("database is on fire")

        monkeypatch.setattr(container.ledger, method, broken)
        with TestClient(create_app(container)) as client:
            r = client.get(path, headers=USER)
        assert r.status_code == 500
        body = r.json()
        assert body["ok"] is False
        assert body["error"] == "INTERNAL_ERROR"
        assert body["request_id"] == r.headers["X-Request-Id"]
        assert "fire" not in r.text

    def test_account_without_subscription(self, container):
        with TestClient(create_app(container)) as client:
            r = client.get("/v1/account", headers=USER)
        assert r.status_code == 200
        assert r.json()["subscription"] is None
        assert r.json()["isAdmin"] is False


class TestLifespan:
    def test_module_app_imports(self):
        from tts_saas.main import app

        assert app.title == "tts-saas"

    def test_shutdown_drains_pending_saves(self, container):
        grant(container, credits=100)
        with TestClient(create_app(container)) as client:
            r = client.post(
                "/v1/generate/stream",
                json={"type": "tts", "text": "Hello", "voiceId": "v"},
                headers=USER,
            )
        assert r.status_code == 200
        record = asyncio.run(container.ledger.get_generation(r.headers["X-Generation-Id"]))
        assert record.status == GenerationStatus.COMPLETED
        assert container.pipeline.pending == 0


class TestProxySecret:
    def test_secret_required(self, tmp_path):
        c = make_container(tmp_path, auth={"proxy_secret": "s3cret"})
        with TestClient(create_app(c)) as client:
            missing = client.get("/v1/account", headers=USER)
            wrong = client.get("/v1/account", headers={**USER, "X-Proxy-Secret": "nope"})
            right = client.get("/v1/account", headers={**USER, "X-Proxy-Secret": "s3cret"})
        c.ledger.dispose()
        assert missing.status_code == 401
        assert wrong.status_code == 401
        assert right.status_code == 200


class TestOperationalEndpoints:
    def test_languages_fallback(self, container):
        with TestClient(create_app(container)) as client:
            r = client.get("/v1/languages")
        assert r.status_code == 200
        assert r.json()["tts"]["model"] == "qwen3-tts"
        assert len(r.json()["translation"]["languages"]) == 11

    def test_health(self, container):
        with TestClient(create_app(container)) as client:
            r = client.get("/health")
        body = r.json()
        assert body["ok"] is True
        assert body["pending_persistence"] == 0
        assert body["upstream"]["reachable"] is True
        assert body["upstream"]["status"] == "ok"

    def test_health_survives_upstream_down(self, tmp_path):
        def handler(request):
            raise httpx.ConnectError("down", request=request)

        c = make_container(tmp_path, handler=handler)
        with TestClient(create_app(c)) as client:
            r = client.get("/health")
        c.ledger.dispose()
        assert r.status_code == 200
        assert r.json()["upstream"]["reachable"] is False

    def test_metrics(self, container):
        grant(container)
        with TestClient(create_app(container)) as client:
            client.post("/v1/generate", json={"type": "tts", "text": "Hello", "voiceId": "v"}, headers=USER)
            r = client.get("/metrics")
        assert r.status_code == 200
        assert "tts_saas_generations_total" in r.text
        assert 'outcome="completed"' in r.text
