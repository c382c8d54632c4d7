"""
tts-saas API Routes.

Endpoints:
    POST /v1/generate/stream   - Streaming generation (chunked audio/wav)
    POST /v1/generate          - Buffered generation (JSON with audio URL)
    GET  /v1/audio/{filename}  - Saved audio
    GET  /v1/generations       - Caller's generation history
    GET  /v1/account           - Caller's subscription and usage
    GET  /v1/languages         - Language catalogue
    GET  /health               - Liveness plus upstream summary
    GET  /metrics              - Prometheus metrics

Error Handling:
    All errors are returned as JSON:
    {
        "ok": false,
        "error": "<REASON_CODE>",
        "message": "<human readable message>",
        "details": {...},
        "hint": "<optional recovery hint>",
        "request_id": "<id>"
    }

    HTTP status codes are mapped from reason codes:
        - UNAUTHENTICATED -> 401
        - VALIDATION -> 400 (413 when the text is too long)
        - NO_SUBSCRIPTION / EXPIRED / INSUFFICIENT_CREDITS -> 403
        - NOT_FOUND -> 404
        - UPSTREAM_FAILURE -> 502
        - TIMEOUT -> 504
        - PERSISTENCE_FAILURE / INTERNAL_ERROR -> 500

Example Usage:
    curl -N -X POST http://localhost:8080/v1/generate/stream \\
        -H "X-User-Id: user-1" -H "Content-Type: application/json" \\
        -d '{"type": "tts", "text": "Hello!", "voiceId": "default_female_01"}' \\
        --output hello.wav
"""
from __future__ import annotations

import uuid
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import FileResponse, JSONResponse, StreamingResponse

from tts_saas import __version__
from tts_saas.api.dependencies import get_container
from tts_saas.api.schemas import CreditsInfo, GenerateResponse, GenerationItem, GenerationsPage
from tts_saas.audio import is_safe_filename
from tts_saas.core.logging import error, get_logger, set_request_id, warn
from tts_saas.services.account import account_summary
from tts_saas.services.container import ServiceContainer
from tts_saas.services.errors import (
    ErrorCode,
    GenerationError,
    NotFoundError,
    ValidationError,
)
from tts_saas.services.identity import Identity

router = APIRouter()

_LOG = get_logger("tts-saas.api")

STATUS_MAP = {
    ErrorCode.UNAUTHENTICATED: 401,
    ErrorCode.VALIDATION: 400,
    ErrorCode.NO_SUBSCRIPTION: 403,
    ErrorCode.EXPIRED: 403,
    ErrorCode.INSUFFICIENT_CREDITS: 403,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.UPSTREAM_FAILURE: 502,
    ErrorCode.TIMEOUT: 504,
    ErrorCode.PERSISTENCE_FAILURE: 500,
    ErrorCode.INTERNAL_ERROR: 500,
}

_HINTS = {
    ErrorCode.TIMEOUT: "try with shorter text",
    ErrorCode.NO_SUBSCRIPTION: "renew your plan",
    ErrorCode.EXPIRED: "renew your plan",
    ErrorCode.INSUFFICIENT_CREDITS: "shorten the text or top up credits",
}

MAX_PAGE_SIZE = 100


def _new_request_id() -> str:
    rid = uuid.uuid4().hex[:12]
    set_request_id(rid)
    return rid


def status_for(err: GenerationError) -> int:
    """HTTP status for a generation error."""
    if isinstance(err, ValidationError) and err.reason == "TEXT_TOO_LONG":
        return 413
    return STATUS_MAP.get(err.code, 500)


def _error_response(err: GenerationError, rid: str) -> JSONResponse:
    content = err.to_dict()
    hint = _HINTS.get(err.code)
    if hint:
        content["hint"] = hint
    content["request_id"] = rid
    return JSONResponse(status_code=status_for(err), content=content, headers={"X-Request-Id": rid})


def _internal_error(rid: str) -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content={
            "ok": False,
            "error": ErrorCode.INTERNAL_ERROR,
            "message": "Internal server error",
            "request_id": rid,
        },
        headers={"X-Request-Id": rid},
    )


async def _identify(request: Request, container: ServiceContainer) -> Identity:
    return await container.identity.identify(request.headers)


async def _read_json(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError as e:
        raise ValidationError("Request body must be valid JSON", "INVALID_JSON") from e


async def _client_body(body: AsyncIterator[bytes], generation_id: str) -> AsyncIterator[bytes]:
    """Forward the client branch; detach it if the caller goes away."""
    try:
        async for chunk in body:
            yield chunk
    except GenerationError as e:
        warn(_LOG, "stream_interrupted", generation_id=generation_id, reason=e.code)
        raise
    finally:
        aclose = getattr(body, "aclose", None)
        if aclose is not None:
            await aclose()


@router.post("/v1/generate/stream")
async def generate_stream(request: Request, container: ServiceContainer = Depends(get_container)):
    """
    Streaming generation.

    Returns the upstream audio as it arrives. Credits are charged before
    the first byte; if the synthesis service fails before producing audio
    the charge is reversed and a JSON error is returned instead.

    Response headers:
        X-Generation-Id: Record id
        X-Audio-Url: Where the saved copy will be served
        X-Credits-Remaining: Balance after this charge
        X-Text-Length: Characters charged
        X-Request-Id: Log correlation id
    """
    rid = _new_request_id()
    try:
        identity = await _identify(request, container)
        payload = await _read_json(request)
        generation = await container.pipeline.run_streaming(identity.user_id, payload)
    except GenerationError as e:
        return _error_response(e, rid)
    except Exception as e:
        error(_LOG, "unhandled_error", route="generate_stream", error=f"{type(e).__name__}: {e}")
        return _internal_error(rid)

    headers = {
        "Cache-Control": "no-cache",
        "X-Generation-Id": generation.generation_id,
        "X-Audio-Url": generation.audio_url,
        "X-Credits-Remaining": str(generation.credits_remaining),
        "X-Text-Length": str(generation.text_length),
        "X-Request-Id": rid,
        "Access-Control-Expose-Headers": "X-Generation-Id, X-Audio-Url, X-Credits-Remaining, X-Text-Length",
    }
    return StreamingResponse(
        _client_body(generation.body, generation.generation_id),
        media_type="audio/wav",
        headers=headers,
    )


@router.post("/v1/generate", response_model=GenerateResponse)
async def generate(request: Request, container: ServiceContainer = Depends(get_container)):
    """
    Buffered generation.

    Waits for the complete audio, saves it, and returns its URL. A failed
    save refunds the credits (PERSISTENCE_FAILURE).
    """
    rid = _new_request_id()
    try:
        identity = await _identify(request, container)
        payload = await _read_json(request)
        result = await container.pipeline.run_buffered(identity.user_id, payload)
    except GenerationError as e:
        return _error_response(e, rid)
    except Exception as e:
        error(_LOG, "unhandled_error", route="generate", error=f"{type(e).__name__}: {e}")
        return _internal_error(rid)

    return GenerateResponse(
        id=result.generation_id,
        url=result.audio_url,
        duration=result.duration,
        type=result.type,
        text_length=result.text_length,
        credits=CreditsInfo(
            purchased=result.credits_purchased,
            used=result.credits_used,
            remaining=result.credits_remaining,
        ),
    )


@router.get("/v1/audio/{filename}")
async def get_audio(filename: str, container: ServiceContainer = Depends(get_container)):
    """
    Serve a saved audio file.

    404 covers both unknown files and generations whose audio is still
    being written.
    """
    rid = _new_request_id()
    if not is_safe_filename(filename):
        return _error_response(ValidationError("Invalid filename", "FILENAME_INVALID"), rid)

    path = await container.audio_store.path_for(filename)
    if path is None:
        return _error_response(NotFoundError("File not found"), rid)

    return FileResponse(
        path,
        media_type="audio/wav",
        headers={"Cache-Control": "public, max-age=31536000"},
    )


@router.get("/v1/generations", response_model=GenerationsPage)
async def list_generations(
    request: Request,
    limit: int = Query(default=10, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(default=0, ge=0),
    container: ServiceContainer = Depends(get_container),
):
    """Caller's generations, newest first."""
    rid = _new_request_id()
    try:
        identity = await _identify(request, container)
        records, total = await container.ledger.list_generations(identity.user_id, limit=limit, offset=offset)
    except GenerationError as e:
        return _error_response(e, rid)
    except Exception as e:
        error(_LOG, "unhandled_error", route="generations", error=f"{type(e).__name__}: {e}")
        return _internal_error(rid)

    return GenerationsPage(
        generations=[GenerationItem.model_validate(r, from_attributes=True) for r in records],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/v1/account")
async def account(request: Request, container: ServiceContainer = Depends(get_container)):
    """
    Caller's active subscription and usage.

    Subscriptions past their expiry are flipped to expired first, so the
    answer never shows a lapsed plan as active.
    """
    rid = _new_request_id()
    try:
        identity = await _identify(request, container)
        summary: Dict[str, Any] = await account_summary(container.ledger, identity.user_id)
    except GenerationError as e:
        return _error_response(e, rid)
    except Exception as e:
        error(_LOG, "unhandled_error", route="account", error=f"{type(e).__name__}: {e}")
        return _internal_error(rid)
    summary["isAdmin"] = identity.is_admin
    return summary


@router.get("/v1/languages")
async def languages(container: ServiceContainer = Depends(get_container)):
    """Language catalogue from the synthesis service, or the static fallback."""
    return await container.gateway.get_languages()


@router.get("/health")
async def health(container: ServiceContainer = Depends(get_container)):
    """
    Liveness check.

    Always answers 200 while this process is up; ``upstream`` reports the
    synthesis service separately so a probe can tell the two apart.
    """
    upstream: Optional[Dict[str, Any]] = await container.gateway.health()
    return {
        "ok": True,
        "version": __version__,
        "pending_persistence": container.pipeline.pending,
        "upstream": upstream,
    }


@router.get("/metrics")
async def prometheus_metrics(container: ServiceContainer = Depends(get_container)):
    """Prometheus metrics in text exposition format."""
    content, content_type = container.metrics.get_metrics_response()
    return Response(content=content, media_type=content_type)
