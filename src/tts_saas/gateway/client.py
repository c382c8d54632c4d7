"""
Synthesis Gateway: httpx Client for the External TTS Service.

Upstream Endpoints:
    POST /tts/stream            {text, speaker_id, language}
    POST /translate-tts/stream  {text, speaker_id, src_lang, tgt_lang}
    GET  /languages             Language catalogue
    GET  /health                Model and device status

Both generation endpoints answer with a chunked ``audio/wav`` body.

Deadline:
    Each generation call has one deadline (gateway.timeout_s, default 300s)
    shared by the request, the response headers and every body read. A
    read that would pass the deadline is cancelled and raises
    UpstreamTimeoutError. The httpx client's own connect timeout still
    bounds connection setup separately.

Empty Bodies:
    ByteStream.prime() pulls the first non-empty chunk before the caller
    commits to a response, so an upstream that answers 200 with no audio
    is reported as an UpstreamError instead of an empty file.

Example:
    >>> gateway = SynthesisGateway.from_config(config.gateway)
    >>> stream = await gateway.synthesize("Hello", "default_female_01", "en")
    >>> await stream.prime()
    >>> async for chunk in stream:
    ...     sink.write(chunk)
"""
from __future__ import annotations

from typing import Any, AsyncIterator, Dict, Optional

import anyio
import httpx

from tts_saas.core.config import GatewayConfig
from tts_saas.core.logging import debug, get_logger, verbose, warn
from tts_saas.services.errors import UpstreamError, UpstreamTimeoutError

from .languages import fallback_languages, is_valid_catalogue

_LOG = get_logger("tts-saas.gateway")

TTS_STREAM_PATH = "/tts/stream"
TRANSLATE_TTS_STREAM_PATH = "/translate-tts/stream"
LANGUAGES_PATH = "/languages"
HEALTH_PATH = "/health"

_ERROR_BODY_CHARS = 200


class ByteStream:
    """
    An open upstream audio body, iterated chunk by chunk.

    Iterate with ``async for``; the response is closed when iteration ends,
    fails, or ``aclose()`` is called.

    Attributes:
        endpoint: Upstream path that produced the stream.
        bytes_read: Total body bytes read so far.
        first_byte_seconds: Time from request start to the first chunk
            (set by prime()).
    """

    def __init__(self, response: httpx.Response, deadline: float, endpoint: str, started_at: float):
        self._response = response
        self._chunks = response.aiter_bytes()
        self._deadline = deadline
        self._started_at = started_at
        self._pending: Optional[bytes] = None
        self._primed = False
        self._closed = False
        self.endpoint = endpoint
        self.bytes_read = 0
        self.first_byte_seconds: Optional[float] = None

    @property
    def status_code(self) -> int:
        return self._response.status_code

    async def _next_chunk(self) -> Optional[bytes]:
        remaining = self._deadline - anyio.current_time()
        if remaining <= 0:
            await self.aclose()
            raise UpstreamTimeoutError(details={"endpoint": self.endpoint, "bytes_read": self.bytes_read})

        try:
            with anyio.fail_after(remaining):
                chunk = await self._chunks.__anext__()
        except StopAsyncIteration:
            return None
        except (TimeoutError, httpx.TimeoutException) as e:
            await self.aclose()
            raise UpstreamTimeoutError(details={"endpoint": self.endpoint, "bytes_read": self.bytes_read}) from e
        except httpx.HTTPError as e:
            await self.aclose()
            raise UpstreamError(
                f"Synthesis stream interrupted: {e}",
                details={"endpoint": self.endpoint, "bytes_read": self.bytes_read},
            ) from e

        self.bytes_read += len(chunk)
        return chunk

    async def prime(self) -> None:
        """
        Read ahead to the first non-empty chunk.

        Raises:
            UpstreamError: If the body ends before any audio arrives
            UpstreamTimeoutError: If the deadline passes first
        """
        if self._primed:
            return
        while True:
            chunk = await self._next_chunk()
            if chunk is None:
                await self.aclose()
                raise UpstreamError(
                    "No audio stream received from synthesis service",
                    status=self.status_code,
                    details={"endpoint": self.endpoint},
                )
            if chunk:
                self._pending = chunk
                self._primed = True
                self.first_byte_seconds = anyio.current_time() - self._started_at
                debug(_LOG, "upstream_first_byte", endpoint=self.endpoint, seconds=self.first_byte_seconds)
                return

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[bytes]:
        try:
            if self._pending is not None:
                chunk, self._pending = self._pending, None
                yield chunk
            while True:
                chunk = await self._next_chunk()
                if chunk is None:
                    return
                if chunk:
                    yield chunk
        finally:
            await self.aclose()

    async def read_all(self) -> bytes:
        """Prime and collect the whole body."""
        await self.prime()
        parts = [chunk async for chunk in self]
        return b"".join(parts)

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._response.aclose()


class SynthesisGateway:
    """
    Client for the external synthesis service.

    The gateway holds an injected ``httpx.AsyncClient``; tests pass one
    built on ``httpx.MockTransport``.

    Args:
        client: HTTP client used for every upstream call
        base_url: Service root (trailing slashes are stripped)
        api_key: Sent as a Bearer token when non-empty
        timeout_s: Deadline for a whole generation call
        health_timeout_s: Timeout for /health and /languages
        owns_client: Close ``client`` in aclose()
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str,
        api_key: str = "",
        timeout_s: float = 300.0,
        health_timeout_s: float = 10.0,
        owns_client: bool = False,
    ):
        self._client = client
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout_s = timeout_s
        self._health_timeout_s = health_timeout_s
        self._owns_client = owns_client

    @classmethod
    def from_config(
        cls,
        config: GatewayConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "SynthesisGateway":
        client = httpx.AsyncClient(
            timeout=httpx.Timeout(config.timeout_s, connect=config.connect_timeout_s),
            transport=transport,
        )
        return cls(
            client,
            config.base_url,
            api_key=config.api_key,
            timeout_s=config.timeout_s,
            health_timeout_s=config.health_timeout_s,
            owns_client=True,
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    async def _open(self, path: str, payload: Dict[str, Any]) -> ByteStream:
        url = f"{self._base_url}{path}"
        started_at = anyio.current_time()
        deadline = started_at + self._timeout_s
        request = self._client.build_request("POST", url, json=payload, headers=self._headers())

        verbose(_LOG, "upstream_open", endpoint=path, chars=len(payload.get("text", "")))
        try:
            with anyio.fail_after(self._timeout_s):
                response = await self._client.send(request, stream=True)
                if not response.is_success:
                    body = await response.aread()
                    await response.aclose()
                    text = body.decode("utf-8", errors="replace")[:_ERROR_BODY_CHARS]
                    warn(_LOG, "upstream_error_status", endpoint=path, status=response.status_code)
                    raise UpstreamError(
                        f"Synthesis service error: {response.status_code}",
                        status=response.status_code,
                        details={"endpoint": path, "body": text},
                    )
        except (TimeoutError, httpx.TimeoutException) as e:
            warn(_LOG, "upstream_timeout", endpoint=path, timeout_s=self._timeout_s)
            raise UpstreamTimeoutError(details={"endpoint": path}) from e
        except httpx.HTTPError as e:
            warn(_LOG, "upstream_connect_failed", endpoint=path, error=str(e))
            raise UpstreamError(
                f"Failed to connect to synthesis service: {e}",
                details={"endpoint": path},
            ) from e

        return ByteStream(response, deadline, path, started_at)

    async def synthesize(self, text: str, speaker_id: str, language: str = "en") -> ByteStream:
        """Open a streaming TTS generation."""
        return await self._open(
            TTS_STREAM_PATH,
            {"text": text, "speaker_id": speaker_id, "language": language},
        )

    async def translate_and_synthesize(
        self, text: str, speaker_id: str, source_lang: str, target_lang: str
    ) -> ByteStream:
        """Open a streaming translate-then-speak generation (NLLB codes)."""
        return await self._open(
            TRANSLATE_TTS_STREAM_PATH,
            {"text": text, "speaker_id": speaker_id, "src_lang": source_lang, "tgt_lang": target_lang},
        )

    async def generate(self, text: str, speaker_id: str, language: str = "en") -> bytes:
        """Full mode: the complete TTS body as bytes."""
        stream = await self.synthesize(text, speaker_id, language)
        return await stream.read_all()

    async def generate_translate(
        self, text: str, speaker_id: str, source_lang: str, target_lang: str
    ) -> bytes:
        stream = await self.translate_and_synthesize(text, speaker_id, source_lang, target_lang)
        return await stream.read_all()

    async def get_languages(self) -> Dict[str, Any]:
        """
        Fetch the language catalogue.

        Never raises: any upstream problem returns the static fallback.
        """
        try:
            response = await self._client.get(
                f"{self._base_url}{LANGUAGES_PATH}",
                headers=self._headers(),
                timeout=self._health_timeout_s,
            )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            warn(_LOG, "languages_fallback", error=str(e))
            return fallback_languages()

        if not is_valid_catalogue(data):
            warn(_LOG, "languages_fallback", error="unexpected catalogue shape")
            return fallback_languages()
        return data

    async def health(self) -> Dict[str, Any]:
        """
        Summarize upstream health.

        Returns:
            {"reachable": bool, "status": str, ...upstream fields}
        """
        try:
            response = await self._client.get(
                f"{self._base_url}{HEALTH_PATH}",
                headers=self._headers(),
                timeout=self._health_timeout_s,
            )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            return {"reachable": False, "status": "unreachable", "error": str(e)}

        summary: Dict[str, Any] = {"reachable": True, "status": "unknown"}
        if isinstance(data, dict):
            summary.update(data)
        return summary
