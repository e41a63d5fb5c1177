"""
Speech request forwarder behind POST /api/tts.

Pipeline per call: validate -> configuration check -> defaults -> one upstream
call -> relay. Every outcome is a response; nothing raises past `forward`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, AsyncIterator, Dict, Optional, Union

import httpx
from pydantic import BaseModel, ConfigDict, Field, StrictStr, ValidationError
from fastapi.responses import JSONResponse, Response, StreamingResponse

from tts_studio.core.logging import get_logger
from tts_studio.integrations.tts import AudioStream, UpstreamFailure
from tts_studio.integrations.tts_openai import DEFAULT_CONTENT_TYPE, OpenAITTSClient

if TYPE_CHECKING:

    from tts_studio.config import AppSettings

DEFAULT_VOICE = "alloy"
DEFAULT_FORMAT = "mp3"
DEFAULT_MODEL = "gpt-4o-mini-tts"
DEFAULT_BASE_URL = "https://api.openai.com/v1"

MISSING_TEXT = "Missing text"
INVALID_VOICE = "Invalid voice"
INVALID_FORMAT = "Invalid format"


@dataclass(frozen=True)
class ForwarderConfig:
    """Read-only upstream configuration, built once at startup."""

    api_key: Optional[str]
    model: str = DEFAULT_MODEL
    base_url: str = DEFAULT_BASE_URL
    timeout_seconds: Optional[float] = None

    @classmethod
    def from_settings(cls, settings: "AppSettings") -> "ForwarderConfig":
        return cls(
            api_key=settings.openai.api_key,
            model=settings.openai.model,
            base_url=settings.openai.base_url,
            timeout_seconds=settings.openai.timeout_seconds,
        )

    @property
    def configured(self) -> bool:
        return bool(self.api_key)


@dataclass(frozen=True)
class SynthesisRequest:
    text: str
    voice: str = DEFAULT_VOICE
    format: str = DEFAULT_FORMAT


@dataclass(frozen=True)
class RequestRejected:
    error: str


class _SynthesisRequestBody(BaseModel):
    model_config = ConfigDict(extra="ignore")

    text: StrictStr = Field(min_length=1)
    voice: Optional[StrictStr] = None
    format: Optional[StrictStr] = None


def parse_synthesis_request(body: Union[bytes, str]) -> Union[SynthesisRequest, RequestRejected]:
    """
    Decode and validate a request body.

    Anything wrong with `text` (or a body that is not a JSON object) reads as
    "Missing text". `voice`/`format` may be absent or null; other non-string
    values are rejected.
    """
    try:
        parsed = _SynthesisRequestBody.model_validate_json(body)
    except ValidationError as e:
        return RequestRejected(error=_rejection_for(e))

    return SynthesisRequest(
        text=parsed.text,
        voice=parsed.voice if parsed.voice is not None else DEFAULT_VOICE,
        format=parsed.format if parsed.format is not None else DEFAULT_FORMAT,
    )


def _rejection_for(err: ValidationError) -> str:
    fields = set()
    for item in err.errors():
        loc = item.get("loc") or ()
        fields.add(loc[0] if loc else "")
    if "voice" in fields and not fields - {"voice", "format"}:
        return INVALID_VOICE
    if fields == {"format"}:
        return INVALID_FORMAT
    return MISSING_TEXT


class ForwarderError(Exception):
    status_code = 500
    error = "Unexpected error"

    def to_body(self) -> Dict[str, Any]:
        return {"error": self.error}

    def to_response(self) -> JSONResponse:
        return JSONResponse(status_code=self.status_code, content=self.to_body())


class BadRequest(ForwarderError):
    status_code = 400

    def __init__(self, error: str = MISSING_TEXT) -> None:
        super().__init__(error)
        self.error = error


class NotConfigured(ForwarderError):
    status_code = 501
    error = "Cloud TTS not configured (missing OPENAI_API_KEY)."


class UpstreamError(ForwarderError):
    status_code = 502
    error = "Upstream TTS failed"

    def __init__(self, details: str) -> None:
        super().__init__(details)
        self.details = details

    def to_body(self) -> Dict[str, Any]:
        return {"error": self.error, "details": self.details}


class InternalError(ForwarderError):
    status_code = 500
    error = "Unexpected error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message or "unknown"

    def to_body(self) -> Dict[str, Any]:
        return {"error": self.error, "message": self.message}


class SpeechForwarder:
    """
    Stateless relay to the cloud TTS provider.

    Holds only the immutable config (and an optional httpx transport for
    tests), so a single instance can serve concurrent requests.
    """

    def __init__(
        self,
        config: ForwarderConfig,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._config = config
        self._transport = transport
        self._log = get_logger(component="forwarder")

    @property
    def config(self) -> ForwarderConfig:
        return self._config

    async def forward(self, body: Union[bytes, str]) -> Response:
        try:
            return await self._forward(body)
        except ForwarderError as e:
            return e.to_response()
        except Exception as e:
            self._log.error("unexpected_error", error=type(e).__name__, detail=str(e), exc_info=True)
            return InternalError(str(e)).to_response()

    async def _forward(self, body: Union[bytes, str]) -> Response:
        parsed = parse_synthesis_request(body)
        if isinstance(parsed, RequestRejected):
            self._log.warning("tts_rejected", reason=parsed.error)
            raise BadRequest(parsed.error)

        if not self._config.configured:
            self._log.warning("tts_not_configured", hint="Set OPENAI_API_KEY")
            raise NotConfigured()

        self._log.info(
            "tts_request",
            voice=parsed.voice,
            format=parsed.format,
            text_length=len(parsed.text),
        )

        assert self._config.api_key is not None
        client = OpenAITTSClient(
            api_key=self._config.api_key,
            model=self._config.model,
            base_url=self._config.base_url,
            timeout_seconds=self._config.timeout_seconds,
            transport=self._transport,
        )
        result = await client.open_stream(text=parsed.text, voice=parsed.voice, audio_format=parsed.format)

        if isinstance(result, UpstreamFailure):
            # The provider's own status is not surfaced to callers.
            self._log.warning("upstream_failed", upstream_status=result.status_code, details=result.body[:300])
            raise UpstreamError(result.body)

        # Read the first chunk before committing a 200 so early read
        # failures still map to a JSON error.
        try:
            first = await _first_chunk(result)
        except BaseException:
            await result.aclose()
            raise

        self._log.info("tts_streaming", content_type=result.content_type)
        return _RelayResponse(
            result,
            _relay(first, result, self._log),
            status_code=200,
            headers={"Content-Type": result.content_type or DEFAULT_CONTENT_TYPE, "Cache-Control": "no-store"},
        )


async def _first_chunk(stream: AudioStream) -> bytes:
    try:
        return await stream.chunks.__anext__()
    except StopAsyncIteration:
        return b""


async def _relay(first: bytes, stream: AudioStream, log: Any) -> AsyncIterator[bytes]:
    try:
        if first:
            yield first
        async for chunk in stream.chunks:
            yield chunk
    except Exception as e:
        # Status line is already out; all we can do is cut the stream.
        log.error("upstream_stream_aborted", error=type(e).__name__, detail=str(e))
        raise
    finally:
        await stream.aclose()


class _RelayResponse(StreamingResponse):
    """StreamingResponse that releases the upstream connection even if the caller disconnects."""

    def __init__(self, stream: AudioStream, content: AsyncIterator[bytes], **kwargs: Any) -> None:
        super().__init__(content, **kwargs)
        self._upstream = stream

    async def __call__(self, scope: Any, receive: Any, send: Any) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            await self._upstream.aclose()
