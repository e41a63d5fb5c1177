from __future__ import annotations

import contextlib
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import AsyncIterator, Dict, Optional

import httpx

from tts_studio.client.errors import BackendBusyError, CloudSynthesisError
from tts_studio.core.logging import get_logger


@dataclass(frozen=True)
class GeneratedClip:
    data: bytes
    content_type: str
    format: str
    created_ms: int = field(default_factory=lambda: int(time.time() * 1000))

    @property
    def filename(self) -> str:
        return "tts-%d.%s" % (self.created_ms, self.format)

    def save(self, directory: Path) -> Path:
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / self.filename
        path.write_bytes(self.data)
        return path


class CloudSpeechBackend:
    """
    Calls the gateway's POST /api/tts and returns the audio as a clip.

    Only one generation may be in flight per backend; the `generating` flag
    is released on every exit path.
    """

    def __init__(
        self,
        *,
        gateway_url: str,
        timeout_seconds: float,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._gateway_url = gateway_url.rstrip("/")
        self._timeout = timeout_seconds
        self._transport = transport
        self._generating = False
        self._log = get_logger(component="cloud_backend")

    @property
    def generating(self) -> bool:
        return self._generating

    @contextlib.asynccontextmanager
    async def _generation(self) -> AsyncIterator[None]:
        if self._generating:
            raise BackendBusyError("A cloud generation is already in progress")
        self._generating = True
        try:
            yield
        finally:
            self._generating = False

    async def synthesize(self, *, text: str, voice: str, audio_format: str) -> GeneratedClip:
        async with self._generation():
            url = f"{self._gateway_url}/api/tts"
            payload: Dict[str, str] = {"text": text, "voice": voice, "format": audio_format}
            self._log.info("cloud_request", voice=voice, format=audio_format, text_length=len(text))

            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.post(url, json=payload)
                if not resp.is_success:
                    msg = resp.text
                    self._log.warning("cloud_failed", status=resp.status_code, details=msg[:300])
                    raise CloudSynthesisError(msg or "Cloud TTS failed", status_code=resp.status_code)

                content_type = resp.headers.get("content-type", "audio/mpeg")
                return GeneratedClip(data=resp.content, content_type=content_type, format=audio_format)
