from __future__ import annotations

from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable


@dataclass(frozen=True)
class AudioStream:
    """
    Audio bytes still being read from the provider.

    `chunks` is forward-only; `aclose` releases the underlying connection and
    must be awaited whether or not the stream was fully consumed.
    """

    content_type: str
    chunks: AsyncIterator[bytes]
    aclose: Callable[[], Awaitable[None]]


@dataclass(frozen=True)
class UpstreamFailure:
    status_code: int
    body: str


class TTSClient:
    async def open_stream(self, *, text: str, voice: str, audio_format: str) -> "AudioStream | UpstreamFailure":
        raise NotImplementedError
