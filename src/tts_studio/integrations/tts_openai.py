from __future__ import annotations

from typing import Any, AsyncIterator, Dict, Optional, Union

import httpx

from tts_studio.integrations.tts import AudioStream, TTSClient, UpstreamFailure

DEFAULT_CONTENT_TYPE = "audio/mpeg"


class OpenAITTSClient(TTSClient):
    """
    One-shot client for OpenAI's POST /audio/speech.

    No retries. The response body is handed back as a stream; the caller owns
    closing it.
    """

    def __init__(
        self,
        *,
        api_key: str,
        model: str,
        base_url: str,
        timeout_seconds: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_seconds
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        kwargs: Dict[str, Any] = {}
        if self._timeout is not None:
            kwargs["timeout"] = self._timeout
        if self._transport is not None:
            kwargs["transport"] = self._transport
        return httpx.AsyncClient(**kwargs)

    async def open_stream(
        self,
        *,
        text: str,
        voice: str,
        audio_format: str,
    ) -> Union[AudioStream, UpstreamFailure]:
        url = f"{self._base_url}/audio/speech"
        headers: Dict[str, str] = {
            "Authorization": "Bearer %s" % (self._api_key,),
            "Content-Type": "application/json",
        }
        payload: Dict[str, Any] = {
            "model": self._model,
            "input": text,
            "voice": voice,
            "format": audio_format,
        }

        client = self._client()
        try:
            request = client.build_request("POST", url, json=payload, headers=headers)
            resp = await client.send(request, stream=True)
        except BaseException:
            await client.aclose()
            raise

        if not resp.is_success:
            try:
                await resp.aread()
                body = resp.text
            finally:
                await resp.aclose()
                await client.aclose()
            return UpstreamFailure(status_code=resp.status_code, body=body)

        closed = False

        async def _close() -> None:
            nonlocal closed
            if closed:
                return
            closed = True
            try:
                await resp.aclose()
            finally:
                await client.aclose()

        content_type = resp.headers.get("content-type") or DEFAULT_CONTENT_TYPE
        return AudioStream(content_type=content_type, chunks=_iter_body(resp), aclose=_close)


async def _iter_body(resp: httpx.Response) -> AsyncIterator[bytes]:
    async for chunk in resp.aiter_bytes():
        if chunk:
            yield chunk
