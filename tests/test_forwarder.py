import asyncio
import json
from typing import List

import httpx
import pytest

from tts_studio.config import AppSettings
from tts_studio.forwarder import (
    ForwarderConfig,
    RequestRejected,
    SpeechForwarder,
    SynthesisRequest,
    parse_synthesis_request,
)
from tts_studio.services.tts_gateway import create_app


class TrackingStream(httpx.AsyncByteStream):
    def __init__(self, chunks: List[bytes], fail_after: int = -1) -> None:
        self._chunks = chunks
        self._fail_after = fail_after
        self.closed = False

    async def __aiter__(self):
        for i, chunk in enumerate(self._chunks):
            if i == self._fail_after:
                raise httpx.ReadError("upstream went away")
            yield chunk
        if self._fail_after == len(self._chunks):
            raise httpx.ReadError("upstream went away")

    async def aclose(self) -> None:
        self.closed = True


class Upstream:
    """Records calls and answers with a canned response."""

    def __init__(self, response_factory) -> None:
        self.requests: List[httpx.Request] = []
        self._factory = response_factory

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self._factory(request)

    def payloads(self) -> List[dict]:
        return [json.loads(r.content) for r in self.requests]


def _gateway(upstream: Upstream, *, api_key="sk-test") -> httpx.AsyncClient:
    forwarder = SpeechForwarder(
        ForwarderConfig(api_key=api_key, base_url="https://upstream.test/v1"),
        transport=httpx.MockTransport(upstream),
    )
    app = create_app(AppSettings(), forwarder=forwarder)
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://studio.test")


def _audio(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, content=b"ID3\x00fake-mp3", headers={"content-type": "audio/mpeg"})


# --- parsing ---


def test_parse_applies_defaults() -> None:
    assert parse_synthesis_request(b'{"text": "hello"}') == SynthesisRequest(text="hello", voice="alloy", format="mp3")


def test_parse_keeps_explicit_voice_and_format() -> None:
    parsed = parse_synthesis_request('{"text": "hi", "voice": "sage", "format": "wav", "extra": 1}')
    assert parsed == SynthesisRequest(text="hi", voice="sage", format="wav")


def test_parse_treats_null_voice_as_absent() -> None:
    parsed = parse_synthesis_request(b'{"text": "hi", "voice": null, "format": null}')
    assert parsed == SynthesisRequest(text="hi")


@pytest.mark.parametrize(
    "body",
    [b"{}", b'{"text": ""}', b'{"text": 42}', b'{"text": null}', b"[]", b'"text"', b"not json", b""],
)
def test_parse_rejects_missing_text(body: bytes) -> None:
    assert parse_synthesis_request(body) == RequestRejected(error="Missing text")


def test_parse_rejects_non_string_voice_and_format() -> None:
    assert parse_synthesis_request(b'{"text": "hi", "voice": 3}') == RequestRejected(error="Invalid voice")
    assert parse_synthesis_request(b'{"text": "hi", "format": ["mp3"]}') == RequestRejected(error="Invalid format")
    # A bad text wins over a bad voice.
    assert parse_synthesis_request(b'{"voice": 3}') == RequestRejected(error="Missing text")


# --- POST /api/tts ---


@pytest.mark.asyncio
async def test_success_streams_upstream_bytes() -> None:
    upstream = Upstream(_audio)
    async with _gateway(upstream) as client:
        resp = await client.post("/api/tts", json={"text": "Hello world"})

    assert resp.status_code == 200
    assert resp.content == b"ID3\x00fake-mp3"
    assert resp.headers["content-type"] == "audio/mpeg"
    assert resp.headers["cache-control"] == "no-store"

    assert len(upstream.requests) == 1
    sent = upstream.requests[0]
    assert str(sent.url) == "https://upstream.test/v1/audio/speech"
    assert sent.headers["authorization"] == "Bearer sk-test"
    assert upstream.payloads()[0] == {
        "model": "gpt-4o-mini-tts",
        "input": "Hello world",
        "voice": "alloy",
        "format": "mp3",
    }


@pytest.mark.asyncio
async def test_success_preserves_upstream_content_type() -> None:
    upstream = Upstream(lambda r: httpx.Response(200, content=b"RIFFwav", headers={"content-type": "audio/wav"}))
    async with _gateway(upstream) as client:
        resp = await client.post("/api/tts", json={"text": "hi", "voice": "coral", "format": "wav"})

    assert resp.status_code == 200
    assert resp.headers["content-type"] == "audio/wav"
    assert upstream.payloads()[0]["voice"] == "coral"
    assert upstream.payloads()[0]["format"] == "wav"


@pytest.mark.asyncio
async def test_success_defaults_content_type_to_mpeg() -> None:
    upstream = Upstream(lambda r: httpx.Response(200, content=b"\xff\xfb"))
    async with _gateway(upstream) as client:
        resp = await client.post("/api/tts", json={"text": "hi"})

    assert resp.status_code == 200
    assert resp.headers["content-type"] == "audio/mpeg"
    assert resp.content == b"\xff\xfb"


@pytest.mark.asyncio
async def test_multi_chunk_body_is_relayed_and_upstream_closed() -> None:
    stream = TrackingStream([b"chunk-1|", b"chunk-2|", b"chunk-3"])
    upstream = Upstream(lambda r: httpx.Response(200, stream=stream, headers={"content-type": "audio/ogg"}))
    async with _gateway(upstream) as client:
        resp = await client.post("/api/tts", json={"text": "hi", "format": "opus"})

    assert resp.status_code == 200
    assert resp.content == b"chunk-1|chunk-2|chunk-3"
    assert stream.closed


@pytest.mark.asyncio
async def test_missing_text_is_rejected_without_upstream_call() -> None:
    upstream = Upstream(_audio)
    async with _gateway(upstream) as client:
        resp = await client.post("/api/tts", json={})
        resp_bad_type = await client.post("/api/tts", json={"text": 123})
        resp_garbage = await client.post("/api/tts", content=b"{nope")

    for r in (resp, resp_bad_type, resp_garbage):
        assert r.status_code == 400
        assert r.json() == {"error": "Missing text"}
    assert upstream.requests == []


@pytest.mark.asyncio
async def test_missing_api_key_returns_501_without_upstream_call() -> None:
    upstream = Upstream(_audio)
    async with _gateway(upstream, api_key=None) as client:
        resp = await client.post("/api/tts", json={"text": "hi"})

    assert resp.status_code == 501
    assert resp.json() == {"error": "Cloud TTS not configured (missing OPENAI_API_KEY)."}
    assert upstream.requests == []


@pytest.mark.asyncio
async def test_validation_runs_before_configuration_check() -> None:
    upstream = Upstream(_audio)
    async with _gateway(upstream, api_key="") as client:
        resp = await client.post("/api/tts", json={})

    assert resp.status_code == 400


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [400, 401, 429, 500, 503])
async def test_upstream_failure_is_always_502(status: int) -> None:
    upstream = Upstream(lambda r: httpx.Response(status, text="rate limited"))
    async with _gateway(upstream) as client:
        resp = await client.post("/api/tts", json={"text": "hi"})

    assert resp.status_code == 502
    assert resp.json() == {"error": "Upstream TTS failed", "details": "rate limited"}


@pytest.mark.asyncio
async def test_upstream_json_error_body_is_passed_verbatim() -> None:
    body = '{"error": {"message": "Incorrect API key provided", "type": "invalid_request_error"}}'
    upstream = Upstream(lambda r: httpx.Response(401, text=body))
    async with _gateway(upstream) as client:
        resp = await client.post("/api/tts", json={"text": "hi"})

    assert resp.status_code == 502
    assert resp.json()["details"] == body


@pytest.mark.asyncio
async def test_network_error_becomes_500() -> None:
    def _boom(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    upstream = Upstream(_boom)
    async with _gateway(upstream) as client:
        resp = await client.post("/api/tts", json={"text": "hi"})

    assert resp.status_code == 500
    assert resp.json() == {"error": "Unexpected error", "message": "connection refused"}


@pytest.mark.asyncio
async def test_exception_without_message_reports_unknown() -> None:
    def _boom(request: httpx.Request) -> httpx.Response:
        raise RuntimeError()

    async with _gateway(Upstream(_boom)) as client:
        resp = await client.post("/api/tts", json={"text": "hi"})

    assert resp.status_code == 500
    assert resp.json() == {"error": "Unexpected error", "message": "unknown"}


@pytest.mark.asyncio
async def test_read_failure_before_first_chunk_becomes_500() -> None:
    stream = TrackingStream([b"never"], fail_after=0)
    upstream = Upstream(lambda r: httpx.Response(200, stream=stream, headers={"content-type": "audio/mpeg"}))
    async with _gateway(upstream) as client:
        resp = await client.post("/api/tts", json={"text": "hi"})

    assert resp.status_code == 500
    assert resp.json() == {"error": "Unexpected error", "message": "upstream went away"}
    assert stream.closed


@pytest.mark.asyncio
async def test_same_request_twice_hits_upstream_twice() -> None:
    upstream = Upstream(_audio)
    async with _gateway(upstream) as client:
        first = await client.post("/api/tts", json={"text": "again"})
        second = await client.post("/api/tts", json={"text": "again"})

    assert first.content == second.content
    assert len(upstream.requests) == 2


@pytest.mark.asyncio
async def test_healthz_reports_cloud_configuration() -> None:
    async with _gateway(Upstream(_audio), api_key=None) as client:
        resp = await client.get("/healthz")

    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "cloud_configured": False}


@pytest.mark.asyncio
async def test_index_page_is_served() -> None:
    async with _gateway(Upstream(_audio)) as client:
        resp = await client.get("/")

    assert resp.status_code == 200
    assert "text/html" in resp.headers["content-type"]
    assert "/api/tts" in resp.text
    assert '<option value="alloy">alloy</option>' in resp.text


# --- stream release ---


def _forwarder_for(stream: TrackingStream) -> SpeechForwarder:
    upstream = Upstream(lambda r: httpx.Response(200, stream=stream, headers={"content-type": "audio/mpeg"}))
    return SpeechForwarder(
        ForwarderConfig(api_key="sk-test", base_url="https://upstream.test/v1"),
        transport=httpx.MockTransport(upstream),
    )


async def _serve(response, send) -> None:
    scope = {
        "type": "http",
        "asgi": {"version": "3.0", "spec_version": "2.4"},
        "http_version": "1.1",
        "method": "POST",
        "path": "/api/tts",
        "headers": [],
    }

    async def receive():
        await asyncio.Event().wait()

    await response(scope, receive, send)


@pytest.mark.asyncio
async def test_caller_disconnect_releases_upstream() -> None:
    stream = TrackingStream([b"chunk-1|", b"chunk-2|", b"chunk-3"])
    response = await _forwarder_for(stream).forward(b'{"text": "hi"}')
    assert response.status_code == 200

    async def send(message) -> None:
        if message["type"] == "http.response.body":
            raise OSError("client went away")

    with pytest.raises(Exception):
        await _serve(response, send)

    assert stream.closed


@pytest.mark.asyncio
async def test_read_failure_mid_stream_cuts_body_and_releases_upstream() -> None:
    stream = TrackingStream([b"chunk-1|", b"chunk-2"], fail_after=1)
    response = await _forwarder_for(stream).forward(b'{"text": "hi"}')
    assert response.status_code == 200

    bodies = []

    async def send(message) -> None:
        if message["type"] == "http.response.body":
            bodies.append(message.get("body", b""))

    with pytest.raises(Exception):
        await _serve(response, send)

    assert bodies[0] == b"chunk-1|"
    assert b"chunk-2" not in b"".join(bodies)
    assert stream.closed
