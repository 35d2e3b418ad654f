"""Tests for the agent server client, including SSE parsing."""

from __future__ import annotations

import json

import httpx
import pytest

from sandboxchat.client_state.errors import TransportError
from sandboxchat.client_state.models.conversation import TextPart
from sandboxchat.client_state.models.events import (
    MessagePartUpdated,
    MessageUpdated,
    OpaqueEvent,
    ServerConnected,
)
from sandboxchat.client_state.opencode.client import OpencodeClient

BASE_URL = "http://sandbox.test"


def make_client(handler) -> OpencodeClient:
    return OpencodeClient(BASE_URL, client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


def sse(*payloads: object) -> bytes:
    lines: list[str] = [": keep-alive"]
    for payload in payloads:
        data = payload if isinstance(payload, str) else json.dumps(payload)
        lines.append(f"data: {data}")
        lines.append("")
    return ("\n".join(lines) + "\n").encode()


# ---------------------------------------------------------------------------
# Sessions and messages
# ---------------------------------------------------------------------------


async def test_create_session_posts_title() -> None:
    sent: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        sent.append(json.loads(request.content))
        return httpx.Response(200, json={"id": "ses_1", "title": "New Conversation"})

    session = await make_client(handler).create_session("New Conversation")

    assert session["id"] == "ses_1"
    assert sent == [{"title": "New Conversation"}]


async def test_create_session_without_id_fails() -> None:
    client = make_client(lambda request: httpx.Response(200, json={"title": "x"}))

    with pytest.raises(TransportError, match="missing id"):
        await client.create_session("x")


async def test_list_messages_returns_snapshot() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/session/ses_1/message"
        return httpx.Response(
            200,
            json=[
                {
                    "info": {"id": "m1", "sessionID": "ses_1", "role": "user"},
                    "parts": [{"id": "p1", "messageID": "m1", "type": "text", "text": "hi"}],
                },
                {"info": {"id": "m2", "sessionID": "ses_1", "role": "assistant"}, "parts": []},
            ],
        )

    snapshot = await make_client(handler).list_messages("ses_1")

    assert isinstance(snapshot, tuple)
    assert [m.id for m in snapshot] == ["m1", "m2"]
    assert isinstance(snapshot[0].parts[0], TextPart)


async def test_list_messages_malformed_is_transport_error() -> None:
    client = make_client(lambda request: httpx.Response(200, json=[{"parts": []}]))

    with pytest.raises(TransportError, match="malformed"):
        await client.list_messages("ses_1")


async def test_send_prompt_includes_model_only_when_complete() -> None:
    sent: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        sent.append(json.loads(request.content))
        return httpx.Response(200, json={"info": {"id": "m3"}})

    client = make_client(handler)
    await client.send_prompt("ses_1", "hello")
    await client.send_prompt("ses_1", "hello", provider_id="anthropic", model_id="claude")

    assert sent[0] == {"parts": [{"type": "text", "text": "hello"}]}
    assert sent[1]["model"] == {"providerID": "anthropic", "modelID": "claude"}


async def test_list_providers_unwraps_config_payload() -> None:
    client = make_client(lambda request: httpx.Response(200, json={"providers": [{"id": "anthropic"}]}))

    assert await client.list_providers() == [{"id": "anthropic"}]


async def test_http_error_is_transport_error() -> None:
    client = make_client(lambda request: httpx.Response(500, text="boom"))

    with pytest.raises(TransportError) as exc_info:
        await client.list_sessions()
    assert exc_info.value.status_code == 500


# ---------------------------------------------------------------------------
# Event stream
# ---------------------------------------------------------------------------


async def test_stream_events_parses_data_lines() -> None:
    body = sse(
        {"type": "server.connected", "properties": {}},
        {"type": "message.updated", "properties": {"info": {"id": "m1", "sessionID": "ses_1"}}},
        "not json",
        {"type": "message.updated", "properties": {}},
        {
            "type": "message.part.updated",
            "properties": {"part": {"id": "p1", "messageID": "m1", "type": "text", "text": "hi"}},
        },
        {"type": "lsp.updated", "properties": {}},
    )

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/event"
        return httpx.Response(200, content=body, headers={"content-type": "text/event-stream"})

    events = [event async for event in make_client(handler).stream_events()]

    assert [type(e) for e in events] == [ServerConnected, MessageUpdated, MessagePartUpdated, OpaqueEvent]
    assert events[3].type == "lsp.updated"


async def test_stream_events_http_error() -> None:
    client = make_client(lambda request: httpx.Response(502, text="bad gateway"))

    with pytest.raises(TransportError) as exc_info:
        async for _ in client.stream_events():
            pass
    assert exc_info.value.status_code == 502
    assert "bad gateway" in str(exc_info.value)


async def test_stream_events_connection_failure() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(TransportError):
        async for _ in make_client(handler).stream_events():
            pass
