import asyncio
import json

import httpx
import pytest

from app.services.agent_client import (
    AgentAuthError,
    AgentCallError,
    AgentPlatformClient,
    DEMO_RESPONSES,
    TokenRefreshError,
)


def _sse(*payloads) -> bytes:
    lines = []
    for payload in payloads:
        data = payload if isinstance(payload, str) else json.dumps(payload)
        lines.append(f"data: {data}\n\n")
    return "".join(lines).encode("utf-8")


def _client(handler) -> AgentPlatformClient:
    return AgentPlatformClient(
        base_url="http://agents.test",
        client_id="cid",
        client_secret="secret",
        demo_mode=False,
        transport=httpx.MockTransport(handler),
    )


def test_chat_reassembles_streamed_deltas():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["path"] = request.url.path
        captured["auth"] = request.headers["authorization"]
        captured["body"] = json.loads(request.content)
        body = _sse(
            {"type": "session", "sessionId": "s-42"},
            {"type": "content_delta", "content": "Fasting "},
            {"choices": [{"delta": {"content": "overnight "}}]},
            "not json",
            {"type": "delta", "text": "is enough."},
            "[DONE]",
        )
        return httpx.Response(200, content=body, headers={"content-type": "text/event-stream"})

    reply = asyncio.run(_client(handler).chat("tok", "question?", "system prompt"))

    assert reply.text == "Fasting overnight is enough."
    assert reply.session_id == "s-42"
    assert captured["path"] == "/api/secondme/chat/stream"
    assert captured["auth"] == "Bearer tok"
    assert captured["body"] == {"message": "question?", "systemPrompt": "system prompt"}


@pytest.mark.parametrize("status", [401, 403])
def test_chat_rejected_credential_raises_auth_error(status):
    client = _client(lambda request: httpx.Response(status, text="unauthorized"))
    with pytest.raises(AgentAuthError):
        asyncio.run(client.chat("tok", "q", "p"))


def test_chat_server_error_raises_call_error():
    client = _client(lambda request: httpx.Response(502, text="bad gateway"))
    with pytest.raises(AgentCallError, match="502"):
        asyncio.run(client.chat("tok", "q", "p"))


def test_missing_base_url_raises_call_error():
    client = AgentPlatformClient(base_url="", demo_mode=False)
    with pytest.raises(AgentCallError, match="not configured"):
        asyncio.run(client.chat("tok", "q", "p"))


def test_refresh_parses_envelope():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["path"] = request.url.path
        captured["form"] = request.content.decode()
        return httpx.Response(200, json={
            "code": 0,
            "data": {"accessToken": "new-a", "refreshToken": "new-r", "expiresIn": 7200},
        })

    tokens = asyncio.run(_client(handler).refresh_tokens("old-r"))

    assert (tokens.access_token, tokens.refresh_token, tokens.expires_in) == ("new-a", "new-r", 7200)
    assert captured["path"] == "/api/oauth/token/refresh"
    assert "grant_type=refresh_token" in captured["form"]
    assert "refresh_token=old-r" in captured["form"]


def test_refresh_rejection_raises():
    client = _client(lambda request: httpx.Response(200, json={"code": 401, "message": "invalid_grant"}))
    with pytest.raises(TokenRefreshError, match="invalid_grant"):
        asyncio.run(client.refresh_tokens("old-r"))


def test_refresh_malformed_payload_raises():
    client = _client(lambda request: httpx.Response(200, json={"code": 0, "data": {"accessToken": "a"}}))
    with pytest.raises(TokenRefreshError, match="Malformed"):
        asyncio.run(client.refresh_tokens("old-r"))


def test_demo_mode_returns_canned_answer():
    client = AgentPlatformClient(base_url="", demo_mode=True)
    reply = asyncio.run(client.chat("tok", "q", "p"))

    assert reply.text in DEMO_RESPONSES
    assert reply.session_id.startswith("demo-")
