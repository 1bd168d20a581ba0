"""
Agent Platform Client — talks to the external agent chat and OAuth endpoints.

Endpoints used:
  1. POST /api/secondme/chat/stream   — streamed chat (server-sent events)
  2. POST /api/oauth/token/refresh    — credential refresh
  3. POST /api/secondme/act           — structured classification (triage)

Errors are raised as typed exceptions; the agent query service turns them
into failure outcomes so one agent never aborts its siblings.
"""
from __future__ import annotations

import asyncio
import json
import logging
import random
import time
from typing import Any, Optional

import httpx

from app.config import settings
from app.models.schemas import AgentReply, TokenBundle

logger = logging.getLogger(__name__)

DEMO_RESPONSES = [
    "From my owner's experience this does need attention. Watch it for a week and "
    "if the symptoms persist, go and get it checked at a hospital.",
    "My owner went through something similar. The blood test and ultrasound cost "
    "about $300-500 in total and it turned out to be nothing serious.",
    "Go for the check-up on an empty stomach, and remember to bring your insurance "
    "card and previous records. For an ultrasound you may need a full bladder.",
    "It depends on the details. My owner suggests booking a regular appointment "
    "first; you do not need to go straight to a specialist, which saves money.",
    "My owner's reminder: if there is fever or severe pain, do not wait. "
    "See a doctor as soon as possible.",
]


class AgentAuthError(Exception):
    """The platform rejected the agent's credential (HTTP 401/403)."""


class AgentCallError(Exception):
    """Any other unusable response from the chat endpoint."""


class TokenRefreshError(Exception):
    """The refresh endpoint rejected the refresh token or returned malformed data."""


class AgentPlatformClient:
    """
    Thin async client for the agent platform.

    Usage:
        client = AgentPlatformClient()
        reply = await client.chat(access_token, "question", system_prompt)
        tokens = await client.refresh_tokens(refresh_token)
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        demo_mode: Optional[bool] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url if base_url is not None else settings.agent_api_base_url).rstrip("/")
        self.client_id = client_id if client_id is not None else settings.agent_client_id
        self.client_secret = client_secret if client_secret is not None else settings.agent_client_secret
        self.demo_mode = settings.demo_mode if demo_mode is None else demo_mode
        self._transport = transport

    def _client(self, timeout: Optional[float] = None) -> httpx.AsyncClient:
        if not self.base_url and not self.demo_mode:
            raise AgentCallError("AGENT_API_BASE_URL is not configured")
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=self._transport,
        )

    async def chat(
        self,
        access_token: str,
        message: str,
        system_prompt: str,
        session_id: Optional[str] = None,
    ) -> AgentReply:
        """
        Send one message and reassemble the streamed answer.

        Args:
            access_token: The responding agent's credential
            message: The asker's question
            system_prompt: Round-specific instructions
            session_id: Optional existing session to continue

        Returns:
            AgentReply with the full text and the platform session id
        """
        if self.demo_mode:
            await asyncio.sleep(0.5 + random.random())
            return AgentReply(
                text=random.choice(DEMO_RESPONSES),
                session_id=session_id or f"demo-{int(time.time() * 1000)}",
            )

        body: dict[str, Any] = {"message": message, "systemPrompt": system_prompt}
        if session_id:
            body["sessionId"] = session_id

        async with self._client() as client:
            async with client.stream(
                "POST",
                "/api/secondme/chat/stream",
                json=body,
                headers={"Authorization": f"Bearer {access_token}"},
            ) as response:
                if response.status_code in (401, 403):
                    raise AgentAuthError(f"Chat API rejected credential ({response.status_code})")
                if response.status_code >= 400:
                    detail = (await response.aread()).decode("utf-8", errors="replace")
                    raise AgentCallError(f"Chat API error {response.status_code}: {detail[:200]}")

                text_parts: list[str] = []
                result_session = session_id or ""
                async for line in response.aiter_lines():
                    result_session = self._consume_sse_line(line, text_parts, result_session)

        return AgentReply(text="".join(text_parts), session_id=result_session)

    @staticmethod
    def _consume_sse_line(line: str, text_parts: list[str], session_id: str) -> str:
        """Apply one ``data:`` line to the accumulated answer. Returns the session id."""
        if not line.startswith("data:"):
            return session_id
        payload = line[5:].strip()
        if not payload or payload == "[DONE]":
            return session_id
        try:
            data = json.loads(payload)
        except json.JSONDecodeError:
            return session_id
        if not isinstance(data, dict):
            return session_id

        if data.get("type") == "session" and data.get("sessionId"):
            session_id = data["sessionId"]
        if data.get("type") in ("content_delta", "delta"):
            text_parts.append(data.get("content") or data.get("text") or "")
        choices = data.get("choices") or []
        if choices and isinstance(choices[0], dict):
            content = (choices[0].get("delta") or {}).get("content")
            if content:
                text_parts.append(content)
        return session_id

    async def refresh_tokens(self, refresh_token: str) -> TokenBundle:
        """Exchange a refresh token for a new access/refresh pair."""
        form = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
        }
        try:
            async with self._client(timeout=10.0) as client:
                response = await client.post("/api/oauth/token/refresh", data=form)
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise TokenRefreshError(f"Token refresh request failed: {e}") from e

        if payload.get("code") != 0 or not isinstance(payload.get("data"), dict):
            raise TokenRefreshError(
                f"Token refresh failed: {payload.get('message') or json.dumps(payload)[:200]}"
            )
        data = payload["data"]
        try:
            return TokenBundle(
                access_token=data["accessToken"],
                refresh_token=data["refreshToken"],
                expires_in=int(data["expiresIn"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise TokenRefreshError(f"Malformed refresh payload: {e}") from e

    async def act(self, message: str, system_prompt: str, timeout: float = 10.0) -> Any:
        """Structured-action call; returns the raw ``data`` field of the envelope."""
        if self.demo_mode:
            raise AgentCallError("Act API is not available in demo mode")
        async with self._client(timeout=timeout) as client:
            response = await client.post(
                "/api/secondme/act",
                json={"message": message, "systemPrompt": system_prompt, "responseFormat": "json"},
            )
        response.raise_for_status()
        payload = response.json()
        if payload.get("code") != 0 or payload.get("data") is None:
            raise AgentCallError(f"Act API returned code {payload.get('code')}")
        return payload["data"]
