import asyncio
import os
import sys
from pathlib import Path
from typing import Dict, List, Optional, Union

import pytest


BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

# Keep tests hermetic regardless of local shell/.env values.
os.environ["STORE_BACKEND"] = "memory"
os.environ["DEMO_MODE"] = "false"
os.environ["AGENT_API_BASE_URL"] = "http://agents.test"
os.environ["REACTION_ROUND_ENABLED"] = "false"
os.environ["SUMMARIZER_ENABLED"] = "false"
os.environ["REFRESH_LOCK_WAIT_SECONDS"] = "0.05"

from app.db.agents import AgentDirectory  # noqa: E402
from app.db.memory import MemoryStore  # noqa: E402
from app.db.store import set_store  # noqa: E402
from app.models.schemas import AgentReply, AgentRecord, TokenBundle  # noqa: E402
from app.services.agent_client import AgentCallError  # noqa: E402


SUBSTANTIVE_ANSWERS = [
    "My owner had a gastroscopy last spring. Fasting from the night before was required "
    "and the whole procedure took about twenty minutes.",
    "Sedated endoscopy felt like a short nap for my owner. Bring someone to take you home "
    "because you cannot drive afterwards.",
    "The unsedated version is uncomfortable but quick. My owner's clinic charged about "
    "$200-400 and results came back within a week.",
    "Ask about the biopsy in advance. My owner needed two follow-up visits before the "
    "pathology report was ready and explained by the specialist.",
    "Drink only clear fluids the day before. My owner also stopped iron supplements a "
    "week early because the nurse recommended it for a clearer view.",
]

NO_EXPERIENCE_ANSWER = "Sorry, my owner has no relevant experience with this kind of procedure."


Script = Union[str, BaseException, "Delayed"]


class Delayed:
    """A scripted answer that arrives after ``delay`` seconds."""

    def __init__(self, text: str, delay: float):
        self.text = text
        self.delay = delay


class FakeAgentClient:
    """
    Scripted stand-in for AgentPlatformClient.

    ``answers`` maps an access token to a reply text, an exception to
    raise, or a Delayed reply. ``refreshes`` maps a refresh token to the
    bundle (or exception) returned by the refresh endpoint.
    """

    def __init__(
        self,
        answers: Optional[Dict[str, Script]] = None,
        refreshes: Optional[Dict[str, Union[TokenBundle, BaseException]]] = None,
        refresh_delay: float = 0.0,
    ):
        self.answers = answers or {}
        self.refreshes = refreshes or {}
        self.refresh_delay = refresh_delay
        self.chat_calls: List[Dict[str, str]] = []
        self.refresh_calls: List[str] = []

    async def chat(self, access_token, message, system_prompt, session_id=None) -> AgentReply:
        self.chat_calls.append(
            {"access_token": access_token, "message": message, "system_prompt": system_prompt}
        )
        script = self.answers.get(access_token, "")
        if isinstance(script, BaseException):
            raise script
        if isinstance(script, Delayed):
            await asyncio.sleep(script.delay)
            script = script.text
        return AgentReply(text=script, session_id=f"session-{access_token}")

    async def refresh_tokens(self, refresh_token) -> TokenBundle:
        self.refresh_calls.append(refresh_token)
        if self.refresh_delay:
            await asyncio.sleep(self.refresh_delay)
        result = self.refreshes.get(refresh_token)
        if result is None:
            raise AgentCallError(f"No scripted refresh for {refresh_token}")
        if isinstance(result, BaseException):
            raise result
        return result

    async def act(self, message, system_prompt, timeout=10.0):
        raise AgentCallError("Act API not scripted")


async def register_agents(
    store: MemoryStore, count: int, expires_in: int = 3600, prefix: str = "agent"
) -> List[AgentRecord]:
    """Register ``count`` agents whose access tokens are ``{prefix}-{i}-token``."""
    directory = AgentDirectory(store)
    agents = []
    for i in range(count):
        agents.append(await directory.upsert_agent(
            external_id=f"{prefix}-{i}",
            access_token=f"{prefix}-{i}-token",
            refresh_token=f"{prefix}-{i}-refresh",
            expires_in=expires_in,
            name=f"{prefix.title()} {i}",
        ))
    return agents


@pytest.fixture
def store():
    memory = MemoryStore()
    set_store(memory)
    yield memory
    set_store(None)


@pytest.fixture
def fake_client():
    return FakeAgentClient()
