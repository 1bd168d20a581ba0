"""
Agent directory: availability records for consultable agents.

Read by agent selection, written by credential refresh and circuit
breaking.
"""
from __future__ import annotations

import logging
import time
from typing import List, Optional

from app.db import keys
from app.db.base import StorageAdapter
from app.models.schemas import AgentRecord

logger = logging.getLogger(__name__)


class AgentDirectory:
    def __init__(self, store: StorageAdapter):
        self.store = store

    async def upsert_agent(
        self,
        external_id: str,
        access_token: str,
        refresh_token: str,
        expires_in: int,
        name: str = "",
        bio: Optional[str] = None,
    ) -> AgentRecord:
        """Register an agent or refresh an existing one, clearing any circuit break."""
        expiry = time.time() + expires_in
        existing_id = await self.store.get(keys.agent_by_external(external_id))
        existing = await self.get_agent(existing_id) if existing_id else None

        if existing:
            agent = existing.model_copy(update={
                "name": name or existing.name,
                "bio": bio if bio is not None else existing.bio,
                "access_token": access_token,
                "refresh_token": refresh_token,
                "token_expiry": expiry,
                "consultable": True,
                "circuit_breaker_until": None,
            })
        else:
            agent = AgentRecord(
                external_id=external_id,
                name=name,
                bio=bio,
                access_token=access_token,
                refresh_token=refresh_token,
                token_expiry=expiry,
            )
            await self.store.set(keys.agent_by_external(external_id), agent.id)

        await self._save(agent)
        await self.store.sadd(keys.CONSULTABLE_AGENTS, agent.id)
        return agent

    async def get_agent(self, agent_id: str) -> Optional[AgentRecord]:
        data = await self.store.get(keys.agent(agent_id))
        return AgentRecord.model_validate(data) if data else None

    async def get_consultable_agents(self, exclude_id: str) -> List[AgentRecord]:
        """Eligible agents: consultable, not the asker, unexpired, not circuit-broken."""
        now = time.time()
        agents: List[AgentRecord] = []
        for agent_id in await self.store.smembers(keys.CONSULTABLE_AGENTS):
            agent = await self.get_agent(agent_id)
            if agent and agent.is_eligible(exclude_id, now):
                agents.append(agent)
        return agents

    async def circuit_break(self, agent_id: str, minutes: int = 30) -> None:
        agent = await self.get_agent(agent_id)
        if not agent:
            return
        agent.circuit_breaker_until = time.time() + minutes * 60
        await self._save(agent)
        logger.warning(f"Agent {agent_id} circuit-broken for {minutes} min")

    async def update_tokens(
        self, agent_id: str, access_token: str, refresh_token: str, expires_in: int
    ) -> Optional[AgentRecord]:
        agent = await self.get_agent(agent_id)
        if not agent:
            return None
        agent.access_token = access_token
        agent.refresh_token = refresh_token
        agent.token_expiry = time.time() + expires_in
        await self._save(agent)
        return agent

    async def _save(self, agent: AgentRecord) -> None:
        await self.store.set(keys.agent(agent.id), agent.model_dump(mode="json"))
