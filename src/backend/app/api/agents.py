"""
REST API for registering agent credentials with the consultation pool.
"""
from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter

from app.db.agents import AgentDirectory
from app.db.store import get_store
from app.models.schemas import AgentRecord, AgentRegistration, AgentSummary

logger = logging.getLogger(__name__)
router = APIRouter()


def _summary(agent: AgentRecord) -> AgentSummary:
    return AgentSummary(
        id=agent.id,
        external_id=agent.external_id,
        name=agent.name,
        consultable=agent.consultable,
    )


@router.post("", response_model=AgentSummary, status_code=201)
async def register_agent(registration: AgentRegistration):
    """Register an agent, or refresh the credentials of a known one."""
    agent = await AgentDirectory(get_store()).upsert_agent(
        external_id=registration.external_id,
        access_token=registration.access_token,
        refresh_token=registration.refresh_token,
        expires_in=registration.expires_in,
        name=registration.name,
        bio=registration.bio,
    )
    logger.info(f"Registered agent {agent.id} ({registration.external_id})")
    return _summary(agent)


@router.get("", response_model=List[AgentSummary])
async def list_consultable_agents(exclude_id: str = ""):
    agents = await AgentDirectory(get_store()).get_consultable_agents(exclude_id)
    return [_summary(a) for a in agents]
