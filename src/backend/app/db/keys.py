"""Key schema for everything the engine keeps in the store."""
from __future__ import annotations

CONSULTABLE_AGENTS = "consultable-agents"


def agent(agent_id: str) -> str:
    return f"agent:{agent_id}"


def agent_by_external(external_id: str) -> str:
    return f"agent:external:{external_id}"


def consultation(consultation_id: str) -> str:
    return f"consultation:{consultation_id}"


def asker_consultations(asker_id: str) -> str:
    return f"agent-consultations:{asker_id}"


def responses(consultation_id: str) -> str:
    return f"responses:{consultation_id}"


def idempotent(consultation_id: str, round_index: int, agent_id: str) -> str:
    return f"consultation:{consultation_id}:round:{round_index}:agent:{agent_id}"


def refresh_lock(agent_id: str) -> str:
    return f"lock:refresh:{agent_id}"


def consultation_events(consultation_id: str) -> str:
    return f"consultation-events:{consultation_id}"
