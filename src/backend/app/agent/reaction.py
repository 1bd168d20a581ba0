"""
Reaction round: a second, gated pass where agents whose initial answer was
accepted read a redacted digest of everyone's answers and respond to it.
"""
from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

from app.agent.emitter import ConsultationEmitter
from app.agent.prompts import REACTION_PROMPT
from app.agent.query import AgentQueryService
from app.config import settings
from app.db.responses import ResponseRepository
from app.models.events import (
    AgentFailed,
    AgentQueryStarted,
    AgentResponded,
    ReactionCompleted,
    ReactionStarted,
)
from app.models.schemas import (
    AgentRecord,
    AgentResponseRecord,
    InvalidReason,
    ResponseRound,
    WriteResult,
)
from app.tools.synthesis import anonymize

logger = logging.getLogger(__name__)

DIGEST_EXCERPT_LENGTH = 100


def should_run_reaction(
    enabled: bool, initial_rows: List[AgentResponseRecord]
) -> bool:
    """At least two accepted initial answers, at least one with substance."""
    accepted = [r for r in initial_rows if r.is_valid and r.round == ResponseRound.INITIAL]
    return (
        enabled
        and len(accepted) >= 2
        and any(not r.is_no_experience for r in accepted)
    )


def build_digest(consultation_id: str, accepted: List[AgentResponseRecord]) -> str:
    return "\n".join(
        f"{i}. {anonymize(consultation_id, r.responder_id)}: "
        f"{r.raw_response[:DIGEST_EXCERPT_LENGTH]}..."
        for i, r in enumerate(accepted, 1)
    )


class ReactionRoundCoordinator:
    def __init__(
        self,
        query_service: AgentQueryService,
        responses: ResponseRepository,
        enabled: Optional[bool] = None,
        timeout: Optional[float] = None,
    ):
        self.query_service = query_service
        self.responses = responses
        self.enabled = settings.reaction_round_enabled if enabled is None else enabled
        self.timeout = timeout or settings.reaction_timeout_seconds

    def should_run(self, initial_rows: List[AgentResponseRecord]) -> bool:
        return should_run_reaction(self.enabled, initial_rows)

    async def run(
        self,
        consultation_id: str,
        question: str,
        accepted: List[AgentResponseRecord],
        agents: List[AgentRecord],
        emitter: ConsultationEmitter,
    ) -> List[WriteResult]:
        """
        Query every agent whose initial answer was accepted and persist one
        reaction row per agent. Failed calls become invalid rows.
        """
        emitter.emit(ReactionStarted(trigger_count=len(accepted)))

        accepted_ids = {r.responder_id for r in accepted}
        targets = [a for a in agents if a.id in accepted_ids]
        prompt = REACTION_PROMPT + build_digest(consultation_id, accepted) + "\n\n" + question

        for agent in targets:
            emitter.emit(AgentQueryStarted(agent_id=agent.id, round=ResponseRound.REACTION))

        outcomes = await asyncio.gather(
            *[self.query_service.query(a, question, prompt, timeout=self.timeout) for a in targets]
        )

        rows: List[AgentResponseRecord] = []
        for outcome in outcomes:
            if outcome.succeeded:
                emitter.emit(AgentResponded(
                    agent_id=outcome.agent_id,
                    round=ResponseRound.REACTION,
                    latency_ms=outcome.latency_ms,
                ))
                rows.append(AgentResponseRecord(
                    consultation_id=consultation_id,
                    responder_id=outcome.agent_id,
                    round=ResponseRound.REACTION,
                    session_id=outcome.session_id,
                    raw_response=outcome.text,
                    is_valid=True,
                    latency_ms=outcome.latency_ms,
                ))
            else:
                emitter.emit(AgentFailed(
                    agent_id=outcome.agent_id,
                    round=ResponseRound.REACTION,
                    error=outcome.error or outcome.failure.value,
                ))
                rows.append(AgentResponseRecord(
                    consultation_id=consultation_id,
                    responder_id=outcome.agent_id,
                    round=ResponseRound.REACTION,
                    is_valid=False,
                    invalid_reason=InvalidReason.REACTION_FAILED,
                    latency_ms=outcome.latency_ms,
                ))

        results = await self.responses.add_responses_batch(rows)
        failed = sum(1 for r in results if not r.success)
        if failed:
            logger.warning(f"{failed} reaction responses failed to persist for {consultation_id}")

        logger.info(
            f"Reaction round for {consultation_id}: "
            f"{sum(1 for r in rows if r.is_valid)}/{len(rows)} agents reacted"
        )
        emitter.emit(ReactionCompleted(response_count=len(rows)))
        return results
