"""
Consultation Orchestrator — drives one consultation to a terminal status.

Pipeline:
  1. Create (or adopt) the consultation record, mark it CONSULTING
  2. Triage the question and adjust the system prompt
  3. Select eligible agents (bounded fan-out)
  4. Initial round: parallel queries, in-order validation, batch persist
  5. Reaction round, when its gate holds
  6. Synthesis and the final status decision

Per-agent and per-write failures arrive as data, so the control flow is
never interrupted by a single participant. Progress events go through the
emitter and never block the run.
"""
from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

from app.agent.emitter import ConsultationEmitter, StoreEventSink
from app.agent.prompts import SYSTEM_PROMPT
from app.agent.query import AgentQueryService
from app.agent.reaction import ReactionRoundCoordinator
from app.config import settings
from app.db.agents import AgentDirectory
from app.db.base import StorageAdapter
from app.db.consultations import ConsultationRepository
from app.db.responses import ResponseRepository
from app.db.store import get_store
from app.models.events import (
    AgentFailed,
    AgentQueryStarted,
    AgentResponded,
    ConsultationDone,
    ConsultationStarted,
    SummaryReady,
    ValidationCompleted,
)
from app.models.schemas import (
    AgentQueryOutcome,
    AgentRecord,
    AgentResponseRecord,
    ConsultationResult,
    ConsultationStatus,
    InvalidReason,
    ReportSummary,
    ResponseRound,
)
from app.services.triage import TriageService, adjusted_system_prompt
from app.tools.response_validator import RoundValidator
from app.tools.synthesis import SynthesisTool

logger = logging.getLogger(__name__)

MIN_SUBSTANTIVE_FOR_DONE = 3


class ConsultationOrchestrator:
    """
    Usage:
        orchestrator = ConsultationOrchestrator(store)
        result = await orchestrator.run_consultation(asker_id, question)
    """

    def __init__(
        self,
        store: Optional[StorageAdapter] = None,
        query_service: Optional[AgentQueryService] = None,
        triage: Optional[TriageService] = None,
        synthesis: Optional[SynthesisTool] = None,
        reaction: Optional[ReactionRoundCoordinator] = None,
        max_agents: Optional[int] = None,
        agent_timeout: Optional[float] = None,
        duplicate_threshold: Optional[float] = None,
    ):
        self.store = store or get_store()
        self.directory = AgentDirectory(self.store)
        self.consultations = ConsultationRepository(self.store)
        self.responses = ResponseRepository(self.store)
        self.query_service = query_service or AgentQueryService(self.store, directory=self.directory)
        self.triage = triage or TriageService(self.query_service.client)
        self.synthesis = synthesis or SynthesisTool()
        self.reaction = reaction or ReactionRoundCoordinator(self.query_service, self.responses)
        self.max_agents = max_agents or settings.max_agents_per_consultation
        self.agent_timeout = agent_timeout or settings.agent_timeout_seconds
        self.duplicate_threshold = duplicate_threshold

    async def run_consultation(
        self,
        asker_id: str,
        question: str,
        emitter: Optional[ConsultationEmitter] = None,
        consultation_id: Optional[str] = None,
    ) -> ConsultationResult:
        """
        Run one consultation to a terminal status.

        Args:
            asker_id: Agent id of the asker (excluded from selection)
            question: The health question
            emitter: Optional progress emitter; a private one is used otherwise
            consultation_id: Adopt a consultation created earlier (e.g. by the API)

        Returns:
            ConsultationResult with every response row written for the consultation
        """
        emitter = emitter or ConsultationEmitter()

        consultation = None
        if consultation_id:
            consultation = await self.consultations.get(consultation_id)
        if consultation is None:
            consultation = await self.consultations.create(asker_id, question, consultation_id)
        cid = consultation.id

        emitter.on(StoreEventSink(self.store, cid))

        await self.consultations.update(cid, status=ConsultationStatus.CONSULTING)
        emitter.emit(ConsultationStarted(consultation_id=cid, question=question))
        logger.info(f"Consultation {cid} started for asker {asker_id}")

        triage = await self.triage.classify(question)
        system_prompt = adjusted_system_prompt(SYSTEM_PROMPT + question, triage)

        eligible = await self.directory.get_consultable_agents(asker_id)
        agents = eligible[: self.max_agents]
        await self.consultations.update(cid, agent_count=len(agents), triage=triage)

        if not agents:
            logger.warning(f"Consultation {cid}: no eligible agents")
            return await self._finish(
                cid, ConsultationStatus.FAILED, None, [], triage, emitter
            )

        # ── Initial round ──
        rows, substantive, no_experience = await self._initial_round(
            cid, agents, question, system_prompt, emitter
        )
        write_results = await self.responses.add_responses_batch(rows)
        failed_writes = [r for r in write_results if not r.success]
        if failed_writes:
            logger.warning(f"Consultation {cid}: {len(failed_writes)} responses failed to persist")

        emitter.emit(ValidationCompleted(
            valid_count=substantive,
            no_experience_count=no_experience,
            total_count=len(agents),
        ))
        logger.info(
            f"Consultation {cid} initial round: {substantive} substantive, "
            f"{no_experience} no-experience, {len(agents)} queried"
        )

        # ── Reaction round (gated) ──
        stored = await self.responses.get_responses(cid)
        reaction_ran = False
        if self.reaction.should_run(stored):
            accepted = [r for r in stored if r.is_valid and r.round == ResponseRound.INITIAL]
            await self.reaction.run(cid, question, accepted, agents, emitter)
            reaction_ran = True

        # ── Synthesis and status ──
        final_rows = await self.responses.get_responses(cid)
        stored_initial = [r for r in final_rows if r.round == ResponseRound.INITIAL]

        summary: Optional[ReportSummary] = None
        if substantive >= MIN_SUBSTANTIVE_FOR_DONE:
            summary = await self.synthesis.run(
                question, final_rows, len(agents), no_experience, reaction_ran
            )
            status = ConsultationStatus.PARTIAL if failed_writes else ConsultationStatus.DONE
        elif substantive + no_experience > 0:
            summary = await self.synthesis.run(
                question, final_rows, len(agents), no_experience, reaction_ran
            )
            status = ConsultationStatus.PARTIAL
        elif len(stored_initial) < len(agents):
            status = ConsultationStatus.PARTIAL
        else:
            status = ConsultationStatus.FAILED

        if summary is not None:
            emitter.emit(SummaryReady(report=summary))
        return await self._finish(cid, status, summary, final_rows, triage, emitter)

    async def _initial_round(
        self,
        consultation_id: str,
        agents: List[AgentRecord],
        question: str,
        system_prompt: str,
        emitter: ConsultationEmitter,
    ):
        for agent in agents:
            emitter.emit(AgentQueryStarted(agent_id=agent.id, round=ResponseRound.INITIAL))

        outcomes: List[AgentQueryOutcome] = await asyncio.gather(
            *[
                self.query_service.query(agent, question, system_prompt, timeout=self.agent_timeout)
                for agent in agents
            ]
        )

        validator = RoundValidator(self.duplicate_threshold)
        rows: List[AgentResponseRecord] = []
        for outcome in outcomes:
            if not outcome.succeeded:
                emitter.emit(AgentFailed(
                    agent_id=outcome.agent_id,
                    round=ResponseRound.INITIAL,
                    error=outcome.error or outcome.failure.value,
                ))
                rows.append(AgentResponseRecord(
                    consultation_id=consultation_id,
                    responder_id=outcome.agent_id,
                    is_valid=False,
                    invalid_reason=InvalidReason(outcome.failure.value),
                    latency_ms=outcome.latency_ms,
                ))
                continue

            emitter.emit(AgentResponded(
                agent_id=outcome.agent_id,
                round=ResponseRound.INITIAL,
                latency_ms=outcome.latency_ms,
            ))
            verdict = validator.check(outcome.text)
            rows.append(AgentResponseRecord(
                consultation_id=consultation_id,
                responder_id=outcome.agent_id,
                session_id=outcome.session_id,
                raw_response=outcome.text,
                is_valid=verdict.is_valid,
                is_no_experience=verdict.is_no_experience,
                invalid_reason=verdict.reason,
                latency_ms=outcome.latency_ms,
            ))

        return rows, validator.valid_count, validator.no_experience_count

    async def _finish(
        self,
        consultation_id: str,
        status: ConsultationStatus,
        summary: Optional[ReportSummary],
        responses: List[AgentResponseRecord],
        triage,
        emitter: ConsultationEmitter,
    ) -> ConsultationResult:
        await self.consultations.update(consultation_id, status=status, summary=summary)
        emitter.emit(ConsultationDone(status=status))
        logger.info(f"Consultation {consultation_id} finished: {status.value}")
        return ConsultationResult(
            consultation_id=consultation_id,
            status=status,
            summary=summary,
            responses=responses,
            triage=triage,
        )


async def run_consultation(
    asker_id: str,
    question: str,
    emitter: Optional[ConsultationEmitter] = None,
    consultation_id: Optional[str] = None,
) -> ConsultationResult:
    """Run a consultation against the process-wide store and default collaborators."""
    return await ConsultationOrchestrator().run_consultation(
        asker_id, question, emitter=emitter, consultation_id=consultation_id
    )
