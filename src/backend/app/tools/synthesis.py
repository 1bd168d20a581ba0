"""
Tool: Report Synthesis

Turns the accepted response set into a de-identified ReportSummary.

Rule-based pipeline (always available):
  1. Key-point extraction per answer
  2. Consensus clustering across distinct agents
  3. Divergence detection on polarity keyword pairs
  4. Preparation / doctor-referral sentence extraction
  5. Cost-range extraction
  6. Reaction highlights (when a reaction round ran)

Optional generative path: asks an LLM for the same shape and silently
falls back to the rule-based report on timeout, malformed JSON or missing
fields. The generative path never decides correctness.
"""
from __future__ import annotations

import asyncio
import hashlib
import logging
from typing import List, Optional

from app.agent.prompts import SUMMARIZER_PROMPT, SUMMARIZER_SYSTEM_PROMPT
from app.config import settings
from app.models.schemas import (
    AgentExcerpt,
    AgentResponseRecord,
    GenerativeDraft,
    ReactionHighlight,
    ReportSummary,
    ResponseRound,
)
from app.services.llm import LLMService
from app.tools.consensus import build_consensus
from app.tools.extraction import (
    extract_cost_range,
    extract_divergence,
    extract_doctor_confirm_items,
    extract_key_points,
    extract_preparation_items,
)
from app.tools.text_similarity import SimilarityFn, bigram_similarity

logger = logging.getLogger(__name__)

EXCERPT_LENGTH = 200
REACTION_EXCERPT_LENGTH = 150
ANONYMOUS_LABEL = "Anonymous"


def anonymize(consultation_id: str, agent_id: str) -> str:
    """Stable per-consultation opaque token for an agent."""
    digest = hashlib.sha256(f"{consultation_id}:{agent_id}".encode("utf-8")).hexdigest()
    return f"Agent-{digest[:6]}"


class SynthesisTool:
    """Builds the consultation report from persisted response rows."""

    def __init__(
        self,
        llm: Optional[LLMService] = None,
        generative_enabled: Optional[bool] = None,
        generative_timeout: Optional[float] = None,
        similarity: SimilarityFn = bigram_similarity,
    ):
        self.generative_enabled = (
            settings.summarizer_enabled if generative_enabled is None else generative_enabled
        )
        self.generative_timeout = generative_timeout or settings.summarizer_timeout_seconds
        self.similarity = similarity
        self._llm = llm

    @property
    def llm(self) -> LLMService:
        if self._llm is None:
            self._llm = LLMService()
        return self._llm

    async def run(
        self,
        question: str,
        responses: List[AgentResponseRecord],
        total_queried: int,
        no_experience_count: int,
        reaction_ran: bool = False,
    ) -> ReportSummary:
        """
        Synthesize the report.

        Args:
            question: The asker's question
            responses: All response rows of the consultation (both rounds)
            total_queried: Agents queried in the initial round
            no_experience_count: Valid-but-no-experience initial answers
            reaction_ran: Whether a reaction round executed

        Returns:
            ReportSummary, generative if enabled and well-formed, rule-based otherwise
        """
        report = self.build_rule_based(
            responses, total_queried, no_experience_count, reaction_ran
        )
        if not self.generative_enabled:
            return report

        try:
            draft = await asyncio.wait_for(
                self._generate_draft(question, responses), timeout=self.generative_timeout
            )
        except Exception as e:
            logger.warning(
                f"Generative summary unavailable ({type(e).__name__}: {e}), using rule-based report"
            )
            return report

        cost_range = draft.cost_range
        if cost_range and cost_range.max > settings.cost_sanity_ceiling:
            cost_range = None

        logger.info("Generative summary accepted")
        return report.model_copy(update={
            "consensus": draft.consensus[:5],
            "divergence": draft.divergence[:3],
            "preparation": draft.preparation[:8],
            "need_doctor_confirm": draft.need_doctor_confirm[:5] or report.need_doctor_confirm,
            "cost_range": cost_range,
            "generated_by": "llm",
        })

    def build_rule_based(
        self,
        responses: List[AgentResponseRecord],
        total_queried: int,
        no_experience_count: int,
        reaction_ran: bool = False,
    ) -> ReportSummary:
        initial = [
            r for r in responses if r.is_valid and r.round == ResponseRound.INITIAL
        ]
        substantive = [r for r in initial if not r.is_no_experience]
        texts = [r.raw_response for r in initial]

        candidates = [
            (r.responder_id, point)
            for r in substantive
            for point in extract_key_points(r.raw_response)
        ]
        consensus = build_consensus(
            candidates,
            total_agents=len(substantive),
            similarity=self.similarity,
        )

        excerpts = [
            AgentExcerpt(
                agent_id=ANONYMOUS_LABEL,
                summary=r.raw_response[:EXCERPT_LENGTH],
                key_points=extract_key_points(r.raw_response),
            )
            for r in initial
        ]

        reaction_highlights = None
        if reaction_ran:
            reaction_highlights = [
                ReactionHighlight(
                    agent_id=anonymize(r.consultation_id, r.responder_id),
                    reaction=r.raw_response[:REACTION_EXCERPT_LENGTH],
                    references=extract_key_points(r.raw_response, limit=2),
                )
                for r in responses
                if r.round == ResponseRound.REACTION and r.is_valid and len(r.raw_response) > 10
            ]

        return ReportSummary(
            consensus=consensus,
            divergence=extract_divergence(texts),
            preparation=extract_preparation_items(texts),
            need_doctor_confirm=extract_doctor_confirm_items(texts),
            cost_range=extract_cost_range(texts),
            agent_responses=excerpts,
            no_experience_count=no_experience_count,
            total_agents_queried=total_queried,
            reaction_highlights=reaction_highlights,
        )

    async def _generate_draft(
        self, question: str, responses: List[AgentResponseRecord]
    ) -> GenerativeDraft:
        valid = [r for r in responses if r.is_valid and r.round == ResponseRound.INITIAL]
        answers = "\n".join(
            f"{i}. {r.raw_response}" for i, r in enumerate(valid, 1)
        )
        prompt = SUMMARIZER_PROMPT.format(question=question, count=len(valid), answers=answers)
        return await self.llm.generate_structured(
            prompt=prompt,
            response_model=GenerativeDraft,
            system_prompt=SUMMARIZER_SYSTEM_PROMPT,
            temperature=0.2,
        )
