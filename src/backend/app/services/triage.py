"""
Triage Service — classifies the question's intent to tune the system prompt.

Uses the platform's structured-action endpoint and falls back to keyword
rules on any failure; triage never blocks a consultation.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Optional

from app.agent.prompts import INTENT_PROMPT_ADJUSTMENTS, TRIAGE_SYSTEM_PROMPT
from app.models.schemas import TriageIntent, TriageResult
from app.services.agent_client import AgentPlatformClient

logger = logging.getLogger(__name__)

EMERGENCY_KEYWORDS = [
    "urgent", "sudden", "bleeding", "chest pain", "can't breathe", "short of breath",
    "fainted", "severe", "急", "突然", "出血", "胸痛", "呼吸困难", "晕倒", "剧烈",
]
MEDICATION_KEYWORDS = [
    "medication", "medicine", "drug", "pill", "dose", "side effect", "prescription",
    "antibiotic", "药", "副作用", "服用", "处方",
]
EXPERIENCE_KEYWORDS = [
    "what does it feel like", "what is it like", "experience", "has anyone",
    "went through", "what to expect", "什么感受", "经历", "体验", "做过",
]


class TriageService:
    def __init__(self, client: Optional[AgentPlatformClient] = None):
        self.client = client or AgentPlatformClient()

    async def classify(self, question: str) -> TriageResult:
        try:
            data = await self.client.act(question, TRIAGE_SYSTEM_PROMPT)
            result = self._parse(data)
            if result is not None:
                return result
        except Exception as e:
            logger.warning(f"Triage API unavailable ({type(e).__name__}: {e}), using rules")
        return fallback_triage(question)

    @staticmethod
    def _parse(data: Any) -> Optional[TriageResult]:
        if isinstance(data, str):
            try:
                data = json.loads(data)
            except json.JSONDecodeError:
                return None
        if not isinstance(data, dict):
            return None
        return TriageResult.model_validate({
            "intent": data.get("intent"),
            "confidence": data.get("confidence"),
            "suggestion": data.get("suggestion")
            or "Collecting perspectives from several agents",
        })


def fallback_triage(question: str) -> TriageResult:
    """Keyword classifier used when the triage endpoint is unavailable."""
    q = question.lower()
    if any(k in q for k in EMERGENCY_KEYWORDS):
        return TriageResult(
            intent=TriageIntent.EMERGENCY,
            confidence=0.7,
            suggestion="Possible emergency symptoms detected; please seek medical care first",
        )
    if any(k in q for k in MEDICATION_KEYWORDS):
        return TriageResult(
            intent=TriageIntent.MEDICATION_RELATED,
            confidence=0.7,
            suggestion="Medication questions should be confirmed with a pharmacist or doctor",
        )
    if any(k in q for k in EXPERIENCE_KEYWORDS):
        return TriageResult(
            intent=TriageIntent.EXPERIENCE_SHARING,
            confidence=0.7,
            suggestion="Collecting related experience from other people",
        )
    return TriageResult(
        intent=TriageIntent.GENERAL_CONSULTATION,
        confidence=0.5,
        suggestion="Collecting perspectives from several agents",
    )


def adjusted_system_prompt(base_prompt: str, triage: TriageResult) -> str:
    return base_prompt + INTENT_PROMPT_ADJUSTMENTS.get(triage.intent, "")
