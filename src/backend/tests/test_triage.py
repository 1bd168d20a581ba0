import asyncio

from app.agent.prompts import INTENT_PROMPT_ADJUSTMENTS, SYSTEM_PROMPT
from app.models.schemas import TriageIntent, TriageResult
from app.services.agent_client import AgentCallError
from app.services.triage import TriageService, adjusted_system_prompt, fallback_triage


class ScriptedActClient:
    def __init__(self, result):
        self.result = result

    async def act(self, message, system_prompt, timeout=10.0):
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


def test_structured_triage_is_used_when_available():
    client = ScriptedActClient({"intent": "medication_related", "confidence": 0.9, "suggestion": "Check dosage"})
    result = asyncio.run(TriageService(client).classify("Can I take ibuprofen with this?"))
    assert result == TriageResult(intent=TriageIntent.MEDICATION_RELATED, confidence=0.9, suggestion="Check dosage")


def test_json_string_payload_is_parsed_and_clamped():
    client = ScriptedActClient('{"intent": "something_else", "confidence": 7}')
    result = asyncio.run(TriageService(client).classify("question"))
    assert result.intent == TriageIntent.GENERAL_CONSULTATION
    assert result.confidence == 1.0
    assert result.suggestion


def test_unavailable_triage_falls_back_to_rules():
    client = ScriptedActClient(AgentCallError("Act API returned code 500"))
    result = asyncio.run(TriageService(client).classify("Sudden chest pain while running"))
    assert result.intent == TriageIntent.EMERGENCY


def test_rule_classifier_intents():
    assert fallback_triage("What are the side effects of this medication?").intent == TriageIntent.MEDICATION_RELATED
    assert fallback_triage("Has anyone been through IVF?").intent == TriageIntent.EXPERIENCE_SHARING
    assert fallback_triage("Is my cholesterol level okay?").intent == TriageIntent.GENERAL_CONSULTATION


def test_intent_adjusts_system_prompt():
    emergency = TriageResult(intent=TriageIntent.EMERGENCY)
    prompt = adjusted_system_prompt(SYSTEM_PROMPT + "question", emergency)
    assert prompt == SYSTEM_PROMPT + "question" + INTENT_PROMPT_ADJUSTMENTS[TriageIntent.EMERGENCY]
