import asyncio
from types import SimpleNamespace

import pytest

from app.models.schemas import GenerativeDraft
from app.services import llm as llm_module
from app.services.llm import LLMService


class ScriptedCompletions:
    def __init__(self, outputs):
        self.outputs = list(outputs)
        self.calls = 0

    async def create(self, **_kwargs):
        self.calls += 1
        output = self.outputs.pop(0)
        if isinstance(output, Exception):
            raise output
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=output))])


def _service(outputs, max_retries=3) -> LLMService:
    service = LLMService(base_url="http://llm.test", api_key="k", model_id="m", max_retries=max_retries)
    service._client = SimpleNamespace(chat=SimpleNamespace(completions=ScriptedCompletions(outputs)))
    return service


DRAFT_JSON = (
    '{"consensus": [{"point": "Fast overnight", "agent_count": 2, "total_agents": 3}], '
    '"divergence": [], "preparation": ["Bring reports"], "need_doctor_confirm": []}'
)


def test_structured_output_inside_code_fence():
    service = _service([f"Here you go:\n```json\n{DRAFT_JSON}\n```"])
    draft = asyncio.run(service.generate_structured("prompt", GenerativeDraft))
    assert draft.consensus[0].point == "Fast overnight"
    assert draft.cost_range is None


def test_truncated_json_is_repaired():
    truncated = '{"consensus": [], "divergence": [], "preparation": ["Bring rep'
    service = _service([truncated + '", "x"], "need_doctor_confirm": ["Ask'])
    draft = asyncio.run(service.generate_structured("prompt", GenerativeDraft))
    assert draft.need_doctor_confirm == ["Ask"]


def test_missing_fields_raise_value_error():
    service = _service(['{"consensus": []}'])
    with pytest.raises(ValueError, match="GenerativeDraft"):
        asyncio.run(service.generate_structured("prompt", GenerativeDraft))


def test_transient_errors_are_retried(monkeypatch):
    monkeypatch.setattr(llm_module, "RETRY_BASE_DELAY", 0.0)
    service = _service([RuntimeError("503 Service Unavailable"), "recovered"])
    assert asyncio.run(service.generate("prompt")) == "recovered"
    assert service._client.chat.completions.calls == 2


def test_permanent_errors_are_not_retried():
    service = _service([RuntimeError("invalid api key"), "never reached"])
    with pytest.raises(RuntimeError, match="invalid api key"):
        asyncio.run(service.generate("prompt"))
    assert service._client.chat.completions.calls == 1
