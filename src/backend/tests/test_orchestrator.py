import asyncio

from conftest import (
    NO_EXPERIENCE_ANSWER,
    SUBSTANTIVE_ANSWERS,
    Delayed,
    FakeAgentClient,
    register_agents,
)

from app.agent.emitter import ConsultationEmitter
from app.agent.orchestrator import ConsultationOrchestrator
from app.agent.query import AgentQueryService
from app.agent.reaction import ReactionRoundCoordinator
from app.db import keys
from app.db.consultations import ConsultationRepository
from app.db.memory import MemoryStore
from app.db.responses import ResponseRepository
from app.models.events import parse_event
from app.models.schemas import ConsultationStatus, InvalidReason, ResponseRound, TriageIntent
from app.services.agent_client import AgentAuthError, AgentCallError
from app.tools.synthesis import SynthesisTool


QUESTION = "Has anyone had a gastroscopy? How should I prepare for it?"


class FailingWriteStore(MemoryStore):
    """
    Fails response-row appends for the listed responders, and every
    agent-record write once ``agent_writes_fail`` is set.
    """

    def __init__(self):
        super().__init__()
        self.failing_responders = set()
        self.agent_writes_fail = False

    async def set(self, key, value, ex=None, nx=False):
        if self.agent_writes_fail and key.startswith("agent:"):
            raise ConnectionError("agent store unavailable")
        return await super().set(key, value, ex=ex, nx=nx)

    async def rpush(self, key, value, ex=None):
        if isinstance(value, dict) and value.get("responder_id") in self.failing_responders:
            raise ConnectionError("write rejected")
        await super().rpush(key, value, ex=ex)


def _orchestrator(store, client, reaction_enabled=False, **kwargs):
    query_service = AgentQueryService(store, client=client, lock_wait_seconds=0.01)
    return ConsultationOrchestrator(
        store=store,
        query_service=query_service,
        synthesis=SynthesisTool(generative_enabled=False),
        reaction=ReactionRoundCoordinator(
            query_service, ResponseRepository(store), enabled=reaction_enabled
        ),
        **kwargs,
    )


def _run(store, client, asker_id="asker", **kwargs):
    async def scenario():
        emitter = ConsultationEmitter()
        seen = []
        emitter.on(lambda event: seen.append(event.type))
        result = await _orchestrator(store, client, **kwargs).run_consultation(
            asker_id, QUESTION, emitter=emitter
        )
        await emitter.drain()
        return result, seen

    return asyncio.run(scenario())


def _answers(scripts):
    return {f"agent-{i}-token": script for i, script in enumerate(scripts)}


def test_four_substantive_and_one_failure_is_done():
    store = MemoryStore()
    asyncio.run(register_agents(store, 5))
    client = FakeAgentClient(answers=_answers(
        SUBSTANTIVE_ANSWERS[:4] + [AgentCallError("Chat API error 500")]
    ))

    result, _ = _run(store, client)

    assert result.status == ConsultationStatus.DONE
    assert result.summary.total_agents_queried == 5
    assert len(result.responses) == 5
    failed = [r for r in result.responses if not r.is_valid]
    assert len(failed) == 1
    assert failed[0].invalid_reason == InvalidReason.CALL_FAILED


def test_no_valid_answers_is_failed_without_summary():
    store = MemoryStore()
    asyncio.run(register_agents(store, 5))
    client = FakeAgentClient(answers=_answers(
        ["ok", "fine", AgentCallError("boom"), "You should see a doctor.", "sure"]
    ))

    result, _ = _run(store, client)

    assert result.status == ConsultationStatus.FAILED
    assert result.summary is None
    assert len(result.responses) == 5


def test_two_valid_and_one_no_experience_is_partial():
    store = MemoryStore()
    asyncio.run(register_agents(store, 5))
    client = FakeAgentClient(answers=_answers([
        SUBSTANTIVE_ANSWERS[0],
        SUBSTANTIVE_ANSWERS[1],
        NO_EXPERIENCE_ANSWER,
        AgentCallError("boom"),
        Delayed(SUBSTANTIVE_ANSWERS[2], 1.0),
    ]))

    result, _ = _run(store, client, agent_timeout=0.1)

    assert result.status == ConsultationStatus.PARTIAL
    assert result.summary.no_experience_count == 1
    assert result.summary.total_agents_queried == 5
    reasons = {r.invalid_reason for r in result.responses if not r.is_valid}
    assert reasons == {InvalidReason.CALL_FAILED, InvalidReason.TIMEOUT}


def test_zero_eligible_agents_fails_before_any_call():
    store = MemoryStore()
    [asker] = asyncio.run(register_agents(store, 1))
    client = FakeAgentClient()

    result, seen = _run(store, client, asker_id=asker.id)

    assert result.status == ConsultationStatus.FAILED
    assert result.responses == []
    assert result.summary is None
    assert client.chat_calls == []
    assert seen == ["consultation:start", "consultation:done"]


def test_asker_and_circuit_broken_agents_are_not_queried():
    store = MemoryStore()
    agents = asyncio.run(register_agents(store, 4))
    client = FakeAgentClient(answers=_answers(SUBSTANTIVE_ANSWERS[:3] + [AgentAuthError("401")]))

    first, _ = _run(store, client, asker_id=agents[0].id)
    client.chat_calls.clear()
    second, _ = _run(store, client, asker_id=agents[0].id)

    assert {c["access_token"] for c in client.chat_calls} == {"agent-1-token", "agent-2-token"}
    assert len(first.responses) == 3
    assert len(second.responses) == 2


def test_fan_out_is_capped():
    store = MemoryStore()
    asyncio.run(register_agents(store, 7))
    client = FakeAgentClient(answers=_answers(SUBSTANTIVE_ANSWERS + SUBSTANTIVE_ANSWERS[:2]))

    result, _ = _run(store, client, max_agents=5)

    assert len(client.chat_calls) == 5
    assert result.summary.total_agents_queried == 5


def test_persistence_failure_degrades_to_partial():
    store = FailingWriteStore()
    agents = asyncio.run(register_agents(store, 5))
    store.failing_responders.add(agents[4].id)
    client = FakeAgentClient(answers=_answers(SUBSTANTIVE_ANSWERS))

    result, _ = _run(store, client)

    assert result.status == ConsultationStatus.PARTIAL
    assert len(result.responses) == 4
    assert result.summary is not None


def test_agent_store_outage_during_circuit_break_does_not_abort_round():
    store = FailingWriteStore()
    agents = asyncio.run(register_agents(store, 5))
    store.agent_writes_fail = True
    client = FakeAgentClient(answers=_answers(
        SUBSTANTIVE_ANSWERS[:4] + [AgentAuthError("401 Unauthorized")]
    ))

    result, seen = _run(store, client)

    assert result.status == ConsultationStatus.DONE
    assert len(result.responses) == 5
    by_agent = {r.responder_id: r for r in result.responses}
    assert by_agent[agents[4].id].invalid_reason == InvalidReason.AUTH_FAILURE
    assert sum(1 for r in result.responses if r.is_valid) == 4
    assert seen[-1] == "consultation:done"


def test_reaction_round_runs_and_contributes_highlights():
    store = MemoryStore()
    asyncio.run(register_agents(store, 3))
    client = FakeAgentClient(answers=_answers(SUBSTANTIVE_ANSWERS[:2] + ["nope"]))

    result, seen = _run(store, client, reaction_enabled=True)

    reaction_rows = [r for r in result.responses if r.round == ResponseRound.REACTION]
    assert len(reaction_rows) == 2
    assert result.status == ConsultationStatus.PARTIAL
    assert len(result.summary.reaction_highlights) == 2
    assert seen.index("reaction:start") > seen.index("validation:complete")
    assert seen.index("reaction:complete") < seen.index("summary:ready")


def test_reaction_round_skipped_with_single_valid_answer():
    store = MemoryStore()
    asyncio.run(register_agents(store, 3))
    client = FakeAgentClient(answers=_answers([SUBSTANTIVE_ANSWERS[0], "nope", "nah"]))

    result, seen = _run(store, client, reaction_enabled=True)

    assert "reaction:start" not in seen
    assert all(r.round == ResponseRound.INITIAL for r in result.responses)
    assert result.summary.reaction_highlights is None


def test_events_and_record_are_persisted():
    store = MemoryStore()
    asyncio.run(register_agents(store, 3))
    client = FakeAgentClient(answers=_answers(SUBSTANTIVE_ANSWERS[:3]))

    result, seen = _run(store, client)

    async def load():
        events = await store.get_list(keys.consultation_events(result.consultation_id))
        record = await ConsultationRepository(store).get(result.consultation_id)
        return events, record

    events, record = asyncio.run(load())
    assert [parse_event(e).type for e in events] == seen
    assert seen[0] == "consultation:start"
    assert seen[-1] == "consultation:done"
    assert record.status == ConsultationStatus.DONE
    assert record.agent_count == 3
    assert record.summary.consensus == result.summary.consensus
    assert record.triage.intent == TriageIntent.EXPERIENCE_SHARING


def test_pre_created_consultation_is_adopted():
    store = MemoryStore()
    asyncio.run(register_agents(store, 3))
    client = FakeAgentClient(answers=_answers(SUBSTANTIVE_ANSWERS[:3]))

    async def scenario():
        created = await ConsultationRepository(store).create("asker", QUESTION)
        result = await _orchestrator(store, client).run_consultation(
            "asker", QUESTION, consultation_id=created.id
        )
        return created, result, await ConsultationRepository(store).list_for_asker("asker")

    created, result, listed = asyncio.run(scenario())
    assert result.consultation_id == created.id
    assert [c.id for c in listed] == [created.id]
