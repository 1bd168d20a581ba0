import asyncio

import pytest
from pydantic import ValidationError

from app.agent.emitter import ConsultationEmitter, StoreEventSink
from app.db import keys
from app.db.memory import MemoryStore
from app.models.events import (
    AgentResponded,
    ConsultationDone,
    SummaryReady,
    parse_event,
)
from app.models.schemas import ConsultationStatus, ReportSummary, ResponseRound


def test_events_round_trip_through_discriminated_union():
    event = AgentResponded(agent_id="a", round=ResponseRound.REACTION, latency_ms=120)
    parsed = parse_event(event.model_dump(mode="json"))
    assert parsed == event

    summary = parse_event(SummaryReady(report=ReportSummary()).model_dump(mode="json"))
    assert isinstance(summary, SummaryReady)


def test_unknown_event_type_is_rejected():
    with pytest.raises(ValidationError):
        parse_event({"type": "agent:teleported", "agent_id": "a"})


def test_failing_handler_does_not_stop_other_handlers():
    seen = []

    def broken(_event):
        raise RuntimeError("display went away")

    async def scenario():
        emitter = ConsultationEmitter()
        emitter.on(broken)
        emitter.on(lambda event: seen.append(event.type))
        emitter.emit(ConsultationDone(status=ConsultationStatus.DONE))

    asyncio.run(scenario())
    assert seen == ["consultation:done"]


def test_async_handlers_are_scheduled_not_awaited():
    async def scenario():
        store = MemoryStore()
        emitter = ConsultationEmitter()
        emitter.on(StoreEventSink(store, "c-1", ttl=60))

        async def failing(_event):
            raise RuntimeError("sink offline")

        emitter.on(failing)
        emitter.emit(ConsultationDone(status=ConsultationStatus.PARTIAL))
        before = await store.get_list(keys.consultation_events("c-1"))
        await emitter.drain()
        after = await store.get_list(keys.consultation_events("c-1"))
        return before, after

    before, after = asyncio.run(scenario())
    assert before == []
    assert after == [{"type": "consultation:done", "status": "PARTIAL"}]


class SlowFirstWriteStore(MemoryStore):
    """The first append takes longest, so unserialized writes land out of order."""

    def __init__(self):
        super().__init__()
        self.delays = [0.05, 0.01, 0.0]

    async def append(self, key, value, ttl=None):
        await asyncio.sleep(self.delays.pop(0) if self.delays else 0.0)
        await super().append(key, value, ttl=ttl)


def test_store_sink_keeps_emission_order():
    async def scenario():
        store = SlowFirstWriteStore()
        emitter = ConsultationEmitter()
        emitter.on(StoreEventSink(store, "c-1"))
        for latency in (10, 20, 30):
            emitter.emit(AgentResponded(agent_id="a", round=ResponseRound.INITIAL, latency_ms=latency))
        await emitter.drain()
        return await store.get_list(keys.consultation_events("c-1"))

    stored = asyncio.run(scenario())
    assert [e["latency_ms"] for e in stored] == [10, 20, 30]
