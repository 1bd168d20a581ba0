"""
Progress events emitted while a consultation runs.

A closed set of tagged variants discriminated on ``type``. Consumers get
them through the emitter and must tolerate loss.
"""
from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

from app.models.schemas import ConsultationStatus, ReportSummary, ResponseRound


class ConsultationStarted(BaseModel):
    type: Literal["consultation:start"] = "consultation:start"
    consultation_id: str
    question: str


class AgentQueryStarted(BaseModel):
    type: Literal["agent:query_start"] = "agent:query_start"
    agent_id: str
    round: ResponseRound


class AgentResponded(BaseModel):
    type: Literal["agent:response"] = "agent:response"
    agent_id: str
    round: ResponseRound
    latency_ms: int


class AgentFailed(BaseModel):
    type: Literal["agent:error"] = "agent:error"
    agent_id: str
    round: ResponseRound
    error: str


class ValidationCompleted(BaseModel):
    type: Literal["validation:complete"] = "validation:complete"
    valid_count: int
    no_experience_count: int
    total_count: int


class ReactionStarted(BaseModel):
    type: Literal["reaction:start"] = "reaction:start"
    trigger_count: int


class ReactionCompleted(BaseModel):
    type: Literal["reaction:complete"] = "reaction:complete"
    response_count: int


class SummaryReady(BaseModel):
    type: Literal["summary:ready"] = "summary:ready"
    report: ReportSummary


class ConsultationDone(BaseModel):
    type: Literal["consultation:done"] = "consultation:done"
    status: ConsultationStatus


ConsultationEvent = Annotated[
    Union[
        ConsultationStarted,
        AgentQueryStarted,
        AgentResponded,
        AgentFailed,
        ValidationCompleted,
        ReactionStarted,
        ReactionCompleted,
        SummaryReady,
        ConsultationDone,
    ],
    Field(discriminator="type"),
]

event_adapter: TypeAdapter[ConsultationEvent] = TypeAdapter(ConsultationEvent)


def parse_event(data: dict) -> ConsultationEvent:
    """Rebuild a typed event from its JSON form (e.g. replayed from storage)."""
    return event_adapter.validate_python(data)
