"""
Domain models for the consultation engine.

These Pydantic models define the records persisted through the storage
primitives and the structured report produced by the synthesis pipeline.
Every component consumes and produces typed models.
"""
from __future__ import annotations

import time
import uuid
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


RISK_DISCLAIMER = (
    "The information above comes from experience shared by other people's AI agents. "
    "It is not medical advice, diagnosis, or treatment. Always consult a qualified "
    "medical professional or institution about any health concern."
)


def _new_id() -> str:
    return str(uuid.uuid4())


def _now_ms() -> int:
    return int(time.time() * 1000)


# ──────────────────────────────────────────────
# Enums
# ──────────────────────────────────────────────

class ConsultationStatus(str, Enum):
    PENDING = "PENDING"
    CONSULTING = "CONSULTING"
    DONE = "DONE"
    PARTIAL = "PARTIAL"
    FAILED = "FAILED"


class ResponseRound(str, Enum):
    INITIAL = "initial"
    REACTION = "reaction"

    @property
    def index(self) -> int:
        """Numeric round used in idempotency keys (0 = initial, 1 = reaction)."""
        return 0 if self is ResponseRound.INITIAL else 1


class FailureKind(str, Enum):
    TIMEOUT = "timeout"
    CALL_FAILED = "call_failed"
    AUTH_FAILURE = "auth_failure"
    REFRESH_FAILED = "refresh_failed"


class InvalidReason(str, Enum):
    TOO_SHORT = "too_short"
    BOILERPLATE = "boilerplate"
    DUPLICATE = "duplicate"
    TIMEOUT = "timeout"
    CALL_FAILED = "call_failed"
    AUTH_FAILURE = "auth_failure"
    REFRESH_FAILED = "refresh_failed"
    REACTION_FAILED = "reaction_failed"


class TriageIntent(str, Enum):
    EXPERIENCE_SHARING = "experience_sharing"
    EMERGENCY = "emergency"
    GENERAL_CONSULTATION = "general_consultation"
    MEDICATION_RELATED = "medication_related"


# ──────────────────────────────────────────────
# Persisted records
# ──────────────────────────────────────────────

class AgentRecord(BaseModel):
    """Availability record for one participant's agent."""
    id: str = Field(default_factory=_new_id)
    external_id: str = Field(..., description="Identity on the agent platform")
    name: str = ""
    access_token: str
    refresh_token: str
    token_expiry: float = Field(..., description="Unix timestamp (seconds)")
    consultable: bool = True
    circuit_breaker_until: Optional[float] = Field(
        None, description="Unix timestamp (seconds) until which the agent is suppressed"
    )
    bio: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    created_at: int = Field(default_factory=_now_ms)

    def is_eligible(self, exclude_id: str, now: Optional[float] = None) -> bool:
        now = time.time() if now is None else now
        return (
            self.consultable
            and self.id != exclude_id
            and self.token_expiry > now
            and (self.circuit_breaker_until is None or self.circuit_breaker_until < now)
        )


class TriageResult(BaseModel):
    intent: TriageIntent = TriageIntent.GENERAL_CONSULTATION
    confidence: float = Field(0.5, ge=0.0, le=1.0)
    suggestion: str = ""

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, v):
        if isinstance(v, (int, float)):
            return max(0.0, min(1.0, float(v)))
        return 0.5

    @field_validator("intent", mode="before")
    @classmethod
    def _coerce_intent(cls, v):
        valid = {i.value for i in TriageIntent}
        return v if v in valid else TriageIntent.GENERAL_CONSULTATION.value

    @field_validator("suggestion", mode="before")
    @classmethod
    def _truncate_suggestion(cls, v):
        return v[:200] if isinstance(v, str) else ""


class ConsultationRecord(BaseModel):
    id: str = Field(default_factory=_new_id)
    asker_id: str
    question: str
    status: ConsultationStatus = ConsultationStatus.PENDING
    agent_count: int = 0
    triage: Optional[TriageResult] = None
    summary: Optional[ReportSummary] = None
    created_at: int = Field(default_factory=_now_ms)


class AgentResponseRecord(BaseModel):
    """One agent's answer for one round. Failures are stored as invalid rows."""
    id: str = Field(default_factory=_new_id)
    consultation_id: str
    responder_id: str
    round: ResponseRound = ResponseRound.INITIAL
    session_id: str = ""
    raw_response: str = ""
    is_valid: bool = False
    is_no_experience: bool = False
    invalid_reason: Optional[InvalidReason] = None
    latency_ms: int = 0
    created_at: int = Field(default_factory=_now_ms)


class WriteResult(BaseModel):
    response_id: str
    success: bool
    error: Optional[str] = None


# ──────────────────────────────────────────────
# Agent query outcome
# ──────────────────────────────────────────────

class AgentReply(BaseModel):
    """Reassembled answer from the agent chat endpoint."""
    text: str
    session_id: str = ""


class TokenBundle(BaseModel):
    access_token: str
    refresh_token: str
    expires_in: int = Field(..., description="Lifetime in seconds")


class AgentQueryOutcome(BaseModel):
    agent_id: str
    text: str = ""
    session_id: str = ""
    latency_ms: int = 0
    failure: Optional[FailureKind] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.failure is None


class ValidationResult(BaseModel):
    is_valid: bool
    is_no_experience: bool = False
    reason: Optional[InvalidReason] = None


# ──────────────────────────────────────────────
# Report
# ──────────────────────────────────────────────

class ConsensusPoint(BaseModel):
    point: str
    agent_count: int
    total_agents: int


class DivergencePoint(BaseModel):
    point_a: str
    point_b: str
    split_ratio: str = Field(..., description="'<supporting>:<opposing>' sentence counts")


class CostRange(BaseModel):
    min: int
    max: int
    note: str = ""


class AgentExcerpt(BaseModel):
    agent_id: str
    summary: str
    key_points: List[str] = Field(default_factory=list)


class ReactionHighlight(BaseModel):
    agent_id: str
    reaction: str
    references: List[str] = Field(default_factory=list)


class ReportSummary(BaseModel):
    """
    De-identified consensus report. Rebuilt from response rows whenever a
    consultation is finalized; the risk warning cannot be overridden.
    """
    consensus: List[ConsensusPoint] = Field(default_factory=list)
    divergence: List[DivergencePoint] = Field(default_factory=list)
    preparation: List[str] = Field(default_factory=list)
    need_doctor_confirm: List[str] = Field(default_factory=list)
    cost_range: Optional[CostRange] = None
    risk_warning: str = RISK_DISCLAIMER
    agent_responses: List[AgentExcerpt] = Field(default_factory=list)
    no_experience_count: int = 0
    total_agents_queried: int = 0
    reaction_highlights: Optional[List[ReactionHighlight]] = None
    generated_by: str = Field("rules", description="'rules' or 'llm'")

    @field_validator("risk_warning", mode="after")
    @classmethod
    def _fixed_disclaimer(cls, _v: str) -> str:
        return RISK_DISCLAIMER


class GenerativeDraft(BaseModel):
    """Shape requested from the generative summarizer."""
    consensus: List[ConsensusPoint]
    divergence: List[DivergencePoint]
    preparation: List[str]
    need_doctor_confirm: List[str]
    cost_range: Optional[CostRange] = None


ConsultationRecord.model_rebuild()


# ──────────────────────────────────────────────
# Engine / API Request / Response Models
# ──────────────────────────────────────────────

class ConsultationResult(BaseModel):
    consultation_id: str
    status: ConsultationStatus
    summary: Optional[ReportSummary] = None
    responses: List[AgentResponseRecord] = Field(default_factory=list)
    triage: Optional[TriageResult] = None


class ConsultationSubmission(BaseModel):
    """API request to start a new consultation."""
    asker_id: str = Field(..., min_length=1)
    question: str = Field(..., min_length=2, max_length=2000)


class ConsultationCreated(BaseModel):
    consultation_id: str
    status: ConsultationStatus
    message: str


class ConsultationView(BaseModel):
    consultation: ConsultationRecord
    responses: List[AgentResponseRecord] = Field(default_factory=list)


class AgentRegistration(BaseModel):
    """API request to register (or refresh) an agent's platform credentials."""
    external_id: str = Field(..., min_length=1)
    name: str = ""
    access_token: str = Field(..., min_length=1)
    refresh_token: str = Field(..., min_length=1)
    expires_in: int = Field(..., gt=0)
    bio: Optional[str] = None


class AgentSummary(BaseModel):
    id: str
    external_id: str
    name: str
    consultable: bool
