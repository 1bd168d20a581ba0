"""
REST API for starting consultations and reading their results.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List

from fastapi import APIRouter, BackgroundTasks, HTTPException

from app.agent.emitter import ConsultationEmitter
from app.agent.orchestrator import ConsultationOrchestrator
from app.db import keys
from app.db.consultations import ConsultationRepository
from app.db.responses import ResponseRepository
from app.db.store import get_store
from app.models.schemas import (
    ConsultationCreated,
    ConsultationRecord,
    ConsultationSubmission,
    ConsultationView,
)

logger = logging.getLogger(__name__)
router = APIRouter()


async def _run_in_background(consultation: ConsultationRecord) -> None:
    emitter = ConsultationEmitter()
    try:
        await ConsultationOrchestrator().run_consultation(
            consultation.asker_id, consultation.question, emitter=emitter,
            consultation_id=consultation.id,
        )
        await emitter.drain()
    except Exception as e:
        logger.exception(f"Consultation {consultation.id} crashed: {e}")
        await ConsultationRepository(get_store()).update(consultation.id, status="FAILED")


@router.post("", response_model=ConsultationCreated, status_code=202)
async def start_consultation(submission: ConsultationSubmission, background: BackgroundTasks):
    """
    Start a consultation.

    The consultation runs in the background. Poll /api/consultations/{id}
    or its /events list, or use the WebSocket endpoint for live updates.
    """
    repo = ConsultationRepository(get_store())
    consultation = await repo.create(submission.asker_id, submission.question)
    background.add_task(_run_in_background, consultation)

    return ConsultationCreated(
        consultation_id=consultation.id,
        status=consultation.status,
        message="Consultation started. Poll for results or follow the event list.",
    )


@router.get("/{consultation_id}", response_model=ConsultationView)
async def get_consultation(consultation_id: str):
    store = get_store()
    consultation = await ConsultationRepository(store).get(consultation_id)
    if not consultation:
        raise HTTPException(status_code=404, detail=f"Consultation {consultation_id} not found")

    responses = await ResponseRepository(store).get_responses(consultation_id)
    return ConsultationView(consultation=consultation, responses=responses)


@router.get("/{consultation_id}/events", response_model=List[Dict[str, Any]])
async def get_consultation_events(consultation_id: str):
    """Progress events recorded so far (kept for a few minutes only)."""
    return await get_store().get_list(keys.consultation_events(consultation_id))
