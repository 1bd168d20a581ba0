"""
WebSocket endpoint for live consultation progress.

The client sends one consultation request and receives every progress
event as it happens:
  - consultation:start
  - agent:query_start / agent:response / agent:error
  - validation:complete
  - reaction:start / reaction:complete
  - summary:ready
  - consultation:done
followed by a final result message.
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Set

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError
from starlette.websockets import WebSocketState

from app.agent.emitter import ConsultationEmitter
from app.agent.orchestrator import ConsultationOrchestrator
from app.models.schemas import ConsultationSubmission

logger = logging.getLogger(__name__)
router = APIRouter()

# Runs outlive a disconnected client and still reach a terminal status
_runs: Set[asyncio.Task] = set()


@router.websocket("/consultation")
async def consultation_websocket(websocket: WebSocket):
    """
    Protocol:
      Client sends: JSON in ConsultationSubmission format
      Server sends:
        - {"type": "ack", "message": "..."}
        - {"type": "event", "event": {...}} for each progress event
        - {"type": "result", "result": {...}}
        - {"type": "error", "message": "..."}
    """
    await websocket.accept()

    try:
        raw = await websocket.receive_text()
        submission = ConsultationSubmission(**json.loads(raw))

        await websocket.send_json({
            "type": "ack",
            "message": "Question received. Consulting agents...",
        })

        queue: asyncio.Queue = asyncio.Queue()
        emitter = ConsultationEmitter()
        emitter.on(queue.put_nowait)

        run = asyncio.create_task(
            ConsultationOrchestrator().run_consultation(
                submission.asker_id, submission.question, emitter=emitter
            )
        )
        _runs.add(run)
        run.add_done_callback(_runs.discard)

        while not (run.done() and queue.empty()):
            try:
                event = await asyncio.wait_for(queue.get(), timeout=0.2)
            except asyncio.TimeoutError:
                continue
            await websocket.send_json({
                "type": "event",
                "event": event.model_dump(mode="json"),
            })

        result = run.result()
        await emitter.drain()
        await websocket.send_json({
            "type": "result",
            "result": result.model_dump(mode="json"),
        })

    except WebSocketDisconnect:
        logger.info("Consultation WebSocket client disconnected")
    except json.JSONDecodeError:
        await websocket.send_json({
            "type": "error",
            "message": "Invalid JSON received",
        })
    except ValidationError as e:
        await websocket.send_json({
            "type": "error",
            "message": f"Invalid consultation request: {e.errors()[0]['msg']}",
        })
    except Exception as e:
        logger.exception("Consultation WebSocket failed")
        if websocket.client_state == WebSocketState.CONNECTED:
            await websocket.send_json({
                "type": "error",
                "message": f"Consultation failed: {type(e).__name__}: {e}",
            })
    finally:
        if websocket.client_state == WebSocketState.CONNECTED:
            await websocket.close()
