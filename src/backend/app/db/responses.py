"""
Agent response persistence with idempotency control.

Each row is keyed by (consultation, round, agent). The idempotency marker
is taken with a conditional set before the row is appended, so retries and
overlapping batches never double-write; a second write with the same key
is a no-op that keeps the first value.
"""
from __future__ import annotations

import logging
from typing import List, Optional

from app.config import settings
from app.db import keys
from app.db.base import StorageAdapter
from app.models.schemas import AgentResponseRecord, WriteResult

logger = logging.getLogger(__name__)


class ResponseRepository:
    def __init__(self, store: StorageAdapter, marker_ttl: Optional[int] = None):
        self.store = store
        self.marker_ttl = marker_ttl or settings.idempotency_ttl_seconds

    async def add_response(self, response: AgentResponseRecord) -> bool:
        """
        Persist one response row.

        Returns:
            True if this call wrote the row, False if a row for the same
            (consultation, round, agent) already existed.
        """
        marker = keys.idempotent(
            response.consultation_id, response.round.index, response.responder_id
        )
        if not await self.store.put_if_absent(marker, response.id, self.marker_ttl):
            return False

        # Marker expired but the row survived an earlier write
        if await self._row_exists(response):
            return False

        try:
            await self.store.append(
                keys.responses(response.consultation_id), response.model_dump(mode="json")
            )
        except Exception:
            await self.store.delete(marker)
            raise
        return True

    async def add_responses_batch(self, responses: List[AgentResponseRecord]) -> List[WriteResult]:
        """Persist each row independently; one item's failure never blocks the rest."""
        results: List[WriteResult] = []
        for response in responses:
            try:
                await self.add_response(response)
                results.append(WriteResult(response_id=response.id, success=True))
            except Exception as e:
                logger.error(
                    f"Failed to persist response {response.id} "
                    f"(agent {response.responder_id}, {response.round.value}): {e}"
                )
                results.append(
                    WriteResult(response_id=response.id, success=False, error=str(e))
                )
        return results

    async def get_responses(self, consultation_id: str) -> List[AgentResponseRecord]:
        rows = await self.store.get_list(keys.responses(consultation_id))
        return [AgentResponseRecord.model_validate(row) for row in rows]

    async def _row_exists(self, response: AgentResponseRecord) -> bool:
        existing = await self.get_responses(response.consultation_id)
        return any(
            r.responder_id == response.responder_id and r.round == response.round
            for r in existing
        )
