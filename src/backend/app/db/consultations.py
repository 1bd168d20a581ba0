"""Consultation CRUD over the storage primitives."""
from __future__ import annotations

from typing import Any, List, Optional

from app.db import keys
from app.db.base import StorageAdapter
from app.models.schemas import ConsultationRecord


class ConsultationRepository:
    def __init__(self, store: StorageAdapter):
        self.store = store

    async def create(
        self, asker_id: str, question: str, consultation_id: Optional[str] = None
    ) -> ConsultationRecord:
        consultation = ConsultationRecord(asker_id=asker_id, question=question)
        if consultation_id:
            consultation.id = consultation_id
        await self.store.set(
            keys.consultation(consultation.id), consultation.model_dump(mode="json")
        )
        await self.store.append(keys.asker_consultations(asker_id), consultation.id)
        return consultation

    async def get(self, consultation_id: str) -> Optional[ConsultationRecord]:
        data = await self.store.get(keys.consultation(consultation_id))
        return ConsultationRecord.model_validate(data) if data else None

    async def update(self, consultation_id: str, **updates: Any) -> Optional[ConsultationRecord]:
        """Apply field updates; unknown ids are ignored."""
        current = await self.get(consultation_id)
        if current is None:
            return None
        updated = ConsultationRecord.model_validate(
            {**current.model_dump(), **updates}
        )
        await self.store.set(keys.consultation(consultation_id), updated.model_dump(mode="json"))
        return updated

    async def list_for_asker(self, asker_id: str) -> List[ConsultationRecord]:
        ids = await self.store.get_list(keys.asker_consultations(asker_id))
        records = []
        for consultation_id in ids:
            record = await self.get(consultation_id)
            if record:
                records.append(record)
        return sorted(records, key=lambda c: c.created_at, reverse=True)
