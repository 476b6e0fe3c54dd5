from __future__ import annotations

from collections.abc import Iterable
from typing import Protocol
from uuid import UUID

from progress_engine.models.progress import ProgressRecord


class ProgressRepo(Protocol):
    async def get(self, learner_id: UUID, content_id: UUID) -> ProgressRecord | None: ...

    async def upsert(self, record: ProgressRecord) -> ProgressRecord:
        """Insert, or merge onto the stored row with ``ProgressRecord.absorb``
        as one atomic step.  Returns the record as stored."""
        ...

    async def list_for_learner(
        self, learner_id: UUID, content_ids: Iterable[UUID]
    ) -> list[ProgressRecord]: ...


class InMemoryProgressRepo:
    def __init__(self) -> None:
        self._store: dict[tuple[UUID, UUID], ProgressRecord] = {}

    async def get(self, learner_id: UUID, content_id: UUID) -> ProgressRecord | None:
        return self._store.get((learner_id, content_id))

    async def upsert(self, record: ProgressRecord) -> ProgressRecord:
        key = (record.learner_id, record.content_id)
        stored = self._store.get(key)
        merged = stored.absorb(record) if stored is not None else record
        self._store[key] = merged
        return merged

    async def list_for_learner(
        self, learner_id: UUID, content_ids: Iterable[UUID]
    ) -> list[ProgressRecord]:
        return [
            self._store[(learner_id, cid)]
            for cid in content_ids
            if (learner_id, cid) in self._store
        ]
