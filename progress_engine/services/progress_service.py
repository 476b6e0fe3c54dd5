"""Writes to ProgressRecords.

Every completion signal (quiz scored, assignment graded, video position,
document opened) goes through this service, so the merge rules live in
one place:

  - is_completed only ever goes False -> True
  - a scored result replaces the stored one only if the stored one had not
    passed, or the new one passes with a higher score
  - watched_duration only grows

The gateway applies the same merge again inside the write
(``ProgressRecord.absorb``), so two writes derived from the same read
cannot undo each other whichever lands last.

After each write, subscribed listeners receive a ProgressEvent.  A failing
listener is logged and skipped; it never fails the write that triggered it.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from uuid import UUID

from progress_engine.core.clock import Clock
from progress_engine.core.log_context import log_context
from progress_engine.models.progress import (
    ProgressEvent,
    ProgressEventType,
    ProgressRecord,
)
from progress_engine.repos.progress_repo import ProgressRepo

logger = logging.getLogger(__name__)

ProgressListener = Callable[[ProgressEvent], None]


class ProgressService:
    def __init__(self, repo: ProgressRepo, clock: Clock) -> None:
        self._repo = repo
        self._clock = clock
        self._listeners: list[ProgressListener] = []

    def subscribe(self, listener: ProgressListener) -> None:
        self._listeners.append(listener)

    async def get(self, content_id: UUID, learner_id: UUID) -> ProgressRecord | None:
        return await self._repo.get(learner_id, content_id)

    async def mark_completed(self, content_id: UUID, learner_id: UUID) -> ProgressRecord:
        """Completion without a score (documents, manual "mark as done")."""
        with log_context(learner_id=learner_id, content_id=content_id):
            current = await self._load(content_id, learner_id)
            if current.is_completed:
                return current
            record = current.with_completion(self._now())
            record = await self._repo.upsert(record)
            logger.info("Content marked completed")
            self._notify("item_completed", record)
            return record

    async def record_result(
        self,
        content_id: UUID,
        learner_id: UUID,
        *,
        score: int,
        is_passed: bool,
        event_type: ProgressEventType,
    ) -> ProgressRecord:
        with log_context(learner_id=learner_id, content_id=content_id):
            current = await self._load(content_id, learner_id)
            record = current.with_result(score, is_passed, self._now())
            record = await self._repo.upsert(record)
            if record.score != score or record.is_passed != is_passed:
                logger.info(
                    "Kept earlier result score=%s passed=%s over score=%d passed=%s",
                    record.score,
                    record.is_passed,
                    score,
                    is_passed,
                )
            self._notify(event_type, record)
            return record

    async def record_video_position(
        self,
        content_id: UUID,
        learner_id: UUID,
        *,
        position: float,
        watched_duration: float,
        total_duration: float,
        reached_end: bool,
    ) -> ProgressRecord:
        current = await self._load(content_id, learner_id)
        record = current.with_video_position(
            position=position,
            watched_duration=watched_duration,
            total_duration=total_duration,
            reached_end=reached_end,
            now=self._now(),
        )
        record = await self._repo.upsert(record)
        completed_now = record.is_completed and not current.is_completed
        self._notify("item_completed" if completed_now else "video_position", record)
        return record

    async def _load(self, content_id: UUID, learner_id: UUID) -> ProgressRecord:
        # Records are created lazily on first interaction.
        existing = await self._repo.get(learner_id, content_id)
        if existing is not None:
            return existing
        return ProgressRecord(learner_id=learner_id, content_id=content_id)

    def _now(self) -> int:
        return int(self._clock.now())

    def _notify(self, type: ProgressEventType, record: ProgressRecord) -> None:
        event = ProgressEvent.new(
            learner_id=record.learner_id,
            content_id=record.content_id,
            occurred_at=self._now(),
            type=type,
            record=record,
        )
        for listener in self._listeners:
            try:
                listener(event)
            except Exception:
                logger.exception("Progress listener %r failed", listener)
