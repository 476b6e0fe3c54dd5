from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Literal
from uuid import UUID, uuid4

ProgressEventType = Literal[
    "item_completed", "quiz_submitted", "assignment_graded", "video_position"
]


@dataclass(frozen=True, slots=True)
class ProgressRecord:
    """Per-learner, per-content progress.  One row per (learner_id, content_id).

    The ``with_*`` helpers are the only way the engine derives a new record
    from an old one, and they all keep ``is_completed`` monotonic: once a
    record is complete, no helper returns an incomplete one.
    """

    learner_id: UUID
    content_id: UUID
    is_completed: bool = False
    score: int | None = None
    is_passed: bool | None = None
    last_position: float = 0.0
    watched_duration: float = 0.0
    total_duration: float = 0.0
    completed_at: int | None = None
    updated_at: int | None = None

    def with_completion(self, now: int) -> ProgressRecord:
        return replace(
            self,
            is_completed=True,
            completed_at=self.completed_at if self.completed_at is not None else now,
            updated_at=now,
        )

    def with_result(self, score: int, is_passed: bool, now: int) -> ProgressRecord:
        """Record an assessed result, never downgrading a prior pass."""
        record = self.with_completion(now)
        if not self._is_improvement(score, is_passed):
            return record
        return replace(record, score=score, is_passed=is_passed)

    def with_video_position(
        self,
        *,
        position: float,
        watched_duration: float,
        total_duration: float,
        reached_end: bool,
        now: int,
    ) -> ProgressRecord:
        record = replace(
            self,
            last_position=position,
            watched_duration=max(self.watched_duration, watched_duration),
            total_duration=total_duration or self.total_duration,
            updated_at=now,
        )
        if reached_end:
            record = record.with_completion(now)
        return record

    def absorb(self, incoming: ProgressRecord) -> ProgressRecord:
        """Fold a write onto this stored record without undoing anything.

        Gateways call this inside the write.  ``incoming`` may have been
        derived from an older read than what is stored now, so completion,
        a recorded pass and watched time are kept from whichever side has
        them.  Position is last-writer-wins.
        """
        keep_result = incoming.score is None or not self._is_improvement(
            incoming.score, bool(incoming.is_passed)
        )
        return replace(
            incoming,
            is_completed=self.is_completed or incoming.is_completed,
            completed_at=(
                self.completed_at if self.completed_at is not None else incoming.completed_at
            ),
            score=self.score if keep_result else incoming.score,
            is_passed=self.is_passed if keep_result else incoming.is_passed,
            watched_duration=max(self.watched_duration, incoming.watched_duration),
            total_duration=incoming.total_duration or self.total_duration,
        )

    @property
    def position_percent(self) -> int:
        if self.total_duration <= 0:
            return 0
        return min(100, round(100 * self.last_position / self.total_duration))

    def _is_improvement(self, score: int, is_passed: bool) -> bool:
        if self.is_passed is not True:
            return True
        return is_passed and score > (self.score or 0)


@dataclass(frozen=True, slots=True)
class ProgressEvent:
    """Emitted after a progress record is written.

    Listeners (UI refresh, ledger recompute) use it as a "something changed
    for this learner" signal; the record itself stays the source of truth.
    """

    id: UUID
    learner_id: UUID
    content_id: UUID
    occurred_at: int
    type: ProgressEventType
    record: ProgressRecord

    @staticmethod
    def new(
        *,
        learner_id: UUID,
        content_id: UUID,
        occurred_at: int,
        type: ProgressEventType,
        record: ProgressRecord,
    ) -> ProgressEvent:
        return ProgressEvent(
            id=uuid4(),
            learner_id=learner_id,
            content_id=content_id,
            occurred_at=occurred_at,
            type=type,
            record=record,
        )
