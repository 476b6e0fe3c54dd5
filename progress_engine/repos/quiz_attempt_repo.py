from __future__ import annotations

import dataclasses
from typing import Protocol
from uuid import UUID

from progress_engine.core.errors import DuplicateAttempt
from progress_engine.models.quiz import QuizAttempt


class QuizAttemptRepo(Protocol):
    async def get_by_id(self, attempt_id: UUID) -> QuizAttempt | None: ...
    async def create(self, attempt: QuizAttempt) -> QuizAttempt: ...
    async def update_by_id(self, attempt: QuizAttempt) -> QuizAttempt | None: ...
    async def mark_submitted(self, attempt: QuizAttempt) -> QuizAttempt | None: ...
    async def list_by_quiz(self, quiz_id: UUID, learner_id: UUID) -> list[QuizAttempt]: ...


class InMemoryQuizAttemptRepo:
    def __init__(self) -> None:
        self._by_id: dict[UUID, QuizAttempt] = {}

    async def get_by_id(self, attempt_id: UUID) -> QuizAttempt | None:
        return self._by_id.get(attempt_id)

    async def create(self, attempt: QuizAttempt) -> QuizAttempt:
        # Mirrors the (learner_id, quiz_id, attempt_number) unique constraint.
        for existing in self._by_id.values():
            if (
                existing.quiz_id == attempt.quiz_id
                and existing.learner_id == attempt.learner_id
                and existing.attempt_number == attempt.attempt_number
            ):
                raise DuplicateAttempt("attempt number already exists")
        self._by_id[attempt.id] = _copy(attempt)
        return attempt

    async def update_by_id(self, attempt: QuizAttempt) -> QuizAttempt | None:
        """Overwrite an in-progress attempt.  Returns None once it is submitted."""
        current = self._by_id.get(attempt.id)
        if current is None or current.submitted_at is not None:
            return None
        self._by_id[attempt.id] = _copy(attempt)
        return attempt

    async def mark_submitted(self, attempt: QuizAttempt) -> QuizAttempt | None:
        """Atomically store the terminal state.  Returns None if the stored
        attempt doesn't exist or was already submitted."""
        current = self._by_id.get(attempt.id)
        if current is None or current.submitted_at is not None:
            return None
        if attempt.submitted_at is None:
            raise ValueError("mark_submitted requires submitted_at")
        self._by_id[attempt.id] = _copy(attempt)
        return attempt

    async def list_by_quiz(self, quiz_id: UUID, learner_id: UUID) -> list[QuizAttempt]:
        rows = [
            a
            for a in self._by_id.values()
            if a.quiz_id == quiz_id and a.learner_id == learner_id
        ]
        return sorted(rows, key=lambda a: a.attempt_number)


def _copy(attempt: QuizAttempt) -> QuizAttempt:
    # answers is the one mutable field; don't share it with the caller
    return dataclasses.replace(attempt, answers=dict(attempt.answers))
