"""PostgreSQL implementation of QuizAttemptRepo."""

from __future__ import annotations

import dataclasses
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from progress_engine.core.errors import DuplicateAttempt
from progress_engine.db.engine import translate_errors
from progress_engine.db.tables import QuizAttemptRow
from progress_engine.models.quiz import QuestionFeedback, QuizAttempt


class PgQuizAttemptRepo:
    """Satisfies the QuizAttemptRepo Protocol using PostgreSQL via SQLAlchemy."""

    def __init__(self, sessions: async_sessionmaker[AsyncSession]) -> None:
        self._sessions = sessions

    async def get_by_id(self, attempt_id: UUID) -> QuizAttempt | None:
        stmt = select(QuizAttemptRow).where(QuizAttemptRow.id == attempt_id)
        with translate_errors("quiz_attempt.get_by_id"):
            async with self._sessions() as session:
                row = (await session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_attempt(row)

    async def create(self, attempt: QuizAttempt) -> QuizAttempt:
        row = QuizAttemptRow(
            id=attempt.id,
            quiz_id=attempt.quiz_id,
            learner_id=attempt.learner_id,
            attempt_number=attempt.attempt_number,
            started_at=attempt.started_at,
            time_limit_seconds=attempt.time_limit_seconds,
            answers=dict(attempt.answers),
            feedback=[],
        )
        with translate_errors("quiz_attempt.create"):
            try:
                async with self._sessions.begin() as session:
                    session.add(row)
            except IntegrityError as exc:
                raise DuplicateAttempt("attempt number already exists") from exc
        return attempt

    async def update_by_id(self, attempt: QuizAttempt) -> QuizAttempt | None:
        stmt = (
            update(QuizAttemptRow)
            .where(
                QuizAttemptRow.id == attempt.id,
                QuizAttemptRow.submitted_at.is_(None),
            )
            .values(answers=dict(attempt.answers))
        )
        with translate_errors("quiz_attempt.update_by_id"):
            async with self._sessions.begin() as session:
                result = await session.execute(stmt)
        if result.rowcount == 0:
            return None
        return attempt

    async def mark_submitted(self, attempt: QuizAttempt) -> QuizAttempt | None:
        # The submitted_at IS NULL guard makes the terminal write conditional:
        # of two concurrent submits, exactly one matches a row.
        stmt = (
            update(QuizAttemptRow)
            .where(
                QuizAttemptRow.id == attempt.id,
                QuizAttemptRow.submitted_at.is_(None),
            )
            .values(
                answers=dict(attempt.answers),
                submitted_at=attempt.submitted_at,
                score=attempt.score,
                is_passed=attempt.is_passed,
                feedback=[dataclasses.asdict(f) for f in attempt.feedback],
            )
        )
        with translate_errors("quiz_attempt.mark_submitted"):
            async with self._sessions.begin() as session:
                result = await session.execute(stmt)
        if result.rowcount == 0:
            return None
        return attempt

    async def list_by_quiz(self, quiz_id: UUID, learner_id: UUID) -> list[QuizAttempt]:
        stmt = (
            select(QuizAttemptRow)
            .where(
                QuizAttemptRow.quiz_id == quiz_id,
                QuizAttemptRow.learner_id == learner_id,
            )
            .order_by(QuizAttemptRow.attempt_number)
        )
        with translate_errors("quiz_attempt.list_by_quiz"):
            async with self._sessions() as session:
                rows = (await session.execute(stmt)).scalars().all()
        return [_row_to_attempt(r) for r in rows]


def _row_to_attempt(row: QuizAttemptRow) -> QuizAttempt:
    return QuizAttempt(
        id=row.id,
        quiz_id=row.quiz_id,
        learner_id=row.learner_id,
        attempt_number=row.attempt_number,
        started_at=row.started_at,
        time_limit_seconds=row.time_limit_seconds,
        answers=dict(row.answers or {}),
        submitted_at=row.submitted_at,
        score=row.score,
        is_passed=row.is_passed,
        feedback=tuple(QuestionFeedback(**f) for f in row.feedback or ()),
    )
