"""PostgreSQL implementation of SubmissionRepo."""

from __future__ import annotations

import dataclasses
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from progress_engine.db.engine import translate_errors
from progress_engine.db.tables import AssignmentSubmissionRow
from progress_engine.models.assignment import (
    AssignmentSubmission,
    FileRef,
    SubmissionStatus,
)


class PgSubmissionRepo:
    """Satisfies the SubmissionRepo Protocol using PostgreSQL via SQLAlchemy."""

    def __init__(self, sessions: async_sessionmaker[AsyncSession]) -> None:
        self._sessions = sessions

    async def get_by_id(self, submission_id: UUID) -> AssignmentSubmission | None:
        stmt = select(AssignmentSubmissionRow).where(
            AssignmentSubmissionRow.id == submission_id
        )
        with translate_errors("submission.get_by_id"):
            async with self._sessions() as session:
                row = (await session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_submission(row)

    async def upsert_draft(
        self, submission: AssignmentSubmission
    ) -> AssignmentSubmission | None:
        # Keyed on (learner_id, assignment_id, attempt_number): two saves
        # racing to create the same attempt collapse into one row, and the
        # WHERE clause keeps a submitted/graded row from being overwritten.
        file_refs = [dataclasses.asdict(f) for f in submission.file_refs]
        stmt = insert(AssignmentSubmissionRow).values(
            id=submission.id,
            assignment_id=submission.assignment_id,
            learner_id=submission.learner_id,
            attempt_number=submission.attempt_number,
            text=submission.text,
            file_refs=file_refs,
            status="draft",
            is_late=False,
            updated_at=submission.updated_at,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[
                AssignmentSubmissionRow.learner_id,
                AssignmentSubmissionRow.assignment_id,
                AssignmentSubmissionRow.attempt_number,
            ],
            set_={
                "text": stmt.excluded.text,
                "file_refs": stmt.excluded.file_refs,
                "updated_at": stmt.excluded.updated_at,
            },
            where=AssignmentSubmissionRow.status == "draft",
        ).returning(AssignmentSubmissionRow)
        with translate_errors("submission.upsert_draft"):
            async with self._sessions.begin() as session:
                row = (await session.execute(stmt)).scalar_one_or_none()
                stored = _row_to_submission(row) if row is not None else None
        return stored

    async def transition(
        self, submission: AssignmentSubmission, expected_status: SubmissionStatus
    ) -> AssignmentSubmission | None:
        stmt = (
            update(AssignmentSubmissionRow)
            .where(
                AssignmentSubmissionRow.id == submission.id,
                AssignmentSubmissionRow.status == expected_status,
            )
            .values(
                status=submission.status,
                submitted_at=submission.submitted_at,
                is_late=submission.is_late,
                score=submission.score,
                feedback=submission.feedback,
                graded_at=submission.graded_at,
                graded_by=submission.graded_by,
                updated_at=submission.updated_at,
            )
        )
        with translate_errors("submission.transition"):
            async with self._sessions.begin() as session:
                result = await session.execute(stmt)
        if result.rowcount == 0:
            return None
        return submission

    async def list_by_assignment(
        self, assignment_id: UUID, learner_id: UUID
    ) -> list[AssignmentSubmission]:
        stmt = (
            select(AssignmentSubmissionRow)
            .where(
                AssignmentSubmissionRow.assignment_id == assignment_id,
                AssignmentSubmissionRow.learner_id == learner_id,
            )
            .order_by(AssignmentSubmissionRow.attempt_number)
        )
        with translate_errors("submission.list_by_assignment"):
            async with self._sessions() as session:
                rows = (await session.execute(stmt)).scalars().all()
        return [_row_to_submission(r) for r in rows]


def _row_to_submission(row: AssignmentSubmissionRow) -> AssignmentSubmission:
    return AssignmentSubmission(
        id=row.id,
        assignment_id=row.assignment_id,
        learner_id=row.learner_id,
        attempt_number=row.attempt_number,
        text=row.text or "",
        file_refs=tuple(FileRef(**f) for f in row.file_refs or ()),
        status=row.status,  # type: ignore[arg-type]
        submitted_at=row.submitted_at,
        is_late=row.is_late,
        score=row.score,
        feedback=row.feedback,
        graded_at=row.graded_at,
        graded_by=row.graded_by,
        updated_at=row.updated_at,
    )
