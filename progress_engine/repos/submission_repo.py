from __future__ import annotations

from typing import Protocol
from uuid import UUID

from progress_engine.models.assignment import AssignmentSubmission, SubmissionStatus


class SubmissionRepo(Protocol):
    async def get_by_id(self, submission_id: UUID) -> AssignmentSubmission | None: ...
    async def upsert_draft(
        self, submission: AssignmentSubmission
    ) -> AssignmentSubmission | None: ...
    async def transition(
        self, submission: AssignmentSubmission, expected_status: SubmissionStatus
    ) -> AssignmentSubmission | None: ...
    async def list_by_assignment(
        self, assignment_id: UUID, learner_id: UUID
    ) -> list[AssignmentSubmission]: ...


class InMemorySubmissionRepo:
    def __init__(self) -> None:
        self._by_id: dict[UUID, AssignmentSubmission] = {}
        self._by_key: dict[tuple[UUID, UUID, int], UUID] = {}

    async def get_by_id(self, submission_id: UUID) -> AssignmentSubmission | None:
        return self._by_id.get(submission_id)

    async def upsert_draft(
        self, submission: AssignmentSubmission
    ) -> AssignmentSubmission | None:
        """Insert or update the draft for (learner, assignment, attempt_number).

        When two saves race to create the same attempt, the second one
        lands on the first one's row instead of creating a sibling.
        Returns None if that row has already left the draft state.
        """
        key = (submission.learner_id, submission.assignment_id, submission.attempt_number)
        existing_id = self._by_key.get(key)
        if existing_id is None:
            self._by_key[key] = submission.id
            self._by_id[submission.id] = submission
            return submission

        existing = self._by_id[existing_id]
        if existing.status != "draft":
            return None
        merged = AssignmentSubmission(
            id=existing.id,
            assignment_id=existing.assignment_id,
            learner_id=existing.learner_id,
            attempt_number=existing.attempt_number,
            text=submission.text,
            file_refs=submission.file_refs,
            updated_at=submission.updated_at,
        )
        self._by_id[existing.id] = merged
        return merged

    async def transition(
        self, submission: AssignmentSubmission, expected_status: SubmissionStatus
    ) -> AssignmentSubmission | None:
        """Compare-and-set on status.  Returns None if the stored row's status
        is no longer ``expected_status``."""
        current = self._by_id.get(submission.id)
        if current is None or current.status != expected_status:
            return None
        self._by_id[submission.id] = submission
        return submission

    async def list_by_assignment(
        self, assignment_id: UUID, learner_id: UUID
    ) -> list[AssignmentSubmission]:
        rows = [
            s
            for s in self._by_id.values()
            if s.assignment_id == assignment_id and s.learner_id == learner_id
        ]
        return sorted(rows, key=lambda s: s.attempt_number)
