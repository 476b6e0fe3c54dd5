"""Assignment submission lifecycle.

    draft --save--> draft --submit--> submitted --grade--> graded
    draft --submit (auto_grade)--> graded

Each (learner, assignment, attempt_number) holds one row.  Saving a draft
upserts that row, so only the latest draft survives.  Terminal moves are
compare-and-set on the stored status (``SubmissionRepo.transition``): a
duplicate submit finds the row already out of ``draft`` and gets the
stored submission back instead of a second transition.

When the assignment allows resubmission, editing after a grade opens a new
row with the next attempt_number; graded rows are never mutated, so the
grading history stays intact.

File constraints (count, size, extension) are checked before anything is
written, both for uploads and for the file list of a draft.  Uploads are
tagged with their (assignment, learner) owner in the blob store; a draft
rejected for its file list deletes the uploads it was about to attach.
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from uuid import UUID

from progress_engine.core.clock import Clock
from progress_engine.core.errors import (
    EmptySubmission,
    InvalidFileSet,
    InvalidScore,
    NotSubmitted,
    RecordNotFound,
    ResubmissionNotAllowed,
    StorageError,
)
from progress_engine.core.log_context import log_context
from progress_engine.core.metrics import (
    ASSIGNMENT_TRANSITIONS,
    DUPLICATE_SUBMITS,
    PROGRESS_UPDATE_FAILURES,
)
from progress_engine.models.assignment import (
    Assignment,
    AssignmentSubmission,
    FileRef,
)
from progress_engine.repos.blob_store import BlobStore
from progress_engine.repos.catalog_repo import CatalogRepo
from progress_engine.repos.submission_repo import SubmissionRepo
from progress_engine.schemas.submission import DraftContent
from progress_engine.services.progress_service import ProgressService
from progress_engine.services.scoring import percent

logger = logging.getLogger(__name__)

SYSTEM_GRADER = "system"


@dataclass(frozen=True, slots=True)
class SubmitOutcome:
    submission: AssignmentSubmission
    already_submitted: bool


def validate_file_set(assignment: Assignment, file_refs: Sequence[FileRef]) -> list[str]:
    """Every constraint violation in the file list, or [] if it is valid."""
    errors: list[str] = []
    if len(file_refs) > assignment.max_files:
        errors.append(f"too many files: {len(file_refs)} (max {assignment.max_files})")
    for f in file_refs:
        if f.size > assignment.max_file_size:
            errors.append(
                f"{f.name}: {f.size} bytes exceeds the limit of "
                f"{assignment.max_file_size} bytes"
            )
        if f.extension not in assignment.allowed_file_types:
            allowed = ", ".join(sorted(assignment.allowed_file_types))
            errors.append(f"{f.name}: file type not allowed (allowed: {allowed})")
    return errors


class AssignmentService:
    def __init__(
        self,
        submissions: SubmissionRepo,
        catalog: CatalogRepo,
        progress: ProgressService,
        blobs: BlobStore,
        clock: Clock,
    ) -> None:
        self._submissions = submissions
        self._catalog = catalog
        self._progress = progress
        self._blobs = blobs
        self._clock = clock

    # ------------------------------------------------------------------
    # drafts
    # ------------------------------------------------------------------

    async def save_draft(
        self, assignment_id: UUID, learner_id: UUID, content: DraftContent
    ) -> AssignmentSubmission:
        assignment = await self._get_assignment(assignment_id)
        with log_context(learner_id=learner_id, content_id=assignment.content_id):
            files = content.files()
            history = await self._submissions.list_by_assignment(assignment_id, learner_id)
            errors = validate_file_set(assignment, files)
            if errors:
                logger.warning("Rejected draft: %s", "; ".join(errors))
                # Uploads this draft would have attached have nowhere else to go.
                await self._discard_uploads(assignment_id, learner_id, files, history)
                raise InvalidFileSet(errors)

            attempt_number = _next_draft_attempt(assignment, history)

            draft = AssignmentSubmission.new(
                assignment_id=assignment_id,
                learner_id=learner_id,
                attempt_number=attempt_number,
                text=content.text,
                file_refs=files,
                updated_at=int(self._clock.now()),
            )
            stored = await self._submissions.upsert_draft(draft)
            if stored is None:
                # Submitted between our read and the upsert.
                raise ResubmissionNotAllowed("submission is no longer a draft")

            if stored.id == draft.id:
                ASSIGNMENT_TRANSITIONS.labels(status="draft").inc()
                logger.info("Draft created for attempt %d", attempt_number)
            return stored

    # ------------------------------------------------------------------
    # submit / grade
    # ------------------------------------------------------------------

    async def submit(self, submission_id: UUID) -> SubmitOutcome:
        submission = await self._get_submission(submission_id)
        assignment = await self._get_assignment(submission.assignment_id)

        with log_context(learner_id=submission.learner_id, content_id=assignment.content_id):
            if submission.status != "draft":
                return self._duplicate(submission)
            if submission.is_empty:
                logger.warning("Rejected empty submission")
                raise EmptySubmission("add text or at least one file before submitting")
            errors = validate_file_set(assignment, submission.file_refs)
            if errors:
                # The assignment's limits changed after the draft was saved.
                logger.warning("Rejected submission: %s", "; ".join(errors))
                raise InvalidFileSet(errors)

            now = int(self._clock.now())
            final = dataclasses.replace(
                submission,
                status="submitted",
                submitted_at=now,
                is_late=assignment.is_overdue(now),
                updated_at=now,
            )
            if assignment.auto_grade:
                # Straight to graded in the same write; there is never a
                # committed "submitted" row for an auto-graded assignment.
                final = dataclasses.replace(
                    final,
                    status="graded",
                    score=assignment.max_score,
                    graded_at=now,
                    graded_by=SYSTEM_GRADER,
                )

            if await self._submissions.transition(final, "draft") is None:
                return self._duplicate(await self._get_submission(submission_id))

            ASSIGNMENT_TRANSITIONS.labels(status="submitted").inc()
            logger.info(
                "Attempt %d submitted (late=%s)", final.attempt_number, final.is_late
            )
            if final.status == "graded":
                ASSIGNMENT_TRANSITIONS.labels(status="graded").inc()
                logger.info("Auto-graded with full marks")
                await self._update_progress(assignment, final, score=100, is_passed=True)
            return SubmitOutcome(submission=final, already_submitted=False)

    async def grade(
        self,
        submission_id: UUID,
        score: int,
        feedback: str | None,
        grader_id: str,
        passing_threshold: int | None = None,
    ) -> AssignmentSubmission:
        """Grade a submitted submission.

        ``passing_threshold`` is a percentage of ``max_score``.  Without one
        a graded submission counts as passed.
        """
        submission = await self._get_submission(submission_id)
        assignment = await self._get_assignment(submission.assignment_id)

        with log_context(learner_id=submission.learner_id, content_id=assignment.content_id):
            if score < 0 or score > assignment.max_score:
                logger.warning("Rejected grade %d (max %d)", score, assignment.max_score)
                raise InvalidScore(f"score must be between 0 and {assignment.max_score}")
            if passing_threshold is not None and not 0 <= passing_threshold <= 100:
                raise InvalidScore("passing threshold must be a percentage")
            if submission.status != "submitted":
                logger.warning("Rejected grade on %s submission", submission.status)
                raise NotSubmitted(f"submission is {submission.status}")

            now = int(self._clock.now())
            graded = dataclasses.replace(
                submission,
                status="graded",
                score=score,
                feedback=feedback,
                graded_at=now,
                graded_by=grader_id,
                updated_at=now,
            )
            if await self._submissions.transition(graded, "submitted") is None:
                current = await self._get_submission(submission_id)
                raise NotSubmitted(f"submission is {current.status}")

            ASSIGNMENT_TRANSITIONS.labels(status="graded").inc()
            logger.info("Graded %d/%d by %s", score, assignment.max_score, grader_id)

            score_percent = percent(score, assignment.max_score)
            is_passed = passing_threshold is None or score_percent >= passing_threshold
            await self._update_progress(
                assignment, graded, score=score_percent, is_passed=is_passed
            )
            return graded

    # ------------------------------------------------------------------
    # files
    # ------------------------------------------------------------------

    async def upload_file(
        self, assignment_id: UUID, learner_id: UUID, name: str, data: bytes
    ) -> FileRef:
        """Validate and store one file.

        The returned FileRef is not attached to anything yet; the caller
        includes it in the next ``save_draft``.  The count check includes
        the files already on the learner's current draft.
        """
        assignment = await self._get_assignment(assignment_id)
        current = await self.current_submission(assignment_id, learner_id)
        attached = current.file_refs if current is not None and current.status == "draft" else ()

        candidate = FileRef(name=name, size=len(data), storage_ref="")
        errors = validate_file_set(assignment, (*attached, candidate))
        if errors:
            with log_context(learner_id=learner_id, content_id=assignment.content_id):
                logger.warning("Rejected upload: %s", "; ".join(errors))
            raise InvalidFileSet(errors)

        storage_ref = await self._blobs.upload(
            name, data, owner=_blob_owner(assignment_id, learner_id)
        )
        return dataclasses.replace(candidate, storage_ref=storage_ref)

    async def remove_file(
        self, assignment_id: UUID, learner_id: UUID, storage_ref: str
    ) -> None:
        """Delete one of the learner's uploads, detaching it from their draft.

        Files of a submitted or graded attempt stay.
        """
        owner = await self._blobs.get_owner(storage_ref)
        if owner != _blob_owner(assignment_id, learner_id):
            raise RecordNotFound("file", storage_ref)

        history = await self._submissions.list_by_assignment(assignment_id, learner_id)
        with log_context(learner_id=learner_id):
            for submission in history:
                if not any(f.storage_ref == storage_ref for f in submission.file_refs):
                    continue
                if submission.status != "draft":
                    logger.warning(
                        "Rejected removal of a file from a %s attempt", submission.status
                    )
                    raise ResubmissionNotAllowed(
                        f"file belongs to a {submission.status} attempt"
                    )
                remaining = tuple(
                    f for f in submission.file_refs if f.storage_ref != storage_ref
                )
                detached = AssignmentSubmission.new(
                    assignment_id=assignment_id,
                    learner_id=learner_id,
                    attempt_number=submission.attempt_number,
                    text=submission.text,
                    file_refs=remaining,
                    updated_at=int(self._clock.now()),
                )
                if await self._submissions.upsert_draft(detached) is None:
                    raise ResubmissionNotAllowed("submission is no longer a draft")

            await self._blobs.delete(storage_ref)
            logger.info("Removed upload %s", storage_ref)

    async def download_url(self, file_ref: FileRef) -> str:
        return await self._blobs.get_download_url(file_ref.storage_ref)

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------

    async def list_submissions(
        self, assignment_id: UUID, learner_id: UUID
    ) -> list[AssignmentSubmission]:
        return await self._submissions.list_by_assignment(assignment_id, learner_id)

    async def current_submission(
        self, assignment_id: UUID, learner_id: UUID
    ) -> AssignmentSubmission | None:
        history = await self._submissions.list_by_assignment(assignment_id, learner_id)
        return history[-1] if history else None

    async def resync_progress(
        self,
        assignment_id: UUID,
        learner_id: UUID,
        passing_threshold: int | None = None,
    ) -> None:
        """Replay graded submissions into the ProgressRecord."""
        assignment = await self._get_assignment(assignment_id)
        for submission in await self.list_submissions(assignment_id, learner_id):
            if submission.status != "graded":
                continue
            score_percent = percent(submission.score or 0, assignment.max_score)
            await self._progress.record_result(
                assignment.content_id,
                learner_id,
                score=score_percent,
                is_passed=passing_threshold is None or score_percent >= passing_threshold,
                event_type="assignment_graded",
            )

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------

    def _duplicate(self, submission: AssignmentSubmission) -> SubmitOutcome:
        DUPLICATE_SUBMITS.labels(kind="assignment").inc()
        logger.info("Duplicate submit; submission is already %s", submission.status)
        return SubmitOutcome(submission=submission, already_submitted=True)

    async def _update_progress(
        self,
        assignment: Assignment,
        submission: AssignmentSubmission,
        *,
        score: int,
        is_passed: bool,
    ) -> None:
        try:
            await self._progress.record_result(
                assignment.content_id,
                submission.learner_id,
                score=score,
                is_passed=is_passed,
                event_type="assignment_graded",
            )
        except StorageError:
            PROGRESS_UPDATE_FAILURES.labels(source="assignment").inc()
            logger.warning(
                "Submission committed but progress update failed", exc_info=True
            )

    async def _discard_uploads(
        self,
        assignment_id: UUID,
        learner_id: UUID,
        files: Sequence[FileRef],
        history: Sequence[AssignmentSubmission],
    ) -> None:
        attached = {f.storage_ref for s in history for f in s.file_refs}
        owner = _blob_owner(assignment_id, learner_id)
        discarded = 0
        for f in files:
            if f.storage_ref in attached:
                continue
            if await self._blobs.get_owner(f.storage_ref) != owner:
                continue
            await self._blobs.delete(f.storage_ref)
            discarded += 1
        if discarded:
            logger.info("Discarded %d unattached uploads", discarded)

    async def _get_assignment(self, assignment_id: UUID) -> Assignment:
        assignment = await self._catalog.get_assignment(assignment_id)
        if assignment is None:
            raise RecordNotFound("assignment", assignment_id)
        return assignment

    async def _get_submission(self, submission_id: UUID) -> AssignmentSubmission:
        submission = await self._submissions.get_by_id(submission_id)
        if submission is None:
            raise RecordNotFound("submission", submission_id)
        return submission


def _next_draft_attempt(
    assignment: Assignment, history: Sequence[AssignmentSubmission]
) -> int:
    if not history:
        return 1
    latest = history[-1]
    if latest.status == "draft":
        return latest.attempt_number
    if latest.status == "submitted":
        raise ResubmissionNotAllowed("submission is awaiting a grade")
    if not assignment.allow_resubmission:
        raise ResubmissionNotAllowed("assignment does not allow resubmission")
    return latest.attempt_number + 1


def _blob_owner(assignment_id: UUID, learner_id: UUID) -> str:
    return f"{assignment_id}/{learner_id}"
