from __future__ import annotations

from dataclasses import dataclass
from typing import Literal
from uuid import UUID, uuid4

SubmissionStatus = Literal["draft", "submitted", "graded"]

DEFAULT_MAX_FILE_SIZE = 10 * 1024 * 1024  # 10 MiB
DEFAULT_ALLOWED_FILE_TYPES = frozenset({"pdf", "doc", "docx", "jpg", "png"})


@dataclass(frozen=True, slots=True)
class Assignment:
    """Assignment definition.  Owned by the catalog; read-only here."""

    id: UUID
    content_id: UUID
    title: str
    instructions: str = ""
    due_date: int | None = None
    max_score: int = 100
    max_files: int = 5
    max_file_size: int = DEFAULT_MAX_FILE_SIZE
    allowed_file_types: frozenset[str] = DEFAULT_ALLOWED_FILE_TYPES
    auto_grade: bool = False
    allow_resubmission: bool = False

    def is_overdue(self, now: float) -> bool:
        return self.due_date is not None and now > self.due_date


@dataclass(frozen=True, slots=True)
class FileRef:
    name: str
    size: int
    storage_ref: str

    @property
    def extension(self) -> str:
        _, dot, ext = self.name.rpartition(".")
        return ext.lower() if dot else ""


@dataclass(frozen=True, slots=True)
class AssignmentSubmission:
    id: UUID
    assignment_id: UUID
    learner_id: UUID
    attempt_number: int
    text: str = ""
    file_refs: tuple[FileRef, ...] = ()
    status: SubmissionStatus = "draft"
    submitted_at: int | None = None
    is_late: bool = False
    score: int | None = None
    feedback: str | None = None
    graded_at: int | None = None
    graded_by: str | None = None
    updated_at: int | None = None

    @property
    def is_empty(self) -> bool:
        return not self.text.strip() and not self.file_refs

    @staticmethod
    def new(
        *,
        assignment_id: UUID,
        learner_id: UUID,
        attempt_number: int,
        text: str = "",
        file_refs: tuple[FileRef, ...] = (),
        updated_at: int | None = None,
    ) -> AssignmentSubmission:
        return AssignmentSubmission(
            id=uuid4(),
            assignment_id=assignment_id,
            learner_id=learner_id,
            attempt_number=attempt_number,
            text=text,
            file_refs=file_refs,
            updated_at=updated_at,
        )
