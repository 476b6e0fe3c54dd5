"""Error taxonomy for the progress engine.

Every error a controller raises is a ProgressEngineError carrying a stable
``code`` string.  The UI layer switches on ``code`` rather than on Python
class names, so renaming a class never changes what the learner sees.

None of these are process-fatal.  Validation errors (limit, empty, file
set, score) are raised before any gateway write, so there is never
anything to roll back.  StorageError is the only error that can come out
of a write; it is propagated unchanged.
"""

from __future__ import annotations


class ProgressEngineError(Exception):
    code = "progress_engine_error"


class RecordNotFound(ProgressEngineError):
    code = "not_found"

    def __init__(self, kind: str, record_id: object) -> None:
        super().__init__(f"{kind} {record_id} not found")
        self.kind = kind
        self.record_id = record_id


class AttemptLimitExceeded(ProgressEngineError):
    code = "attempt_limit_exceeded"

    def __init__(self, max_attempts: int) -> None:
        super().__init__(f"no attempts left (max {max_attempts})")
        self.max_attempts = max_attempts


class AttemptExpired(ProgressEngineError):
    code = "attempt_expired"


class AlreadySubmitted(ProgressEngineError):
    """Duplicate submit on a terminal attempt/submission.

    ``record`` is the stored terminal record, so callers can hand the
    already-recorded result back instead of failing.
    """

    code = "already_submitted"

    def __init__(self, record: object) -> None:
        super().__init__("already submitted")
        self.record = record


class EmptySubmission(ProgressEngineError):
    code = "empty_submission"


class InvalidFileSet(ProgressEngineError):
    code = "invalid_file_set"

    def __init__(self, errors: list[str]) -> None:
        super().__init__("; ".join(errors))
        self.errors = errors


class ResubmissionNotAllowed(ProgressEngineError):
    code = "resubmission_not_allowed"


class InvalidScore(ProgressEngineError):
    code = "invalid_score"


class NotSubmitted(ProgressEngineError):
    code = "not_submitted"


class StorageError(ProgressEngineError):
    """Raised by gateway implementations; distinguished only by message."""

    code = "storage_error"


class DuplicateAttempt(StorageError):
    """The (learner, quiz, attempt_number) slot was taken by a concurrent start."""

    code = "duplicate_attempt"
