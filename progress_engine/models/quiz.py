from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal
from uuid import UUID, uuid4

QuestionType = Literal["multiple_choice", "multiple_select", "true_false", "fill_blank"]
QUESTION_TYPES: tuple[str, ...] = (
    "multiple_choice",
    "multiple_select",
    "true_false",
    "fill_blank",
)

AttemptStatus = Literal["in_progress", "submitted"]


@dataclass(frozen=True, slots=True)
class Question:
    id: str
    type: QuestionType
    correct_answer: Any
    prompt: str = ""
    options: tuple[str, ...] = ()
    points: int = 1
    explanation: str | None = None


@dataclass(frozen=True, slots=True)
class Quiz:
    """Quiz definition.  Owned by the catalog; read-only here."""

    id: UUID
    content_id: UUID
    title: str
    questions: tuple[Question, ...]
    time_limit_minutes: int = 0  # 0 = unlimited
    max_attempts: int = 1  # 0 = unlimited
    passing_score_percent: int = 70
    show_correct_answers: bool = True
    randomize_questions: bool = False

    @property
    def time_limit_seconds(self) -> int:
        return self.time_limit_minutes * 60

    @property
    def total_points(self) -> int:
        return sum(q.points for q in self.questions)


@dataclass(frozen=True, slots=True)
class QuestionFeedback:
    question_id: str
    is_correct: bool
    answer: Any = None
    correct_answer: Any = None
    explanation: str | None = None


@dataclass(frozen=True, slots=True)
class QuizAttempt:
    id: UUID
    quiz_id: UUID
    learner_id: UUID
    attempt_number: int
    started_at: int
    time_limit_seconds: int = 0
    answers: dict[str, Any] = field(default_factory=dict)
    submitted_at: int | None = None
    score: int | None = None
    is_passed: bool | None = None
    feedback: tuple[QuestionFeedback, ...] = ()

    @property
    def status(self) -> AttemptStatus:
        return "in_progress" if self.submitted_at is None else "submitted"

    @property
    def deadline(self) -> int | None:
        if self.time_limit_seconds <= 0:
            return None
        return self.started_at + self.time_limit_seconds

    def is_expired(self, now: float) -> bool:
        deadline = self.deadline
        return deadline is not None and now >= deadline

    def seconds_left(self, now: float) -> float | None:
        deadline = self.deadline
        if deadline is None:
            return None
        return max(0.0, deadline - now)

    @staticmethod
    def new(
        *,
        quiz_id: UUID,
        learner_id: UUID,
        attempt_number: int,
        started_at: int,
        time_limit_seconds: int = 0,
    ) -> QuizAttempt:
        return QuizAttempt(
            id=uuid4(),
            quiz_id=quiz_id,
            learner_id=learner_id,
            attempt_number=attempt_number,
            started_at=started_at,
            time_limit_seconds=time_limit_seconds,
        )
