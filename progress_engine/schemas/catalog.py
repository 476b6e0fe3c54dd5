"""Validation of catalog payloads handed to the engine.

The catalog collaborator owns quiz, assignment and content definitions and
hands them over as plain JSON-shaped dicts.  These pydantic models are the
boundary: a payload either converts into the frozen domain dataclasses or
raises ``pydantic.ValidationError`` listing every authoring mistake.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from progress_engine.models.assignment import (
    DEFAULT_ALLOWED_FILE_TYPES,
    DEFAULT_MAX_FILE_SIZE,
    Assignment,
)
from progress_engine.models.content import ContentItem, ContentType
from progress_engine.models.quiz import Question, QuestionType, Quiz


class QuestionSchema(BaseModel):
    id: str = Field(min_length=1)
    type: QuestionType
    prompt: str = ""
    options: list[str] = Field(default_factory=list)
    correct_answer: Any = None
    points: int = Field(default=1, gt=0)
    explanation: str | None = None

    @model_validator(mode="after")
    def _check_answer_shape(self) -> QuestionSchema:
        if self.type in ("multiple_choice", "multiple_select") and len(self.options) < 2:
            raise ValueError(f"question {self.id}: needs at least 2 options")

        if self.type == "multiple_choice":
            if self.correct_answer in (None, ""):
                raise ValueError(f"question {self.id}: correct answer is required")
        elif self.type == "multiple_select":
            if not isinstance(self.correct_answer, list) or not self.correct_answer:
                raise ValueError(
                    f"question {self.id}: needs at least one correct option"
                )
        elif self.type == "true_false":
            if not isinstance(self.correct_answer, bool):
                raise ValueError(f"question {self.id}: answer must be true or false")
        elif self.type == "fill_blank":
            accepted = (
                self.correct_answer
                if isinstance(self.correct_answer, list)
                else [self.correct_answer]
            )
            if not accepted or not all(isinstance(a, str) and a for a in accepted):
                raise ValueError(f"question {self.id}: correct answer is required")
        return self

    def to_domain(self) -> Question:
        answer = self.correct_answer
        if isinstance(answer, list):
            answer = tuple(answer)
        return Question(
            id=self.id,
            type=self.type,
            prompt=self.prompt,
            options=tuple(self.options),
            correct_answer=answer,
            points=self.points,
            explanation=self.explanation,
        )


class QuizSchema(BaseModel):
    id: UUID
    content_id: UUID
    title: str = Field(min_length=1)
    time_limit_minutes: int = Field(default=0, ge=0)
    max_attempts: int = Field(default=1, ge=0)
    passing_score_percent: int = Field(default=70, ge=0, le=100)
    show_correct_answers: bool = True
    randomize_questions: bool = False
    questions: list[QuestionSchema] = Field(min_length=1)

    @model_validator(mode="after")
    def _check_unique_ids(self) -> QuizSchema:
        ids = [q.id for q in self.questions]
        if len(ids) != len(set(ids)):
            raise ValueError("question ids must be unique")
        return self

    def to_domain(self) -> Quiz:
        return Quiz(
            id=self.id,
            content_id=self.content_id,
            title=self.title.strip(),
            questions=tuple(q.to_domain() for q in self.questions),
            time_limit_minutes=self.time_limit_minutes,
            max_attempts=self.max_attempts,
            passing_score_percent=self.passing_score_percent,
            show_correct_answers=self.show_correct_answers,
            randomize_questions=self.randomize_questions,
        )


class AssignmentSchema(BaseModel):
    id: UUID
    content_id: UUID
    title: str = Field(min_length=1)
    instructions: str = ""
    due_date: int | None = None
    max_score: int = Field(default=100, gt=0)
    max_files: int = Field(default=5, ge=0)
    max_file_size: int = Field(default=DEFAULT_MAX_FILE_SIZE, gt=0)
    allowed_file_types: list[str] = Field(
        default_factory=lambda: sorted(DEFAULT_ALLOWED_FILE_TYPES)
    )
    auto_grade: bool = False
    allow_resubmission: bool = False

    def to_domain(self) -> Assignment:
        return Assignment(
            id=self.id,
            content_id=self.content_id,
            title=self.title.strip(),
            instructions=self.instructions,
            due_date=self.due_date,
            max_score=self.max_score,
            max_files=self.max_files,
            max_file_size=self.max_file_size,
            allowed_file_types=frozenset(
                t.lower().lstrip(".") for t in self.allowed_file_types
            ),
            auto_grade=self.auto_grade,
            allow_resubmission=self.allow_resubmission,
        )


class ContentItemSchema(BaseModel):
    id: UUID
    course_id: UUID
    order_index: int = Field(ge=0)
    content_type: ContentType
    title: str = ""
    duration_minutes: int | None = Field(default=None, ge=0)
    is_free: bool = False

    def to_domain(self) -> ContentItem:
        return ContentItem(
            id=self.id,
            course_id=self.course_id,
            order_index=self.order_index,
            content_type=self.content_type,
            title=self.title,
            duration_minutes=self.duration_minutes,
            is_free=self.is_free,
        )
