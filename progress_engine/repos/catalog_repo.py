"""Read-only access to catalog definitions.

The catalog (courses, content items, quiz and assignment definitions) is
owned by another part of the platform.  The engine only reads it, so the
Protocol has no write methods; the in-memory implementation has loaders
used by tests and local development.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any, Protocol
from uuid import UUID

from progress_engine.models.assignment import Assignment
from progress_engine.models.content import ContentItem
from progress_engine.models.quiz import Quiz
from progress_engine.schemas.catalog import (
    AssignmentSchema,
    ContentItemSchema,
    QuizSchema,
)


class CatalogRepo(Protocol):
    async def get_quiz(self, quiz_id: UUID) -> Quiz | None: ...
    async def get_assignment(self, assignment_id: UUID) -> Assignment | None: ...
    async def get_content_item(self, content_id: UUID) -> ContentItem | None: ...
    async def list_course_content(self, course_id: UUID) -> list[ContentItem]: ...


class InMemoryCatalogRepo:
    def __init__(self) -> None:
        self._quizzes: dict[UUID, Quiz] = {}
        self._assignments: dict[UUID, Assignment] = {}
        self._content: dict[UUID, ContentItem] = {}

    # --- loaders ---

    def add_quiz(self, quiz: Quiz) -> Quiz:
        self._quizzes[quiz.id] = quiz
        return quiz

    def add_assignment(self, assignment: Assignment) -> Assignment:
        self._assignments[assignment.id] = assignment
        return assignment

    def add_content(self, items: Iterable[ContentItem]) -> None:
        for item in items:
            for other in self._content.values():
                if (
                    other.course_id == item.course_id
                    and other.order_index == item.order_index
                    and other.id != item.id
                ):
                    raise ValueError(
                        f"order_index {item.order_index} already used in course"
                    )
            self._content[item.id] = item

    def load(self, payload: Mapping[str, Any]) -> None:
        """Load a catalog export: {"content": [...], "quizzes": [...], "assignments": [...]}.

        Raises pydantic.ValidationError on the first malformed definition.
        """
        self.add_content(
            ContentItemSchema.model_validate(raw).to_domain()
            for raw in payload.get("content", [])
        )
        for raw in payload.get("quizzes", []):
            self.add_quiz(QuizSchema.model_validate(raw).to_domain())
        for raw in payload.get("assignments", []):
            self.add_assignment(AssignmentSchema.model_validate(raw).to_domain())

    # --- CatalogRepo ---

    async def get_quiz(self, quiz_id: UUID) -> Quiz | None:
        return self._quizzes.get(quiz_id)

    async def get_assignment(self, assignment_id: UUID) -> Assignment | None:
        return self._assignments.get(assignment_id)

    async def get_content_item(self, content_id: UUID) -> ContentItem | None:
        return self._content.get(content_id)

    async def list_course_content(self, course_id: UUID) -> list[ContentItem]:
        items = [c for c in self._content.values() if c.course_id == course_id]
        return sorted(items, key=lambda c: c.order_index)
