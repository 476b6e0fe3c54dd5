from __future__ import annotations

from dataclasses import dataclass
from typing import Literal
from uuid import UUID, uuid4

ContentType = Literal["video", "quiz", "assignment", "document"]
CONTENT_TYPES: tuple[str, ...] = ("video", "quiz", "assignment", "document")


@dataclass(frozen=True, slots=True)
class ContentItem:
    """One unit of course material.  Owned by the catalog; read-only here."""

    id: UUID
    course_id: UUID
    order_index: int
    content_type: ContentType
    title: str = ""
    duration_minutes: int | None = None
    is_free: bool = False

    @property
    def is_assessed(self) -> bool:
        return self.content_type in ("quiz", "assignment")

    @staticmethod
    def new(
        *,
        course_id: UUID,
        order_index: int,
        content_type: ContentType,
        title: str = "",
        duration_minutes: int | None = None,
        is_free: bool = False,
    ) -> ContentItem:
        return ContentItem(
            id=uuid4(),
            course_id=course_id,
            order_index=order_index,
            content_type=content_type,
            title=title,
            duration_minutes=duration_minutes,
            is_free=is_free,
        )
