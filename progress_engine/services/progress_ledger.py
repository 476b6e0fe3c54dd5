"""Read-side aggregation of ProgressRecords per course.

Nothing here writes.  A content item without a ProgressRecord is simply
"not started".  Because it only reads, the summary can be recomputed at
any time, e.g. after a best-effort progress write failed and was replayed.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from uuid import UUID

from progress_engine.models.content import ContentItem, ContentType
from progress_engine.models.progress import ProgressRecord
from progress_engine.repos.catalog_repo import CatalogRepo
from progress_engine.repos.progress_repo import ProgressRepo
from progress_engine.services.scoring import percent


@dataclass(frozen=True, slots=True)
class ContentStatus:
    content_id: UUID
    content_type: ContentType
    is_completed: bool
    # Only quiz/assignment entries carry a verdict and score.
    is_passed: bool | None = None
    score: int | None = None
    # Only video entries carry a playback position.
    position_percent: int | None = None


@dataclass(frozen=True, slots=True)
class CourseProgress:
    course_id: UUID
    learner_id: UUID
    completed_count: int
    total_count: int
    progress_percent: int
    per_content_status: tuple[ContentStatus, ...]


class ProgressLedger:
    def __init__(self, catalog: CatalogRepo, progress: ProgressRepo) -> None:
        self._catalog = catalog
        self._progress = progress

    async def get_course_progress(self, course_id: UUID, learner_id: UUID) -> CourseProgress:
        items = await self._catalog.list_course_content(course_id)
        records = await self._records(learner_id, items)

        statuses = tuple(_status(item, records.get(item.id)) for item in items)
        completed = sum(1 for s in statuses if s.is_completed)
        return CourseProgress(
            course_id=course_id,
            learner_id=learner_id,
            completed_count=completed,
            total_count=len(items),
            progress_percent=percent(completed, len(items)),
            per_content_status=statuses,
        )

    async def completion_map(
        self, content_ids: Iterable[UUID], learner_id: UUID
    ) -> dict[UUID, bool]:
        """content_id -> is_completed, in one gateway query."""
        ids = list(content_ids)
        records = await self._progress.list_for_learner(learner_id, ids)
        done = {r.content_id for r in records if r.is_completed}
        return {cid: cid in done for cid in ids}

    async def _records(
        self, learner_id: UUID, items: list[ContentItem]
    ) -> dict[UUID, ProgressRecord]:
        records = await self._progress.list_for_learner(learner_id, [i.id for i in items])
        return {r.content_id: r for r in records}


def _status(item: ContentItem, record: ProgressRecord | None) -> ContentStatus:
    if record is None:
        return ContentStatus(
            content_id=item.id,
            content_type=item.content_type,
            is_completed=False,
            position_percent=0 if item.content_type == "video" else None,
        )
    if item.is_assessed:
        return ContentStatus(
            content_id=item.id,
            content_type=item.content_type,
            is_completed=record.is_completed,
            is_passed=record.is_passed,
            score=record.score,
        )
    return ContentStatus(
        content_id=item.id,
        content_type=item.content_type,
        is_completed=record.is_completed,
        position_percent=record.position_percent if item.content_type == "video" else None,
    )
