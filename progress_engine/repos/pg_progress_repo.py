"""PostgreSQL implementation of ProgressRepo."""

from __future__ import annotations

from collections.abc import Iterable
from uuid import UUID

from sqlalchemy import and_, case, func, not_, or_, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from progress_engine.db.engine import translate_errors
from progress_engine.db.tables import ProgressRecordRow
from progress_engine.models.progress import ProgressRecord

_COLUMNS = (
    "is_completed",
    "score",
    "is_passed",
    "last_position",
    "watched_duration",
    "total_duration",
    "completed_at",
    "updated_at",
)


class PgProgressRepo:
    """Satisfies the ProgressRepo Protocol using PostgreSQL via SQLAlchemy.

    Each call runs in its own transaction.
    """

    def __init__(self, sessions: async_sessionmaker[AsyncSession]) -> None:
        self._sessions = sessions

    async def get(self, learner_id: UUID, content_id: UUID) -> ProgressRecord | None:
        stmt = select(ProgressRecordRow).where(
            ProgressRecordRow.learner_id == learner_id,
            ProgressRecordRow.content_id == content_id,
        )
        with translate_errors("progress.get"):
            async with self._sessions() as session:
                row = (await session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_record(row)

    async def upsert(self, record: ProgressRecord) -> ProgressRecord:
        # Same merge as ProgressRecord.absorb, evaluated against the locked
        # row so a write derived from a stale read can't undo newer state.
        values = {
            "learner_id": record.learner_id,
            "content_id": record.content_id,
            **{col: getattr(record, col) for col in _COLUMNS},
        }
        stmt = insert(ProgressRecordRow).values(**values)
        stored, new = ProgressRecordRow.__table__.c, stmt.excluded
        keep_result = or_(
            new.score.is_(None),
            and_(
                stored.is_passed.is_(True),
                not_(
                    and_(
                        new.is_passed.is_(True),
                        new.score > func.coalesce(stored.score, 0),
                    )
                ),
            ),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[ProgressRecordRow.learner_id, ProgressRecordRow.content_id],
            set_={
                "is_completed": or_(stored.is_completed, new.is_completed),
                "completed_at": func.coalesce(stored.completed_at, new.completed_at),
                "score": case((keep_result, stored.score), else_=new.score),
                "is_passed": case((keep_result, stored.is_passed), else_=new.is_passed),
                "last_position": new.last_position,
                "watched_duration": func.greatest(
                    stored.watched_duration, new.watched_duration
                ),
                "total_duration": case(
                    (new.total_duration > 0, new.total_duration),
                    else_=stored.total_duration,
                ),
                "updated_at": new.updated_at,
            },
        ).returning(ProgressRecordRow)
        with translate_errors("progress.upsert"):
            async with self._sessions.begin() as session:
                row = (await session.execute(stmt)).scalar_one()
                merged = _row_to_record(row)
        return merged

    async def list_for_learner(
        self, learner_id: UUID, content_ids: Iterable[UUID]
    ) -> list[ProgressRecord]:
        ids = list(content_ids)
        if not ids:
            return []
        stmt = select(ProgressRecordRow).where(
            ProgressRecordRow.learner_id == learner_id,
            ProgressRecordRow.content_id.in_(ids),
        )
        with translate_errors("progress.list_for_learner"):
            async with self._sessions() as session:
                rows = (await session.execute(stmt)).scalars().all()
        return [_row_to_record(r) for r in rows]


def _row_to_record(row: ProgressRecordRow) -> ProgressRecord:
    return ProgressRecord(
        learner_id=row.learner_id,
        content_id=row.content_id,
        is_completed=row.is_completed,
        score=row.score,
        is_passed=row.is_passed,
        last_position=row.last_position,
        watched_duration=row.watched_duration,
        total_duration=row.total_duration,
        completed_at=row.completed_at,
        updated_at=row.updated_at,
    )
