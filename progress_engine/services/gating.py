"""Sequential content gating.

Item 0 is always open.  Item i opens once every item before it is
completed, so one incomplete item locks everything after it, whatever
the later items' own state.  Flags are recomputed from ProgressRecords
on every call; nothing is cached.
"""

from __future__ import annotations

from collections.abc import Sequence
from uuid import UUID

from progress_engine.models.content import ContentItem
from progress_engine.services.progress_ledger import ProgressLedger


class ContentGating:
    def __init__(self, ledger: ProgressLedger) -> None:
        self._ledger = ledger

    async def is_unlocked(
        self, content_list: Sequence[ContentItem], index: int, learner_id: UUID
    ) -> bool:
        if not 0 <= index < len(content_list):
            raise IndexError(f"content index {index} out of range")
        if index == 0:
            return True
        completed = await self._ledger.completion_map(
            (c.id for c in content_list[:index]), learner_id
        )
        return all(completed.values())

    async def unlocked_flags(
        self, content_list: Sequence[ContentItem], learner_id: UUID
    ) -> list[bool]:
        completed = await self._ledger.completion_map((c.id for c in content_list), learner_id)
        flags: list[bool] = []
        open_so_far = True
        for item in content_list:
            flags.append(open_so_far)
            open_so_far = open_so_far and completed[item.id]
        return flags
