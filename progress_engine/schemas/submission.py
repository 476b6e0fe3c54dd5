from __future__ import annotations

from pydantic import BaseModel, Field

from progress_engine.models.assignment import FileRef


class FileRefIn(BaseModel):
    name: str = Field(min_length=1)
    size: int = Field(ge=0)
    storage_ref: str = Field(min_length=1)

    def to_domain(self) -> FileRef:
        return FileRef(name=self.name, size=self.size, storage_ref=self.storage_ref)


class DraftContent(BaseModel):
    """What the learner's editor sends when saving an assignment draft."""

    text: str = ""
    file_refs: list[FileRefIn] = Field(default_factory=list)

    def files(self) -> tuple[FileRef, ...]:
        return tuple(f.to_domain() for f in self.file_refs)
