from __future__ import annotations

import hashlib
import uuid
from typing import Protocol, runtime_checkable

from progress_engine.core.errors import StorageError


@runtime_checkable
class BlobStore(Protocol):
    async def upload(self, name: str, data: bytes, *, owner: str) -> str:
        """Store the bytes tagged with ``owner`` and return an opaque storage reference."""
        ...

    async def get_owner(self, storage_ref: str) -> str | None:
        """The owner tag given at upload, or None for an unknown reference."""
        ...

    async def get_download_url(self, storage_ref: str) -> str: ...

    async def delete(self, storage_ref: str) -> None: ...


class InMemoryBlobStore:
    """In-memory blob store for tests and local runs; no object storage needed."""

    def __init__(self, base_url: str = "memory://blobs") -> None:
        self._base_url = base_url.rstrip("/")
        self._blobs: dict[str, bytes] = {}
        self._owners: dict[str, str] = {}

    async def upload(self, name: str, data: bytes, *, owner: str) -> str:
        digest = hashlib.sha256(data).hexdigest()[:12]
        storage_ref = f"{uuid.uuid4()}-{digest}/{name}"
        self._blobs[storage_ref] = data
        self._owners[storage_ref] = owner
        return storage_ref

    async def get_owner(self, storage_ref: str) -> str | None:
        return self._owners.get(storage_ref)

    async def get_download_url(self, storage_ref: str) -> str:
        if storage_ref not in self._blobs:
            raise StorageError(f"blob {storage_ref} not found")
        return f"{self._base_url}/{storage_ref}"

    async def delete(self, storage_ref: str) -> None:
        self._blobs.pop(storage_ref, None)
        self._owners.pop(storage_ref, None)
