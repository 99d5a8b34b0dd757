"""Box store contract shared by the file and SQL backends."""

from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any

from sosbox.schemas.box import Box, BoxUpdate, UpsertResult


class StorageError(Exception):
    """Raised when the underlying file or database operation fails."""


class BoxStore(ABC):
    """Persistence of canonical box records keyed by id / device id.

    Updates are merged field by field: fields set on a ``BoxUpdate``
    overwrite stored values, everything else is kept. Each record in a
    batch is written on its own; there is no locking, so concurrent writers
    to the same box resolve as last-writer-wins.
    """

    backend: str = "base"

    def __init__(self) -> None:
        self._initialized = False

    async def initialize(self) -> None:
        """Prepare the backing storage once; later calls are no-ops."""
        if self._initialized:
            return
        await self._setup()
        self._initialized = True

    @abstractmethod
    async def _setup(self) -> None:
        """Backend-specific one-time setup."""

    async def close(self) -> None:
        """Release resources held by the store."""

    @abstractmethod
    async def get_all(self) -> list[Box]:
        """Return every stored box in the backend's default display order."""

    @abstractmethod
    async def upsert_many(self, updates: Sequence[BoxUpdate]) -> UpsertResult:
        """Insert or merge each update; returns how many were applied and the new total."""

    @abstractmethod
    async def delete_one(self, box_id: str) -> int:
        """Delete at most one box; returns 1 if something was removed, else 0."""

    @abstractmethod
    async def delete_all(self) -> None:
        """Remove every box."""

    @abstractmethod
    async def get_wifi_count(self, box_id: str) -> int:
        """Return the auxiliary wifi counter of a box, 0 when unknown."""

    @abstractmethod
    async def set_wifi_count(self, box_id: str, value: Any) -> int:
        """Store the wifi counter of an existing box and return the stored value."""
