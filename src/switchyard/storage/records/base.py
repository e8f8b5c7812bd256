from __future__ import annotations

"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

This module defines the abstract relational record store contract.

Records are JSON documents addressed by `(table, id)`. Each backend keeps
`created_at`/`updated_at` bookkeeping columns and supports transactional
create/update plus an atomic multi-row `bulk_update`.
"""

from abc import ABC, abstractmethod
from typing import Any, Mapping, Sequence

from ...errors import BadRequestError
from ..models import JsonObject, JsonPrimitive

RecordUpdate = tuple[str, Mapping[str, Any]]


class RecordAlreadyExistsError(BadRequestError):
    """Raised when creating a record whose id is already taken."""


class RecordStore(ABC):
    """Base contract for relational record backends."""

    def __init__(self) -> None:
        self._is_setup = False

    async def setup(self) -> None:
        """Initialize backend resources."""
        self._is_setup = True

    async def close(self) -> None:
        """Release backend resources."""
        self._is_setup = False

    async def __aenter__(self) -> "RecordStore":
        await self.setup()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _ensure_setup(self) -> None:
        if not self._is_setup:
            raise RuntimeError(
                "RecordStore is not initialized. Call setup() or use `async with`."
            )

    @abstractmethod
    async def create(self, table: str, record_id: str, data: JsonObject) -> JsonObject:
        """Insert one record. Raises `RecordAlreadyExistsError` on id conflict."""

    @abstractmethod
    async def get(self, table: str, record_id: str) -> JsonObject | None:
        """Return one record, or `None` when missing."""

    @abstractmethod
    async def update(
        self, table: str, record_id: str, partial: Mapping[str, Any]
    ) -> JsonObject | None:
        """Merge `partial` into one record. Returns the merged record or `None`."""

    @abstractmethod
    async def delete(self, table: str, record_id: str) -> bool:
        """Delete one record. Returns `True` when a row was removed."""

    @abstractmethod
    async def list(
        self,
        table: str,
        *,
        where: Mapping[str, JsonPrimitive] | None = None,
        limit: int = 100,
        offset: int = 0,
        newest_first: bool = True,
    ) -> list[JsonObject]:
        """List records whose top-level fields equal every `where` value."""

    @abstractmethod
    async def bulk_update(self, table: str, updates: Sequence[RecordUpdate]) -> int:
        """
        Merge partial data into many records in one atomic operation.

        Entries apply in order; a repeated id receives each of its patches
        in sequence, so later keys win.

        Returns:
            Number of entries whose id matched an existing record. Each entry
            counts, repeated ids included; ids that no longer exist do not.
        """
