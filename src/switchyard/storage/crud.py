from __future__ import annotations

"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

This module provides a generic CRUD capability wired per entity type.

`Crud` is composed into repositories rather than inherited from: each
repository holds one `Crud[Entity]` built with the entity's table name and
its encode/decode functions, then adds its own query methods on top.
"""

from dataclasses import dataclass
from typing import Any, Callable, Generic, Mapping, Sequence, TypeVar

from ..errors import NotFoundError
from .models import JsonObject, JsonPrimitive
from .records.base import RecordStore

EntityT = TypeVar("EntityT")


@dataclass(frozen=True, slots=True)
class Crud(Generic[EntityT]):
    """
    Typed create/read/update/delete over one record-store table.

    Attributes:
        store: Record backend shared by every repository.
        table: Logical table name for this entity.
        encode: Converts an entity into its JSON document.
        decode: Rebuilds an entity from its JSON document.
        id_of: Extracts the record id from an entity.
        not_found: Optional factory for the error raised by `require`.
    """

    store: RecordStore
    table: str
    encode: Callable[[EntityT], JsonObject]
    decode: Callable[[JsonObject], EntityT]
    id_of: Callable[[EntityT], str]
    not_found: Callable[[str], Exception] | None = None

    async def create(self, entity: EntityT) -> EntityT:
        data = await self.store.create(self.table, self.id_of(entity), self.encode(entity))
        return self.decode(data)

    async def get(self, record_id: str) -> EntityT | None:
        data = await self.store.get(self.table, record_id)
        return None if data is None else self.decode(data)

    async def require(self, record_id: str) -> EntityT:
        """Return one entity or raise the configured not-found error."""
        entity = await self.get(record_id)
        if entity is None:
            if self.not_found is not None:
                raise self.not_found(record_id)
            raise NotFoundError(f"{self.table} '{record_id}' not found")
        return entity

    async def update(self, record_id: str, partial: Mapping[str, Any]) -> EntityT | None:
        data = await self.store.update(self.table, record_id, partial)
        return None if data is None else self.decode(data)

    async def delete(self, record_id: str) -> bool:
        return await self.store.delete(self.table, record_id)

    async def find(
        self,
        where: Mapping[str, JsonPrimitive] | None = None,
        *,
        limit: int = 100,
        offset: int = 0,
        newest_first: bool = True,
    ) -> list[EntityT]:
        rows = await self.store.list(
            self.table,
            where=where,
            limit=limit,
            offset=offset,
            newest_first=newest_first,
        )
        return [self.decode(row) for row in rows]

    async def bulk_update(
        self, updates: Sequence[tuple[str, Mapping[str, Any]]]
    ) -> int:
        return await self.store.bulk_update(self.table, updates)
