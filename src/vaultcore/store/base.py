"""Entity store interfaces.

A store holds records keyed by ``(KIND, id)`` and answers two questions:
lookup by id and lookup by an indexed parent field. All writes go through
a transaction that stages puts/deletes and applies them all-or-nothing.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from typing import Any, TypeVar

from ..models import Record

R = TypeVar("R", bound=Record)


def matches(record: Record, criteria: dict[str, Any]) -> bool:
    return all(getattr(record, field) == value for field, value in criteria.items())


class StoreView(ABC):
    """Read access to records (committed state, or a transaction's view of it)."""

    @abstractmethod
    def get(self, cls: type[R], record_id: str) -> R | None:
        """Return the record or None."""

    @abstractmethod
    def find(self, cls: type[R], **criteria: Any) -> list[R]:
        """Return records whose fields equal ``criteria`` (use indexed fields)."""

    def all(self, cls: type[R]) -> list[R]:
        return self.find(cls)

    def exists(self, cls: type[Record], record_id: str) -> bool:
        return self.get(cls, record_id) is not None


class StoreTransaction(StoreView):
    """Staged write batch; reads see the transaction's own writes."""

    @abstractmethod
    def put(self, record: Record) -> None:
        """Stage an insert or replace."""

    @abstractmethod
    def delete(self, cls: type[Record], record_id: str) -> None:
        """Stage a delete; deleting a missing record is a no-op."""

    def delete_all(self, records: list[Record]) -> int:
        for record in records:
            self.delete(type(record), record.id)
        return len(records)


class EntityStore(StoreView):
    """Source of truth for vaults, collections, assets and permission records."""

    @abstractmethod
    def transaction(self) -> AbstractContextManager[StoreTransaction]:
        """Open a transaction; commits on clean exit, discards on exception.

        Raises:
            ConflictError: a concurrent writer changed something this
                transaction read (optimistic backends).
            StorageError: the backend failed; nothing was applied.
        """

    def close(self) -> None:
        """Release backend resources."""


__all__ = [
    "EntityStore",
    "StoreTransaction",
    "StoreView",
    "matches",
]
