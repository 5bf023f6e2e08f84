"""In-process entity store.

Writers are serialized by a re-entrant lock and commit by swapping in a new
snapshot, so committed reads never wait on an open transaction and never see
a half-applied commit. Records are copied on the way in and out so callers
never hold references into the store.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Any, Iterator, Optional

from ..models import Record
from .base import EntityStore, R, StoreTransaction, matches

logger = logging.getLogger(__name__)

_Key = tuple[str, str]


class _MemoryTransaction(StoreTransaction):
    def __init__(self, store: InMemoryEntityStore) -> None:
        self._store = store
        self._staged: dict[_Key, Optional[Record]] = {}

    def get(self, cls: type[R], record_id: str) -> R | None:
        key = (cls.KIND, record_id)
        if key in self._staged:
            staged = self._staged[key]
            return staged.model_copy(deep=True) if staged is not None else None  # type: ignore[return-value]
        return self._store.get(cls, record_id)

    def find(self, cls: type[R], **criteria: Any) -> list[R]:
        results: dict[str, R] = {r.id: r for r in self._store.find(cls, **criteria)}
        for (kind, record_id), staged in self._staged.items():
            if kind != cls.KIND:
                continue
            if staged is None or not matches(staged, criteria):
                results.pop(record_id, None)
            else:
                results[record_id] = staged.model_copy(deep=True)  # type: ignore[assignment]
        return list(results.values())

    def put(self, record: Record) -> None:
        self._staged[(record.KIND, record.id)] = record.model_copy(deep=True)

    def delete(self, cls: type[Record], record_id: str) -> None:
        self._staged[(cls.KIND, record_id)] = None

    @property
    def staged(self) -> dict[_Key, Optional[Record]]:
        return self._staged


class InMemoryEntityStore(EntityStore):
    """Dict-backed store for tests and single-process use."""

    def __init__(self) -> None:
        # published snapshot; replaced on commit, never mutated in place
        self._records: dict[str, dict[str, Record]] = {}
        self._lock = threading.RLock()

    def get(self, cls: type[R], record_id: str) -> R | None:
        record = self._records.get(cls.KIND, {}).get(record_id)
        return record.model_copy(deep=True) if record is not None else None  # type: ignore[return-value]

    def find(self, cls: type[R], **criteria: Any) -> list[R]:
        return [
            r.model_copy(deep=True)  # type: ignore[misc]
            for r in self._records.get(cls.KIND, {}).values()
            if matches(r, criteria)
        ]

    @contextmanager
    def transaction(self) -> Iterator[StoreTransaction]:
        with self._lock:
            txn = _MemoryTransaction(self)
            yield txn
            if txn.staged:
                self._commit(txn.staged)

    def _commit(self, staged: dict[_Key, Optional[Record]]) -> None:
        records = dict(self._records)
        for kind in {kind for kind, _ in staged}:
            records[kind] = dict(records.get(kind, {}))
        for (kind, record_id), record in staged.items():
            if record is None:
                records[kind].pop(record_id, None)
            else:
                records[kind][record_id] = record
        self._records = records
        logger.debug("Committed %d staged writes", len(staged))

    def count(self, cls: type[Record]) -> int:
        return len(self._records.get(cls.KIND, {}))


__all__ = ["InMemoryEntityStore"]
