"""Redis-backed entity store.

Layout (``prefix`` defaults to ``vaultcore``)::

    {prefix}:{kind}:{id}                    JSON record
    {prefix}:idx:{kind}:{field}:{value}     set of ids (parent lookups)
    {prefix}:all:{kind}                     set of all ids of a kind

Transactions use optimistic concurrency: every key a transaction reads is
WATCHed, and the staged writes are sent as a single MULTI/EXEC. If another
client touched a watched key in between, EXEC aborts and the transaction
raises ConflictError with nothing applied.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterator, Optional

import redis

from ..exceptions import ConflictError, StorageError
from ..models import Record
from .base import EntityStore, R, StoreTransaction, matches

logger = logging.getLogger(__name__)

_Key = tuple[str, str]


class _Keys:
    def __init__(self, prefix: str) -> None:
        self.prefix = prefix

    def record(self, kind: str, record_id: str) -> str:
        return f"{self.prefix}:{kind}:{record_id}"

    def index(self, kind: str, field: str, value: Any) -> str:
        return f"{self.prefix}:idx:{kind}:{field}:{value}"

    def all(self, kind: str) -> str:
        return f"{self.prefix}:all:{kind}"


def _lookup_key(keys: _Keys, cls: type[Record], criteria: dict[str, Any]) -> str:
    for field in cls.INDEXES:
        if field in criteria:
            return keys.index(cls.KIND, field, criteria[field])
    return keys.all(cls.KIND)


class _RedisTransaction(StoreTransaction):
    """Reads run immediately on a WATCHing pipeline; writes are staged."""

    def __init__(self, store: RedisEntityStore, pipe: Any) -> None:
        self._store = store
        self._keys = store.keys
        self._pipe = pipe
        self._staged: dict[_Key, tuple[type[Record], Optional[Record]]] = {}
        self._previous: dict[_Key, Optional[Record]] = {}

    def _load(self, cls: type[R], record_id: str) -> R | None:
        key = self._keys.record(cls.KIND, record_id)
        self._pipe.watch(key)
        raw = self._pipe.get(key)
        record = cls.model_validate_json(raw) if raw else None
        self._previous.setdefault((cls.KIND, record_id), record)
        return record

    def get(self, cls: type[R], record_id: str) -> R | None:
        staged = self._staged.get((cls.KIND, record_id))
        if staged is not None:
            record = staged[1]
            return record.model_copy(deep=True) if record is not None else None  # type: ignore[return-value]
        return self._load(cls, record_id)

    def find(self, cls: type[R], **criteria: Any) -> list[R]:
        lookup = _lookup_key(self._keys, cls, criteria)
        self._pipe.watch(lookup)
        ids = set(self._pipe.smembers(lookup))

        results: dict[str, R] = {}
        for record_id in ids:
            record = self.get(cls, record_id)
            if record is not None and matches(record, criteria):
                results[record_id] = record
        for (kind, record_id), (_, staged) in self._staged.items():
            if kind != cls.KIND:
                continue
            if staged is None or not matches(staged, criteria):
                results.pop(record_id, None)
            else:
                results[record_id] = staged.model_copy(deep=True)  # type: ignore[assignment]
        return list(results.values())

    def _remember_previous(self, cls: type[Record], record_id: str) -> None:
        if (cls.KIND, record_id) not in self._previous:
            self._load(cls, record_id)

    def put(self, record: Record) -> None:
        self._remember_previous(type(record), record.id)
        self._staged[(record.KIND, record.id)] = (type(record), record.model_copy(deep=True))

    def delete(self, cls: type[Record], record_id: str) -> None:
        self._remember_previous(cls, record_id)
        self._staged[(cls.KIND, record_id)] = (cls, None)

    def commit(self) -> None:
        if not self._staged:
            return
        pipe = self._pipe
        pipe.multi()
        for (kind, record_id), (cls, record) in self._staged.items():
            previous = self._previous.get((kind, record_id))
            key = self._keys.record(kind, record_id)
            for field in cls.INDEXES:
                old_value = getattr(previous, field) if previous is not None else None
                new_value = getattr(record, field) if record is not None else None
                if old_value is not None and old_value != new_value:
                    pipe.srem(self._keys.index(kind, field, old_value), record_id)
                if new_value is not None:
                    pipe.sadd(self._keys.index(kind, field, new_value), record_id)
            if record is None:
                pipe.delete(key)
                pipe.srem(self._keys.all(kind), record_id)
            else:
                pipe.set(key, record.model_dump_json())
                pipe.sadd(self._keys.all(kind), record_id)
        pipe.execute()
        logger.debug("Committed %d staged writes", len(self._staged))


class RedisEntityStore(EntityStore):
    """Entity store on a shared Redis, safe for many concurrent writers."""

    def __init__(self, client: Any, prefix: str = "vaultcore") -> None:
        self._client = client
        self.keys = _Keys(prefix)

    @classmethod
    def from_url(cls, url: str, prefix: str = "vaultcore") -> RedisEntityStore:
        return cls(redis.from_url(url, decode_responses=True), prefix=prefix)

    def get(self, cls: type[R], record_id: str) -> R | None:
        try:
            raw = self._client.get(self.keys.record(cls.KIND, record_id))
        except redis.RedisError as e:
            raise StorageError(f"Read failed: {e}", kind=cls.KIND, record_id=record_id) from e
        return cls.model_validate_json(raw) if raw else None

    def find(self, cls: type[R], **criteria: Any) -> list[R]:
        try:
            ids = sorted(self._client.smembers(_lookup_key(self.keys, cls, criteria)))
            if not ids:
                return []
            raws = self._client.mget([self.keys.record(cls.KIND, i) for i in ids])
        except redis.RedisError as e:
            raise StorageError(f"Lookup failed: {e}", kind=cls.KIND) from e
        records = [cls.model_validate_json(raw) for raw in raws if raw]
        return [r for r in records if matches(r, criteria)]

    @contextmanager
    def transaction(self) -> Iterator[StoreTransaction]:
        pipe = self._client.pipeline(transaction=True)
        txn = _RedisTransaction(self, pipe)
        try:
            yield txn
            txn.commit()
        except redis.WatchError as e:
            raise ConflictError("Records changed during transaction; retry on fresh state") from e
        except redis.RedisError as e:
            raise StorageError(f"Transaction failed: {e}") from e
        finally:
            pipe.reset()

    def close(self) -> None:
        self._client.close()


__all__ = ["RedisEntityStore"]
