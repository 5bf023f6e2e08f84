"""Audit trail for vault mutations.

Events are written inside the same transaction as the change they
describe. Each event carries a fingerprint of ``(type, vault, actor,
payload)``; when the vault's most recent event has the same fingerprint and
is younger than the dedupe window, the new one is dropped, so re-delivered
operations do not duplicate history.
"""

from __future__ import annotations

import hashlib
import json
import logging
from datetime import datetime, timedelta
from typing import Any, Optional

from .models import AuditEvent, AuditEventType, utcnow
from .store.base import EntityStore, StoreTransaction, StoreView

logger = logging.getLogger(__name__)

MAX_STRING = 180


def _normalize(value: Any) -> Any:
    """Bound payload size: truncate long strings, summarize long lists."""
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, str):
        return value if len(value) <= MAX_STRING else value[:MAX_STRING] + "…"
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): _normalize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        items = sorted(value, key=str) if isinstance(value, (set, frozenset)) else list(value)
        if len(items) > 50:
            return {"__type": "array", "length": len(items)}
        return [_normalize(v) for v in items]
    return _normalize(str(value))


def fingerprint(event_type: AuditEventType, vault_id: str, actor_id: Optional[str], payload: dict[str, Any]) -> str:
    raw = json.dumps(
        [event_type.value, vault_id, actor_id or "", payload],
        sort_keys=True,
        default=str,
        ensure_ascii=False,
    )
    return hashlib.blake2b(raw.encode("utf-8"), digest_size=8).hexdigest()


class AuditLog:
    """Writes, lists and prunes audit events."""

    def __init__(self, enabled: bool = True, dedupe_window_seconds: float = 5.0) -> None:
        self.enabled = enabled
        self.dedupe_window = timedelta(seconds=dedupe_window_seconds)

    def record(
        self,
        txn: StoreTransaction,
        vault_id: str,
        event_type: AuditEventType,
        actor_id: Optional[str],
        /,
        **payload: Any,
    ) -> AuditEvent | None:
        """Stage an event; returns None when disabled or de-duplicated."""
        if not self.enabled:
            return None

        body = _normalize(payload)
        fp = fingerprint(event_type, vault_id, actor_id, body)
        now = utcnow()

        last = self.latest(txn, vault_id)
        if last is not None and last.fingerprint == fp and now - last.created_at <= self.dedupe_window:
            logger.debug("Skipping duplicate audit event %s for vault %s", event_type.value, vault_id)
            return None

        event = AuditEvent(
            vault_id=vault_id,
            type=event_type,
            actor_id=actor_id,
            payload=body,
            fingerprint=fp,
            created_at=now,
        )
        txn.put(event)
        return event

    @staticmethod
    def latest(view: StoreView, vault_id: str) -> AuditEvent | None:
        events = view.find(AuditEvent, vault_id=vault_id)
        if not events:
            return None
        return max(events, key=lambda e: e.created_at)

    @staticmethod
    def events(view: StoreView, vault_id: str) -> list[AuditEvent]:
        """Events for a vault, oldest first."""
        return sorted(view.find(AuditEvent, vault_id=vault_id), key=lambda e: e.created_at)

    @staticmethod
    def prune(store: EntityStore, older_than: datetime) -> int:
        """Delete events created before ``older_than``; returns the count."""
        with store.transaction() as txn:
            stale = [e for e in txn.all(AuditEvent) if e.created_at < older_than]
            txn.delete_all(stale)
        if stale:
            logger.info("Pruned %d audit events older than %s", len(stale), older_than.isoformat())
        return len(stale)


__all__ = [
    "AuditLog",
    "fingerprint",
]
