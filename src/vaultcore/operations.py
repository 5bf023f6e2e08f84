"""Shared plumbing for operations that mutate the store.

Provides the transaction runner (commit retried on storage failures) and
the guard helpers every operation uses to turn resolver answers and missing
records into typed errors.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional, TypeVar

from tenacity import Retrying, before_sleep_log, retry_if_exception_type, stop_after_attempt, wait_exponential

from .audit import AuditLog
from .config import VaultCoreConfig
from .exceptions import InvariantViolationError, NotFoundError, PermissionDeniedError, StorageError
from .logging import get_vault_logger
from .models import Membership, ResourceRef, User, Vault, membership_id
from .permissions.access import Resource, locate, resolve
from .permissions.constants import Action, Role
from .store.base import EntityStore, StoreTransaction, StoreView

logger = logging.getLogger(__name__)

T = TypeVar("T")


def run_in_transaction(
    store: EntityStore,
    work: Callable[[StoreTransaction], T],
    *,
    attempts: int = 3,
) -> T:
    """Run ``work`` in a fresh transaction, retrying on StorageError.

    Every attempt starts from committed state, so a failed commit is either
    retried to completion or leaves the store untouched. ConflictError and
    domain errors propagate immediately.
    """
    retrying = Retrying(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=0.05, max=1),
        retry=retry_if_exception_type(StorageError),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    for attempt in retrying:
        with attempt:
            with store.transaction() as txn:
                result = work(txn)
    return result


class Operations:
    """Base for registries and hierarchy operations sharing one store."""

    def __init__(
        self,
        store: EntityStore,
        config: Optional[VaultCoreConfig] = None,
        audit: Optional[AuditLog] = None,
    ) -> None:
        self.store = store
        self.config = config or VaultCoreConfig()
        self.audit = audit or AuditLog(
            enabled=self.config.audit_enabled,
            dedupe_window_seconds=self.config.audit_dedupe_window_seconds,
        )

    def _transact(self, work: Callable[[StoreTransaction], T]) -> T:
        return run_in_transaction(self.store, work, attempts=self.config.commit_retry_attempts)

    def _resolve(self, view: StoreView, user_id: str, resource: ResourceRef, action: Action) -> bool:
        return resolve(
            view,
            user_id,
            resource,
            action,
            collection_create_grants=self.config.collection_create_grants,
        )

    def _require(
        self,
        view: StoreView,
        user_id: str,
        resource: ResourceRef,
        action: Action,
    ) -> tuple[Vault, Resource]:
        """Load a resource and check the caller may act on it."""
        located = locate(view, resource)
        if located is None:
            raise NotFoundError(f"{resource.kind.value} not found", resource=str(resource))
        if not self._resolve(view, user_id, resource, action):
            get_vault_logger(__name__, actor_id=user_id, vault_id=located[0].id).info(
                "Denied %s on %s", action.value, resource
            )
            raise PermissionDeniedError(
                f"{action.value} not allowed on {resource.kind.value}",
                resource=str(resource),
                action=action.value,
                user_id=user_id,
            )
        return located

    @staticmethod
    def _require_vault(view: StoreView, vault_id: str) -> Vault:
        vault = view.get(Vault, vault_id)
        if vault is None:
            raise NotFoundError("vault not found", vault_id=vault_id)
        return vault

    def _require_owner(self, view: StoreView, vault_id: str, actor_id: str) -> Vault:
        """Owner-only operations re-check ownership themselves."""
        vault = self._require_vault(view, vault_id)
        if vault.owner_id != actor_id:
            get_vault_logger(__name__, actor_id=actor_id, vault_id=vault_id).info("Denied owner-only operation")
            raise PermissionDeniedError("only the vault owner may do this", vault_id=vault_id, user_id=actor_id)
        return vault

    @staticmethod
    def _require_user(view: StoreView, user_id: str) -> User:
        user = view.get(User, user_id)
        if user is None:
            raise NotFoundError("user not found", user_id=user_id)
        return user

    @staticmethod
    def _require_owner_membership(view: StoreView, vault: Vault) -> Membership:
        """The vault's OWNER membership; its absence is a defect, not a user error."""
        membership = view.get(Membership, membership_id(vault.id, vault.owner_id))
        if membership is None or membership.role != Role.OWNER or not membership.is_active:
            logger.error(
                "Invariant violation: vault %s has no active OWNER membership for %s",
                vault.id,
                vault.owner_id,
            )
            raise InvariantViolationError("vault has no owner membership on record", vault_id=vault.id)
        return membership


__all__ = [
    "Operations",
    "run_in_transaction",
]
