"""Membership and grant registries.

Memberships give a delegate vault-wide permissions; grants refine access to
one collection or asset. Only the vault owner writes either, and every
write re-checks that itself. A grant never outlives the membership it
depends on: revoking a membership removes the user's grants in that vault.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, Optional, Union

from .exceptions import NotFoundError, PreconditionFailedError
from .logging import get_vault_logger
from .models import (
    Asset,
    AuditEventType,
    Collection,
    Membership,
    PermissionGrant,
    Vault,
    grant_id,
    membership_id,
    utcnow,
)
from .operations import Operations
from .permissions.access import active_membership
from .permissions.constants import GRANTABLE_SCOPE_ACTIONS, Action, MembershipStatus, Role, ScopeType
from .permissions.presets import PermissionSet
from .store.base import StoreTransaction, StoreView

logger = logging.getLogger(__name__)

PermissionsInput = Union[PermissionSet, Mapping[str, Any], Iterable[Union[Action, str]], None]


def grants_for_scopes(view: StoreView, scopes: Iterable[tuple[ScopeType, str]]) -> list[PermissionGrant]:
    """Every grant targeting any of the given ``(scope_type, scope_id)`` pairs."""
    found: list[PermissionGrant] = []
    for scope_type, scope_id in scopes:
        found.extend(g for g in view.find(PermissionGrant, scope_id=scope_id) if g.scope_type == scope_type)
    return found


def rehome_grants(
    txn: StoreTransaction,
    grants: list[PermissionGrant],
    destination_vault_id: str,
) -> tuple[list[PermissionGrant], list[PermissionGrant]]:
    """Move grants to a new vault, dropping those whose user is not a member there.

    Grants are keyed by vault id, so survivors are re-keyed rather than
    edited in place.

    Returns:
        ``(kept, pruned)`` — kept grants as re-keyed, pruned as they were.
    """
    kept: list[PermissionGrant] = []
    pruned: list[PermissionGrant] = []
    for grant in grants:
        if grant.vault_id == destination_vault_id:
            kept.append(grant)
            continue
        txn.delete(PermissionGrant, grant.id)
        if active_membership(txn, destination_vault_id, grant.user_id) is None:
            pruned.append(grant)
            continue
        moved = grant.model_copy(
            update={
                "vault_id": destination_vault_id,
                "id": grant_id(destination_vault_id, grant.scope_type, grant.scope_id, grant.user_id),
                "updated_at": utcnow(),
            }
        )
        txn.put(moved)
        kept.append(moved)
    return kept, pruned


class MembershipRegistry(Operations):
    """Vault-wide delegate memberships and ownership transfer."""

    def upsert(
        self,
        vault_id: str,
        actor_id: str,
        user_id: str,
        permissions: PermissionsInput = None,
    ) -> Membership:
        """Create, update or re-activate a DELEGATE membership.

        Repeating the same call only moves ``updated_at``.

        Raises:
            NotFoundError: vault or user unknown.
            PermissionDeniedError: actor is not the owner.
            PreconditionFailedError: target user is the owner.
        """
        perms = PermissionSet.coerce(permissions)

        def work(txn: StoreTransaction) -> Membership:
            vault = self._require_owner(txn, vault_id, actor_id)
            self._require_user(txn, user_id)
            if user_id == vault.owner_id:
                raise PreconditionFailedError(
                    "the owner's membership changes only through ownership transfer",
                    vault_id=vault_id,
                    user_id=user_id,
                )

            now = utcnow()
            existing = txn.get(Membership, membership_id(vault_id, user_id))
            if existing is None:
                membership = Membership(vault_id=vault_id, user_id=user_id, permissions=perms)
            else:
                membership = existing.model_copy(
                    update={
                        "role": Role.DELEGATE,
                        "status": MembershipStatus.ACTIVE,
                        "permissions": perms,
                        "updated_at": now,
                        "revoked_at": None,
                    }
                )
            txn.put(membership)
            self.audit.record(
                txn,
                vault_id,
                AuditEventType.MEMBERSHIP_UPSERTED,
                actor_id,
                user_id=user_id,
                permissions=perms.to_dict(),
            )
            return membership

        membership = self._transact(work)
        get_vault_logger(__name__, actor_id=actor_id, vault_id=vault_id).info(
            "Membership upserted for %s: %s", user_id, sorted(a.value for a in perms.actions())
        )
        return membership

    def revoke(self, vault_id: str, actor_id: str, user_id: str) -> Membership:
        """Mark a membership REVOKED and delete the user's grants in the vault.

        Revoking an already revoked membership returns it unchanged.

        Raises:
            NotFoundError: vault or membership unknown.
            PermissionDeniedError: actor is not the owner.
            PreconditionFailedError: target is the owner.
        """

        def work(txn: StoreTransaction) -> Membership:
            vault = self._require_owner(txn, vault_id, actor_id)
            if user_id == vault.owner_id:
                raise PreconditionFailedError("the owner's membership cannot be revoked", vault_id=vault_id)
            existing = txn.get(Membership, membership_id(vault_id, user_id))
            if existing is None:
                raise NotFoundError("membership not found", vault_id=vault_id, user_id=user_id)
            if not existing.is_active:
                return existing

            now = utcnow()
            revoked = existing.model_copy(
                update={"status": MembershipStatus.REVOKED, "revoked_at": now, "updated_at": now}
            )
            txn.put(revoked)
            dropped = txn.delete_all([g for g in txn.find(PermissionGrant, user_id=user_id) if g.vault_id == vault_id])
            self.audit.record(
                txn,
                vault_id,
                AuditEventType.MEMBERSHIP_REVOKED,
                actor_id,
                user_id=user_id,
                grants_removed=dropped,
            )
            return revoked

        membership = self._transact(work)
        get_vault_logger(__name__, actor_id=actor_id, vault_id=vault_id).info("Membership revoked for %s", user_id)
        return membership

    def transfer_ownership(self, vault_id: str, actor_id: str, new_owner_id: str) -> Vault:
        """Administrative ownership transfer.

        The new owner's membership becomes the single OWNER membership; the
        previous owner stays on as a DELEGATE with every permission.
        """

        def work(txn: StoreTransaction) -> Vault:
            vault = self._require_owner(txn, vault_id, actor_id)
            self._require_user(txn, new_owner_id)
            if new_owner_id == vault.owner_id:
                return vault
            previous = self._require_owner_membership(txn, vault)

            now = utcnow()
            txn.put(
                previous.model_copy(
                    update={"role": Role.DELEGATE, "permissions": PermissionSet.full(), "updated_at": now}
                )
            )
            existing = txn.get(Membership, membership_id(vault_id, new_owner_id))
            owner_membership = Membership(
                vault_id=vault_id,
                user_id=new_owner_id,
                role=Role.OWNER,
                permissions=PermissionSet.full(),
                assigned_at=existing.assigned_at if existing is not None else now,
                updated_at=now,
            )
            txn.put(owner_membership)
            txn.delete_all([g for g in txn.find(PermissionGrant, user_id=new_owner_id) if g.vault_id == vault_id])

            updated = vault.model_copy(update={"owner_id": new_owner_id, "updated_at": now})
            txn.put(updated)
            self.audit.record(
                txn,
                vault_id,
                AuditEventType.OWNERSHIP_TRANSFERRED,
                actor_id,
                previous_owner_id=vault.owner_id,
                new_owner_id=new_owner_id,
            )
            return updated

        vault = self._transact(work)
        logger.info("Vault %s ownership transferred to %s", vault_id, vault.owner_id)
        return vault

    def list(self, view: StoreView, vault_id: str, include_revoked: bool = False) -> list[Membership]:
        memberships = view.find(Membership, vault_id=vault_id)
        if not include_revoked:
            memberships = [m for m in memberships if m.is_active]
        return sorted(memberships, key=lambda m: (m.role != Role.OWNER, m.assigned_at))


class GrantRegistry(Operations):
    """Scoped grants on a single collection or asset."""

    def _scope_vault(self, view: StoreView, scope_type: ScopeType, scope_id: str) -> str:
        record: Optional[Union[Collection, Asset]]
        if scope_type is ScopeType.COLLECTION:
            record = view.get(Collection, scope_id)
        else:
            record = view.get(Asset, scope_id)
        if record is None:
            raise NotFoundError(f"{scope_type.value.lower()} not found", scope_id=scope_id)
        return record.vault_id

    def _normalize(self, scope_type: ScopeType, permissions: PermissionsInput) -> PermissionSet:
        perms = PermissionSet.coerce(permissions)
        allowed = set(GRANTABLE_SCOPE_ACTIONS)
        if scope_type is ScopeType.COLLECTION and self.config.collection_create_grants:
            allowed.add(Action.CREATE)
        dropped = perms.actions() - allowed - {Action.VIEW}
        if dropped:
            logger.debug("Dropping %s from %s grant", sorted(a.value for a in dropped), scope_type.value)
            perms = perms.without(*dropped)
        return perms

    def upsert(
        self,
        vault_id: str,
        actor_id: str,
        scope_type: ScopeType | str,
        scope_id: str,
        user_id: str,
        permissions: PermissionsInput = None,
    ) -> PermissionGrant:
        """Create or replace a grant for ``user_id`` on one collection or asset.

        Raises:
            NotFoundError: vault, scope or user unknown.
            PermissionDeniedError: actor is not the owner.
            PreconditionFailedError: scope lives in another vault, or the user
                has no ACTIVE membership on the vault.
        """
        scope = ScopeType.parse(scope_type)
        perms = self._normalize(scope, permissions)

        def work(txn: StoreTransaction) -> PermissionGrant:
            self._require_owner(txn, vault_id, actor_id)
            self._require_user(txn, user_id)
            if self._scope_vault(txn, scope, scope_id) != vault_id:
                raise PreconditionFailedError(
                    "scope does not belong to this vault", vault_id=vault_id, scope_id=scope_id
                )
            if active_membership(txn, vault_id, user_id) is None:
                raise PreconditionFailedError(
                    "user must already be a vault member", vault_id=vault_id, user_id=user_id
                )

            existing = txn.get(PermissionGrant, grant_id(vault_id, scope, scope_id, user_id))
            if existing is None:
                grant = PermissionGrant(
                    vault_id=vault_id,
                    scope_type=scope,
                    scope_id=scope_id,
                    user_id=user_id,
                    permissions=perms,
                    granted_by=actor_id,
                )
            else:
                grant = existing.model_copy(update={"permissions": perms, "updated_at": utcnow()})
            txn.put(grant)
            self.audit.record(
                txn,
                vault_id,
                AuditEventType.GRANT_UPSERTED,
                actor_id,
                user_id=user_id,
                scope_type=scope.value,
                scope_id=scope_id,
                permissions=perms.to_dict(),
            )
            return grant

        grant = self._transact(work)
        get_vault_logger(__name__, actor_id=actor_id, vault_id=vault_id).info(
            "Grant upserted for %s on %s:%s", user_id, scope.value, scope_id
        )
        return grant

    def revoke(
        self,
        vault_id: str,
        actor_id: str,
        scope_type: ScopeType | str,
        scope_id: str,
        user_id: str,
    ) -> bool:
        """Delete a grant. Returns False when there was nothing to revoke."""
        scope = ScopeType.parse(scope_type)

        def work(txn: StoreTransaction) -> bool:
            self._require_owner(txn, vault_id, actor_id)
            key = grant_id(vault_id, scope, scope_id, user_id)
            if txn.get(PermissionGrant, key) is None:
                return False
            txn.delete(PermissionGrant, key)
            self.audit.record(
                txn,
                vault_id,
                AuditEventType.GRANT_REVOKED,
                actor_id,
                user_id=user_id,
                scope_type=scope.value,
                scope_id=scope_id,
            )
            return True

        removed = self._transact(work)
        if removed:
            get_vault_logger(__name__, actor_id=actor_id, vault_id=vault_id).info(
                "Grant revoked for %s on %s:%s", user_id, scope.value, scope_id
            )
        return removed

    def list(self, view: StoreView, vault_id: str) -> list[PermissionGrant]:
        return sorted(view.find(PermissionGrant, vault_id=vault_id), key=lambda g: g.granted_at)


__all__ = [
    "GrantRegistry",
    "MembershipRegistry",
    "grants_for_scopes",
    "rehome_grants",
]
