"""VaultService: the public entry point of vaultcore.

Wires configuration, the entity store, the audit log, the registries and
the hierarchy operations together, and exposes them as one object::

    service = VaultService.from_env()
    service.register_user("u1", email="alice@example.com", username="alice")
    vault = service.create_vault("u1", "Home")
    service.resolve("u1", ResourceRef.vault(vault.id), Action.DELETE)  # True
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Iterable, Mapping, Optional

from .audit import AuditLog
from .config import VaultCoreConfig, load_config_from_env
from .exceptions import NotFoundError, ValidationError
from .hierarchy import AssetMove, CollectionMove, Deletion, HierarchyOperations
from .migration import LegacyImportResult, LegacyShare, LegacyShareImporter
from .models import (
    Asset,
    AuditEvent,
    Collection,
    Membership,
    PermissionGrant,
    ResourceRef,
    User,
    Vault,
    utcnow,
)
from .operations import Operations
from .permissions.access import Capabilities, capabilities, effective_permissions, resolve
from .permissions.constants import Action, ScopeType
from .permissions.presets import PermissionSet
from .registry import GrantRegistry, MembershipRegistry, PermissionsInput
from .store import EntityStore, build_store
from .store.base import StoreTransaction

logger = logging.getLogger(__name__)


class VaultService:
    """Facade over the vault hierarchy, its permission records and audit log.

    Args:
        store: Entity store; built from ``config`` when omitted.
        config: Settings; defaults to ``VaultCoreConfig()``.
    """

    def __init__(self, store: Optional[EntityStore] = None, config: Optional[VaultCoreConfig] = None) -> None:
        self.config = config or VaultCoreConfig()
        self.store = store if store is not None else build_store(self.config)
        self.audit = AuditLog(
            enabled=self.config.audit_enabled,
            dedupe_window_seconds=self.config.audit_dedupe_window_seconds,
        )
        self.memberships = MembershipRegistry(self.store, self.config, self.audit)
        self.grants = GrantRegistry(self.store, self.config, self.audit)
        self.hierarchy = HierarchyOperations(self.store, self.config, self.audit)
        self.legacy = LegacyShareImporter(self.store, self.config, self.audit)
        self._ops = Operations(self.store, self.config, self.audit)

    @classmethod
    def from_env(cls) -> VaultService:
        return cls(config=load_config_from_env())

    def close(self) -> None:
        self.store.close()

    # ── Identity references ─────────────────────────────

    def register_user(self, user_id: str, *, email: str = "", username: str = "") -> User:
        """Record (or refresh) an identity issued by the identity provider."""
        if not user_id:
            raise ValidationError("user id must not be empty")
        user = User(id=user_id, email=email, username=username)

        def work(txn: StoreTransaction) -> User:
            txn.put(user)
            return user

        self._ops._transact(work)
        logger.debug("Registered user %s", user_id)
        return user

    def get_user(self, user_id: str) -> User:
        user = self.store.get(User, user_id)
        if user is None:
            raise NotFoundError("user not found", user_id=user_id)
        return user

    # ── Resolution ──────────────────────────────────────

    def resolve(self, user_id: str, resource: ResourceRef, action: Action | str) -> bool:
        """Can ``user_id`` perform ``action`` on ``resource``? Reads committed state."""
        return resolve(
            self.store,
            user_id,
            resource,
            action,
            collection_create_grants=self.config.collection_create_grants,
        )

    def effective_permissions(self, user_id: str, resource: ResourceRef) -> PermissionSet | None:
        return effective_permissions(
            self.store, user_id, resource, collection_create_grants=self.config.collection_create_grants
        )

    def capabilities(self, user_id: str, resource: ResourceRef) -> Capabilities:
        return capabilities(self.store, user_id, resource, collection_create_grants=self.config.collection_create_grants)

    # ── Hierarchy ───────────────────────────────────────

    def create_vault(
        self, owner_id: str, name: str, *, vault_id: Optional[str] = None, is_default: bool = False
    ) -> Vault:
        return self.hierarchy.create_vault(owner_id, name, vault_id=vault_id, is_default=is_default)

    def create_collection(
        self, vault_id: str, user_id: str, name: str, *, collection_id: Optional[str] = None
    ) -> Collection:
        return self.hierarchy.create_collection(vault_id, user_id, name, collection_id=collection_id)

    def create_asset(
        self,
        collection_id: str,
        user_id: str,
        *,
        title: str,
        value: float = 0.0,
        description: Optional[str] = None,
        asset_id: Optional[str] = None,
    ) -> Asset:
        return self.hierarchy.create_asset(
            collection_id, user_id, title=title, value=value, description=description, asset_id=asset_id
        )

    def update_vault(
        self, vault_id: str, user_id: str, *, name: Optional[str] = None, is_default: Optional[bool] = None
    ) -> Vault:
        return self.hierarchy.update_vault(vault_id, user_id, name=name, is_default=is_default)

    def update_collection(self, collection_id: str, user_id: str, *, name: Optional[str] = None) -> Collection:
        return self.hierarchy.update_collection(collection_id, user_id, name=name)

    def update_asset(
        self,
        asset_id: str,
        user_id: str,
        *,
        title: Optional[str] = None,
        value: Optional[float] = None,
        description: Optional[str] = None,
    ) -> Asset:
        return self.hierarchy.update_asset(asset_id, user_id, title=title, value=value, description=description)

    def move_collection(
        self, collection_id: str, target_vault_id: str, user_id: str, *, expected_vault_id: Optional[str] = None
    ) -> CollectionMove:
        return self.hierarchy.move_collection(
            collection_id, target_vault_id, user_id, expected_vault_id=expected_vault_id
        )

    def move_asset(
        self,
        asset_id: str,
        target_collection_id: str,
        user_id: str,
        *,
        expected_collection_id: Optional[str] = None,
    ) -> AssetMove:
        return self.hierarchy.move_asset(
            asset_id, target_collection_id, user_id, expected_collection_id=expected_collection_id
        )

    def delete_vault(self, vault_id: str, user_id: str) -> Deletion:
        return self.hierarchy.delete_vault(vault_id, user_id)

    def delete_collection(self, collection_id: str, user_id: str) -> Deletion:
        return self.hierarchy.delete_collection(collection_id, user_id)

    def delete_asset(self, asset_id: str, user_id: str) -> Deletion:
        return self.hierarchy.delete_asset(asset_id, user_id)

    # ── Sharing ─────────────────────────────────────────

    def upsert_membership(
        self, vault_id: str, actor_id: str, user_id: str, permissions: PermissionsInput = None
    ) -> Membership:
        return self.memberships.upsert(vault_id, actor_id, user_id, permissions)

    def revoke_membership(self, vault_id: str, actor_id: str, user_id: str) -> Membership:
        return self.memberships.revoke(vault_id, actor_id, user_id)

    def transfer_ownership(self, vault_id: str, actor_id: str, new_owner_id: str) -> Vault:
        return self.memberships.transfer_ownership(vault_id, actor_id, new_owner_id)

    def list_memberships(self, vault_id: str, user_id: str, include_revoked: bool = False) -> list[Membership]:
        """Memberships of a vault; any member may list them."""
        self._ops._require(self.store, user_id, ResourceRef.vault(vault_id), Action.VIEW)
        return self.memberships.list(self.store, vault_id, include_revoked=include_revoked)

    def upsert_grant(
        self,
        vault_id: str,
        actor_id: str,
        scope_type: ScopeType | str,
        scope_id: str,
        user_id: str,
        permissions: PermissionsInput = None,
    ) -> PermissionGrant:
        return self.grants.upsert(vault_id, actor_id, scope_type, scope_id, user_id, permissions)

    def revoke_grant(
        self, vault_id: str, actor_id: str, scope_type: ScopeType | str, scope_id: str, user_id: str
    ) -> bool:
        return self.grants.revoke(vault_id, actor_id, scope_type, scope_id, user_id)

    def list_grants(self, vault_id: str, actor_id: str) -> list[PermissionGrant]:
        """Every grant in a vault; owner-only."""
        self._ops._require_owner(self.store, vault_id, actor_id)
        return self.grants.list(self.store, vault_id)

    def import_legacy_shares(
        self,
        vault_id: str,
        actor_id: str,
        shared_with: Iterable[Mapping[str, Any] | LegacyShare],
        *,
        dry_run: bool = False,
    ) -> LegacyImportResult:
        return self.legacy.import_shares(vault_id, actor_id, shared_with, dry_run=dry_run)

    # ── Read model ──────────────────────────────────────

    def visible_vaults(self, user_id: str) -> list[Vault]:
        return self.hierarchy.visible_vaults(user_id)

    def visible_collections(self, user_id: str, vault_id: Optional[str] = None) -> list[Collection]:
        return self.hierarchy.visible_collections(user_id, vault_id)

    def visible_assets(self, user_id: str, collection_id: Optional[str] = None) -> list[Asset]:
        return self.hierarchy.visible_assets(user_id, collection_id)

    def owned_vaults(self, user_id: str) -> list[Vault]:
        return self.hierarchy.owned_vaults(user_id)

    def shared_vaults(self, user_id: str) -> list[Vault]:
        return self.hierarchy.shared_vaults(user_id)

    # ── Audit ───────────────────────────────────────────

    def list_audit_events(self, vault_id: str, user_id: str) -> list[AuditEvent]:
        """Audit events of a vault, oldest first; owner-only while the vault exists."""
        self._ops._require_owner(self.store, vault_id, user_id)
        return self.audit.events(self.store, vault_id)

    def prune_audit_events(self, older_than: Optional[datetime] = None) -> int:
        """Delete audit events older than ``older_than`` (default: the retention window)."""
        cutoff = older_than or utcnow() - timedelta(days=self.config.audit_retention_days)
        return self.audit.prune(self.store, cutoff)


__all__ = [
    "VaultService",
]
