"""Structural operations on the Vault → Collection → Asset hierarchy.

Each operation checks the resolver, then applies all of its record changes
(including cascades, grant pruning and the audit event) in one transaction.
Callers may pass their own ids for created records so a re-delivered
request finds the record it already made instead of creating a second one.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, TypeVar, cast

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from .exceptions import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from .logging import get_vault_logger
from .models import (
    Asset,
    AuditEventType,
    Collection,
    Membership,
    PermissionGrant,
    Record,
    ResourceRef,
    Vault,
    new_id,
    utcnow,
)
from .operations import Operations
from .permissions.constants import Action, Role, ScopeType
from .permissions.presets import PermissionSet
from .registry import grants_for_scopes, rehome_grants
from .store.base import StoreTransaction

logger = logging.getLogger(__name__)

RecordT = TypeVar("RecordT", bound=Record)


class CollectionMove(BaseModel):
    collection: Collection
    source_vault_id: str
    moved: bool
    asset_vault_ids: dict[str, str] = Field(default_factory=dict)
    pruned_grants: list[PermissionGrant] = Field(default_factory=list)


class AssetMove(BaseModel):
    asset: Asset
    source_collection_id: str
    moved: bool
    pruned_grants: list[PermissionGrant] = Field(default_factory=list)


class Deletion(BaseModel):
    """What a delete removed."""

    resource: ResourceRef
    collections: int = 0
    assets: int = 0
    memberships: int = 0
    grants: int = 0


def _build(cls: type[RecordT], **fields: Any) -> RecordT:
    try:
        return cls(**fields)
    except PydanticValidationError as e:
        raise ValidationError(f"invalid {cls.KIND}: {e.errors()[0]['msg']}", kind=cls.KIND) from e


def _apply_changes(record: RecordT, changes: dict[str, Any]) -> RecordT:
    try:
        return type(record).model_validate({**record.model_dump(), **changes, "updated_at": utcnow()})
    except PydanticValidationError as e:
        raise ValidationError(f"invalid {record.KIND}: {e.errors()[0]['msg']}", kind=record.KIND) from e


def _changed(record: Record, changes: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in changes.items() if v is not None and getattr(record, k) != v}


class HierarchyOperations(Operations):
    """Create, update, move and delete vaults, collections and assets."""

    # ── Create ──────────────────────────────────────────

    def create_vault(
        self,
        owner_id: str,
        name: str,
        *,
        vault_id: Optional[str] = None,
        is_default: bool = False,
    ) -> Vault:
        """Create a vault and its OWNER membership together.

        Raises:
            NotFoundError: owner unknown.
            ConflictError: ``vault_id`` already used by another owner.
            ValidationError: empty name.
        """
        vid = vault_id or new_id()

        def work(txn: StoreTransaction) -> Vault:
            self._require_user(txn, owner_id)
            existing = txn.get(Vault, vid)
            if existing is not None:
                if existing.created_by == owner_id:
                    return existing
                raise ConflictError("vault id already in use", vault_id=vid)

            vault = _build(Vault, id=vid, owner_id=owner_id, name=name, is_default=is_default, created_by=owner_id)
            txn.put(vault)
            txn.put(
                Membership(
                    vault_id=vid,
                    user_id=owner_id,
                    role=Role.OWNER,
                    permissions=PermissionSet.full(),
                )
            )
            self.audit.record(txn, vid, AuditEventType.VAULT_CREATED, owner_id, name=vault.name)
            return vault

        vault = self._transact(work)
        get_vault_logger(__name__, actor_id=owner_id, vault_id=vault.id).info("Vault created")
        return vault

    def create_collection(
        self,
        vault_id: str,
        user_id: str,
        name: str,
        *,
        collection_id: Optional[str] = None,
    ) -> Collection:
        """Create a collection; requires Create on the vault."""
        cid = collection_id or new_id()

        def work(txn: StoreTransaction) -> Collection:
            self._require(txn, user_id, ResourceRef.vault(vault_id), Action.CREATE)
            existing = txn.get(Collection, cid)
            if existing is not None:
                if existing.vault_id == vault_id:
                    return existing
                raise ConflictError("collection id already in use", collection_id=cid)

            collection = _build(Collection, id=cid, vault_id=vault_id, name=name, created_by=user_id)
            txn.put(collection)
            self.audit.record(
                txn, vault_id, AuditEventType.COLLECTION_CREATED, user_id, collection_id=cid, name=collection.name
            )
            return collection

        collection = self._transact(work)
        get_vault_logger(__name__, actor_id=user_id, vault_id=vault_id).info("Collection %s created", collection.id)
        return collection

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
        """Create an asset; requires Create on the collection."""
        aid = asset_id or new_id()

        def work(txn: StoreTransaction) -> Asset:
            vault, collection = self._require(txn, user_id, ResourceRef.collection(collection_id), Action.CREATE)
            existing = txn.get(Asset, aid)
            if existing is not None:
                if existing.collection_id == collection_id:
                    return existing
                raise ConflictError("asset id already in use", asset_id=aid)

            asset = _build(
                Asset,
                id=aid,
                collection_id=collection_id,
                vault_id=vault.id,
                title=title,
                value=value,
                description=description,
                created_by=user_id,
            )
            txn.put(asset)
            self.audit.record(
                txn,
                vault.id,
                AuditEventType.ASSET_CREATED,
                user_id,
                asset_id=aid,
                collection_id=collection_id,
                title=asset.title,
            )
            return asset

        asset = self._transact(work)
        get_vault_logger(__name__, actor_id=user_id, vault_id=asset.vault_id).info("Asset %s created", asset.id)
        return asset

    # ── Update ──────────────────────────────────────────

    def update_vault(
        self,
        vault_id: str,
        user_id: str,
        *,
        name: Optional[str] = None,
        is_default: Optional[bool] = None,
    ) -> Vault:
        """Rename a vault or flip ``is_default``; requires Edit."""

        def work(txn: StoreTransaction) -> Vault:
            vault, _ = self._require(txn, user_id, ResourceRef.vault(vault_id), Action.EDIT)
            changes = _changed(vault, {"name": name, "is_default": is_default})
            if not changes:
                return vault
            updated = _apply_changes(vault, changes)
            txn.put(updated)
            self.audit.record(txn, vault_id, AuditEventType.VAULT_UPDATED, user_id, changes=changes)
            return updated

        return self._transact(work)

    def update_collection(self, collection_id: str, user_id: str, *, name: Optional[str] = None) -> Collection:
        """Rename a collection; requires Edit."""

        def work(txn: StoreTransaction) -> Collection:
            vault, collection = self._require(txn, user_id, ResourceRef.collection(collection_id), Action.EDIT)
            changes = _changed(collection, {"name": name})
            if not changes:
                return collection  # type: ignore[return-value]
            updated = _apply_changes(collection, changes)
            txn.put(updated)
            self.audit.record(
                txn, vault.id, AuditEventType.COLLECTION_UPDATED, user_id, collection_id=collection_id, changes=changes
            )
            return updated

        return self._transact(work)

    def update_asset(
        self,
        asset_id: str,
        user_id: str,
        *,
        title: Optional[str] = None,
        value: Optional[float] = None,
        description: Optional[str] = None,
    ) -> Asset:
        """Edit an asset's fields; requires Edit."""

        def work(txn: StoreTransaction) -> Asset:
            vault, asset = self._require(txn, user_id, ResourceRef.asset(asset_id), Action.EDIT)
            changes = _changed(asset, {"title": title, "value": value, "description": description})
            if not changes:
                return asset  # type: ignore[return-value]
            updated = _apply_changes(asset, changes)
            txn.put(updated)
            self.audit.record(
                txn, vault.id, AuditEventType.ASSET_UPDATED, user_id, asset_id=asset_id, changes=changes
            )
            return updated

        return self._transact(work)

    # ── Move ────────────────────────────────────────────

    def move_collection(
        self,
        collection_id: str,
        target_vault_id: str,
        user_id: str,
        *,
        expected_vault_id: Optional[str] = None,
    ) -> CollectionMove:
        """Re-parent a collection (and all its assets) into another vault.

        Requires Move on the collection, plus Create on the target vault.
        Grants on the collection or its assets survive only for users with
        an ACTIVE membership on the target vault. Moving to the current
        vault is a no-op.

        Raises:
            ConflictError: ``expected_vault_id`` no longer matches.
        """

        def work(txn: StoreTransaction) -> CollectionMove:
            _, resource = self._require(txn, user_id, ResourceRef.collection(collection_id), Action.MOVE)
            collection = cast(Collection, resource)
            source_vault_id = collection.vault_id
            if expected_vault_id is not None and expected_vault_id != source_vault_id:
                raise ConflictError(
                    "collection is no longer in the expected vault",
                    collection_id=collection_id,
                    vault_id=source_vault_id,
                )
            self._require_vault(txn, target_vault_id)
            if target_vault_id == source_vault_id:
                return CollectionMove(collection=collection, source_vault_id=source_vault_id, moved=False)
            if not self._resolve(txn, user_id, ResourceRef.vault(target_vault_id), Action.CREATE):
                raise PermissionDeniedError(
                    "Create not allowed on target vault", vault_id=target_vault_id, action=Action.CREATE.value
                )

            now = utcnow()
            moved = collection.model_copy(update={"vault_id": target_vault_id, "updated_at": now})
            txn.put(moved)

            assets = txn.find(Asset, collection_id=collection_id)
            asset_vault_ids: dict[str, str] = {}
            for asset in assets:
                txn.put(asset.model_copy(update={"vault_id": target_vault_id, "updated_at": now}))
                asset_vault_ids[asset.id] = target_vault_id

            scopes = [(ScopeType.COLLECTION, collection_id)] + [(ScopeType.ASSET, a.id) for a in assets]
            _, pruned = rehome_grants(txn, grants_for_scopes(txn, scopes), target_vault_id)

            for vid in (source_vault_id, target_vault_id):
                self.audit.record(
                    txn,
                    vid,
                    AuditEventType.COLLECTION_MOVED,
                    user_id,
                    collection_id=collection_id,
                    from_vault_id=source_vault_id,
                    to_vault_id=target_vault_id,
                    assets=len(assets),
                    grants_pruned=len(pruned),
                )
            return CollectionMove(
                collection=moved,
                source_vault_id=source_vault_id,
                moved=True,
                asset_vault_ids=asset_vault_ids,
                pruned_grants=pruned,
            )

        result = self._transact(work)
        if result.moved:
            get_vault_logger(__name__, actor_id=user_id, vault_id=target_vault_id).info(
                "Collection %s moved from %s (%d assets, %d grants pruned)",
                collection_id,
                result.source_vault_id,
                len(result.asset_vault_ids),
                len(result.pruned_grants),
            )
        return result

    def move_asset(
        self,
        asset_id: str,
        target_collection_id: str,
        user_id: str,
        *,
        expected_collection_id: Optional[str] = None,
    ) -> AssetMove:
        """Re-parent an asset into another collection.

        Requires Move on the asset; a move into another vault also requires
        Create on the target collection. Asset grants survive only for users
        with an ACTIVE membership on the target vault.
        """

        def work(txn: StoreTransaction) -> AssetMove:
            _, resource = self._require(txn, user_id, ResourceRef.asset(asset_id), Action.MOVE)
            asset = cast(Asset, resource)
            source_collection_id = asset.collection_id
            if expected_collection_id is not None and expected_collection_id != source_collection_id:
                raise ConflictError(
                    "asset is no longer in the expected collection",
                    asset_id=asset_id,
                    collection_id=source_collection_id,
                )
            target = txn.get(Collection, target_collection_id)
            if target is None:
                raise NotFoundError("collection not found", collection_id=target_collection_id)
            if target.id == source_collection_id:
                return AssetMove(asset=asset, source_collection_id=source_collection_id, moved=False)
            if target.vault_id != asset.vault_id and not self._resolve(
                txn, user_id, ResourceRef.collection(target.id), Action.CREATE
            ):
                raise PermissionDeniedError(
                    "Create not allowed on target collection",
                    collection_id=target.id,
                    action=Action.CREATE.value,
                )

            moved = asset.model_copy(
                update={"collection_id": target.id, "vault_id": target.vault_id, "updated_at": utcnow()}
            )
            txn.put(moved)
            _, pruned = rehome_grants(txn, grants_for_scopes(txn, [(ScopeType.ASSET, asset_id)]), target.vault_id)

            for vid in {asset.vault_id, target.vault_id}:
                self.audit.record(
                    txn,
                    vid,
                    AuditEventType.ASSET_MOVED,
                    user_id,
                    asset_id=asset_id,
                    from_collection_id=source_collection_id,
                    to_collection_id=target.id,
                    grants_pruned=len(pruned),
                )
            return AssetMove(asset=moved, source_collection_id=source_collection_id, moved=True, pruned_grants=pruned)

        result = self._transact(work)
        if result.moved:
            get_vault_logger(__name__, actor_id=user_id, vault_id=result.asset.vault_id).info(
                "Asset %s moved from collection %s", asset_id, result.source_collection_id
            )
        return result

    # ── Delete ──────────────────────────────────────────

    def delete_vault(self, vault_id: str, user_id: str) -> Deletion:
        """Owner-only; removes assets, collections, memberships, grants, then the vault.

        Raises:
            NotFoundError: vault unknown.
            PermissionDeniedError: caller is not the owner.
            InvariantViolationError: the vault has no OWNER membership.
        """

        def work(txn: StoreTransaction) -> Deletion:
            vault = self._require_owner(txn, vault_id, user_id)
            self._require_owner_membership(txn, vault)

            assets = txn.find(Asset, vault_id=vault_id)
            collections = txn.find(Collection, vault_id=vault_id)
            memberships = txn.find(Membership, vault_id=vault_id)
            grants = txn.find(PermissionGrant, vault_id=vault_id)
            deletion = Deletion(
                resource=ResourceRef.vault(vault_id),
                assets=txn.delete_all(assets),
                collections=txn.delete_all(collections),
                memberships=txn.delete_all(memberships),
                grants=txn.delete_all(grants),
            )
            txn.delete(Vault, vault_id)
            self.audit.record(
                txn,
                vault_id,
                AuditEventType.VAULT_DELETED,
                user_id,
                name=vault.name,
                collections=deletion.collections,
                assets=deletion.assets,
            )
            return deletion

        deletion = self._transact(work)
        get_vault_logger(__name__, actor_id=user_id, vault_id=vault_id).info(
            "Vault deleted (%d collections, %d assets, %d memberships, %d grants)",
            deletion.collections,
            deletion.assets,
            deletion.memberships,
            deletion.grants,
        )
        return deletion

    def delete_collection(self, collection_id: str, user_id: str) -> Deletion:
        """Delete a collection, its assets and every grant scoped to them; requires Delete."""

        def work(txn: StoreTransaction) -> Deletion:
            vault, collection = self._require(txn, user_id, ResourceRef.collection(collection_id), Action.DELETE)
            assets = txn.find(Asset, collection_id=collection_id)
            scopes = [(ScopeType.COLLECTION, collection_id)] + [(ScopeType.ASSET, a.id) for a in assets]
            grants = grants_for_scopes(txn, scopes)
            deletion = Deletion(
                resource=ResourceRef.collection(collection_id),
                collections=1,
                assets=txn.delete_all(assets),
                grants=txn.delete_all(grants),
            )
            txn.delete(Collection, collection_id)
            self.audit.record(
                txn,
                vault.id,
                AuditEventType.COLLECTION_DELETED,
                user_id,
                collection_id=collection_id,
                name=collection.name,  # type: ignore[union-attr]
                assets=deletion.assets,
            )
            return deletion

        return self._transact(work)

    def delete_asset(self, asset_id: str, user_id: str) -> Deletion:
        """Delete an asset and its grants; requires Delete."""

        def work(txn: StoreTransaction) -> Deletion:
            vault, asset = self._require(txn, user_id, ResourceRef.asset(asset_id), Action.DELETE)
            grants = grants_for_scopes(txn, [(ScopeType.ASSET, asset_id)])
            deletion = Deletion(resource=ResourceRef.asset(asset_id), assets=1, grants=txn.delete_all(grants))
            txn.delete(Asset, asset_id)
            self.audit.record(
                txn,
                vault.id,
                AuditEventType.ASSET_DELETED,
                user_id,
                asset_id=asset_id,
                title=asset.title,  # type: ignore[union-attr]
            )
            return deletion

        return self._transact(work)

    # ── Read model ──────────────────────────────────────

    def owned_vaults(self, user_id: str) -> list[Vault]:
        return sorted(self.store.find(Vault, owner_id=user_id), key=lambda v: v.created_at)

    def shared_vaults(self, user_id: str) -> list[Vault]:
        """Vaults where the user holds an ACTIVE DELEGATE membership."""
        vaults = []
        for membership in self.store.find(Membership, user_id=user_id):
            if not membership.is_active or membership.is_owner:
                continue
            vault = self.store.get(Vault, membership.vault_id)
            if vault is not None and vault.owner_id != user_id:
                vaults.append(vault)
        return sorted(vaults, key=lambda v: v.created_at)

    def visible_vaults(self, user_id: str) -> list[Vault]:
        """Every vault the user may View: owned first, then shared."""
        seen: dict[str, Vault] = {}
        for vault in self.owned_vaults(user_id) + self.shared_vaults(user_id):
            if vault.id not in seen and self._resolve(self.store, user_id, ResourceRef.of(vault), Action.VIEW):
                seen[vault.id] = vault
        return list(seen.values())

    def visible_collections(self, user_id: str, vault_id: Optional[str] = None) -> list[Collection]:
        if vault_id is not None:
            vault_ids = [vault_id]
        else:
            vault_ids = [v.id for v in self.visible_vaults(user_id)]
        collections = []
        for vid in vault_ids:
            collections.extend(
                c
                for c in self.store.find(Collection, vault_id=vid)
                if self._resolve(self.store, user_id, ResourceRef.of(c), Action.VIEW)
            )
        return sorted(collections, key=lambda c: (c.vault_id, c.created_at))

    def visible_assets(self, user_id: str, collection_id: Optional[str] = None) -> list[Asset]:
        if collection_id is not None:
            collection_ids = [collection_id]
        else:
            collection_ids = [c.id for c in self.visible_collections(user_id)]
        assets = []
        for cid in collection_ids:
            assets.extend(
                a
                for a in self.store.find(Asset, collection_id=cid)
                if self._resolve(self.store, user_id, ResourceRef.of(a), Action.VIEW)
            )
        return sorted(assets, key=lambda a: (a.collection_id, a.created_at))


__all__ = [
    "AssetMove",
    "CollectionMove",
    "Deletion",
    "HierarchyOperations",
]
