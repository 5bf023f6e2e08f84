"""Import of legacy embedded shares.

Older vault records carried sharing inline as
``sharedWith: [{"userId": ..., "role": ..., "canCreateCollections": ...}]``.
``LegacyShareImporter`` turns those entries into DELEGATE memberships in a
single transaction. Re-running an import is safe: users that already have a
membership on the vault (active or revoked) are left alone.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from .exceptions import ValidationError
from .models import AuditEventType, Membership, User, membership_id
from .operations import Operations
from .permissions.constants import Role
from .permissions.presets import normalize_role, permissions_for_role
from .store.base import StoreTransaction

logger = logging.getLogger(__name__)


class LegacyShare(BaseModel):
    """One entry of a legacy ``sharedWith`` array."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    user_id: str = Field(alias="userId", min_length=1)
    role: Optional[str] = None
    can_create_collections: bool = Field(default=False, alias="canCreateCollections")


class LegacyImportResult(BaseModel):
    vault_id: str
    dry_run: bool = False
    imported: list[Membership] = Field(default_factory=list)
    skipped_owner: int = 0
    skipped_duplicates: list[str] = Field(default_factory=list)
    skipped_existing: list[str] = Field(default_factory=list)
    missing_users: list[str] = Field(default_factory=list)


def parse_shared_with(entries: Iterable[Mapping[str, Any] | LegacyShare]) -> list[LegacyShare]:
    """Validate raw ``sharedWith`` entries.

    Raises:
        ValidationError: an entry has no ``userId``.
    """
    shares = []
    for index, entry in enumerate(entries):
        if isinstance(entry, LegacyShare):
            shares.append(entry)
            continue
        try:
            shares.append(LegacyShare.model_validate(entry))
        except PydanticValidationError as e:
            raise ValidationError(f"invalid sharedWith entry at index {index}", index=index) from e
    return shares


class LegacyShareImporter(Operations):
    """Converts embedded legacy shares into membership records."""

    def import_shares(
        self,
        vault_id: str,
        actor_id: str,
        shared_with: Iterable[Mapping[str, Any] | LegacyShare],
        *,
        dry_run: bool = False,
    ) -> LegacyImportResult:
        """Create DELEGATE memberships for a vault's legacy shares.

        Owner-only. Entries for the owner are skipped (ownership never comes
        from a share), as are repeated users (first entry wins), users that
        already have a membership, and users unknown to the identity store.

        Args:
            vault_id: Vault the shares belonged to.
            actor_id: Must be the vault owner.
            shared_with: Raw legacy entries.
            dry_run: Compute the result without writing anything.
        """
        shares = parse_shared_with(shared_with)

        def work(txn: StoreTransaction) -> LegacyImportResult:
            vault = self._require_owner(txn, vault_id, actor_id)
            result = LegacyImportResult(vault_id=vault_id, dry_run=dry_run)
            seen: set[str] = set()

            for share in shares:
                uid = share.user_id
                if uid == vault.owner_id:
                    result.skipped_owner += 1
                    continue
                if uid in seen:
                    result.skipped_duplicates.append(uid)
                    continue
                seen.add(uid)
                if txn.get(Membership, membership_id(vault_id, uid)) is not None:
                    result.skipped_existing.append(uid)
                    continue
                if txn.get(User, uid) is None:
                    logger.warning("Legacy share for unknown user %s on vault %s skipped", uid, vault_id)
                    result.missing_users.append(uid)
                    continue

                membership = Membership(
                    vault_id=vault_id,
                    user_id=uid,
                    role=Role.DELEGATE,
                    permissions=permissions_for_role(share.role, can_create=share.can_create_collections),
                )
                result.imported.append(membership)
                if not dry_run:
                    txn.put(membership)
                    self.audit.record(
                        txn,
                        vault_id,
                        AuditEventType.MEMBERSHIP_UPSERTED,
                        actor_id,
                        user_id=uid,
                        permissions=membership.permissions.to_dict(),
                        legacy_role=normalize_role(share.role),
                    )
            return result

        result = self._transact(work)
        logger.info(
            "Legacy share import for vault %s%s: %d imported, %d existing, %d duplicates, %d unknown users",
            vault_id,
            " (dry run)" if dry_run else "",
            len(result.imported),
            len(result.skipped_existing),
            len(result.skipped_duplicates),
            len(result.missing_users),
        )
        return result


__all__ = [
    "LegacyImportResult",
    "LegacyShare",
    "LegacyShareImporter",
    "parse_shared_with",
]
