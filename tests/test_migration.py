"""Tests for the legacy sharedWith import."""

from __future__ import annotations

import pytest

from vaultcore import Action, Membership, PermissionDeniedError, ResourceRef, ValidationError, VaultService
from vaultcore.migration import LegacyShare, parse_shared_with


LEGACY = [
    {"userId": "delegate", "role": "editor", "canCreateCollections": True, "username": "del"},
    {"userId": "member2", "role": "reviewer"},
    {"userId": "owner", "role": "owner"},
    {"userId": "delegate", "role": "manager"},
    {"userId": "ghost", "role": "editor"},
]


class TestParse:
    """Tests for parse_shared_with()."""

    def test_parses_aliases_and_ignores_extras(self) -> None:
        """camelCase keys map onto fields; unknown keys are ignored."""
        (share,) = parse_shared_with([{"userId": "u1", "role": "Editor", "canCreateCollections": True, "x": 1}])
        assert share == LegacyShare(user_id="u1", role="Editor", can_create_collections=True)

    def test_missing_user_id(self) -> None:
        """Entries without a user id are rejected with their index."""
        with pytest.raises(ValidationError) as exc_info:
            parse_shared_with([{"userId": "u1"}, {"role": "editor"}])
        assert exc_info.value.details == {"index": 1}


class TestImportLegacyShares:
    """Tests for import_legacy_shares()."""

    def test_import(self, service: VaultService, vault) -> None:
        """Legacy roles become DELEGATE memberships; owner, duplicates and unknown users are skipped."""
        result = service.import_legacy_shares(vault.id, "owner", LEGACY)

        assert [m.user_id for m in result.imported] == ["delegate", "member2"]
        assert result.skipped_owner == 1
        assert result.skipped_duplicates == ["delegate"]
        assert result.missing_users == ["ghost"]

        members = {m.user_id: m for m in service.list_memberships(vault.id, "owner")}
        assert members["delegate"].permissions.actions() == frozenset({Action.VIEW, Action.EDIT, Action.CREATE})
        assert members["member2"].permissions.actions() == frozenset({Action.VIEW})
        assert service.resolve("delegate", ResourceRef.vault(vault.id), Action.CREATE)
        assert not service.resolve("member2", ResourceRef.vault(vault.id), Action.EDIT)

    def test_rerun_skips_existing(self, service: VaultService, vault) -> None:
        """Importing twice leaves the first result in place."""
        service.import_legacy_shares(vault.id, "owner", LEGACY)
        again = service.import_legacy_shares(vault.id, "owner", LEGACY)
        assert again.imported == []
        assert again.skipped_existing == ["delegate", "member2"]

    def test_revoked_members_are_not_revived(self, service: VaultService, vault) -> None:
        """A revoked membership counts as existing."""
        service.upsert_membership(vault.id, "owner", "member2")
        service.revoke_membership(vault.id, "owner", "member2")
        result = service.import_legacy_shares(vault.id, "owner", [{"userId": "member2", "role": "manager"}])
        assert result.skipped_existing == ["member2"]
        assert not service.resolve("member2", ResourceRef.vault(vault.id), Action.VIEW)

    def test_dry_run_writes_nothing(self, service: VaultService, store, vault) -> None:
        """A dry run reports what would happen."""
        result = service.import_legacy_shares(vault.id, "owner", LEGACY, dry_run=True)
        assert result.dry_run is True
        assert len(result.imported) == 2
        assert len(store.find(Membership, vault_id=vault.id)) == 1

    def test_owner_only(self, service: VaultService, vault) -> None:
        """Only the owner may import."""
        with pytest.raises(PermissionDeniedError):
            service.import_legacy_shares(vault.id, "delegate", LEGACY)
