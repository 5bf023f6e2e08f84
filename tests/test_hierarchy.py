"""Tests for hierarchy operations: create, update, move, delete and the read model."""

from __future__ import annotations

import logging

import pytest

from vaultcore import (
    Action,
    Asset,
    Collection,
    ConflictError,
    InvariantViolationError,
    Membership,
    NotFoundError,
    PermissionDeniedError,
    PermissionGrant,
    ResourceRef,
    StorageError,
    ValidationError,
    Vault,
    VaultService,
)
from vaultcore.models import membership_id


class TestCreate:
    """Tests for create_vault / create_collection / create_asset."""

    def test_create_vault_with_owner_membership(self, service: VaultService, store) -> None:
        """Vault and OWNER membership are created together."""
        vault = service.create_vault("owner", "Home")
        assert vault.owner_id == "owner"
        assert vault.created_by == "owner"
        assert store.get(Membership, membership_id(vault.id, "owner")) is not None

    def test_create_vault_replay_returns_existing(self, service: VaultService, store) -> None:
        """Re-delivering a create with the same id creates nothing new."""
        first = service.create_vault("owner", "Home", vault_id="v1")
        second = service.create_vault("owner", "Home", vault_id="v1")
        assert second == first
        assert store.count(Vault) == 1

    def test_create_vault_id_taken_by_other_owner(self, service: VaultService) -> None:
        """A colliding id from a different owner is a conflict."""
        service.create_vault("owner", "Home", vault_id="v1")
        with pytest.raises(ConflictError):
            service.create_vault("delegate", "Elsewhere", vault_id="v1")

    def test_create_vault_validation(self, service: VaultService) -> None:
        """Empty names and unknown owners are rejected."""
        with pytest.raises(ValidationError):
            service.create_vault("owner", "")
        with pytest.raises(NotFoundError):
            service.create_vault("ghost", "Home")

    def test_default_flag(self, service: VaultService) -> None:
        """is_default is stored as given."""
        assert service.create_vault("owner", "Example", is_default=True).is_default is True

    def test_create_collection_needs_create(self, service: VaultService, vault) -> None:
        """Delegates need Create on the vault to add collections."""
        service.upsert_membership(vault.id, "owner", "delegate", {"Edit": True})
        with pytest.raises(PermissionDeniedError):
            service.create_collection(vault.id, "delegate", "Garage")

        service.upsert_membership(vault.id, "owner", "delegate", {"Create": True})
        collection = service.create_collection(vault.id, "delegate", "Garage")
        assert collection.vault_id == vault.id
        assert collection.created_by == "delegate"

    def test_create_collection_missing_vault(self, service: VaultService) -> None:
        """Unknown vaults fail NotFound, not PermissionDenied."""
        with pytest.raises(NotFoundError):
            service.create_collection("missing", "owner", "Garage")

    def test_create_asset_derives_vault(self, service: VaultService, vault) -> None:
        """Asset vault_id always equals its collection's vault."""
        collection = service.create_collection(vault.id, "owner", "Kitchen")
        asset = service.create_asset(collection.id, "owner", title="Kettle", value=30, description="Steel")
        assert asset.vault_id == vault.id
        assert asset.collection_id == collection.id
        assert asset.value == 30
        assert asset.description == "Steel"

    def test_create_asset_rejects_negative_value(self, service: VaultService, vault) -> None:
        """Asset value is non-negative."""
        collection = service.create_collection(vault.id, "owner", "Kitchen")
        with pytest.raises(ValidationError):
            service.create_asset(collection.id, "owner", title="Kettle", value=-1)

    def test_create_asset_replay(self, service: VaultService, store, vault) -> None:
        """Same asset id into the same collection returns the existing asset."""
        collection = service.create_collection(vault.id, "owner", "Kitchen", collection_id="c1")
        first = service.create_asset(collection.id, "owner", title="Kettle", asset_id="a1")
        again = service.create_asset(collection.id, "owner", title="Kettle", asset_id="a1")
        assert again.id == first.id
        assert store.count(Asset) == 1


class TestUpdate:
    """Tests for update_vault / update_collection / update_asset."""

    def test_update_requires_edit(self, service: VaultService, vault) -> None:
        """View-only delegates cannot edit."""
        collection = service.create_collection(vault.id, "owner", "Kitchen")
        service.upsert_membership(vault.id, "owner", "delegate")
        with pytest.raises(PermissionDeniedError):
            service.update_collection(collection.id, "delegate", name="Pantry")

    def test_update_asset_through_grant(self, service: VaultService, vault) -> None:
        """An asset grant with Edit allows editing that asset."""
        collection = service.create_collection(vault.id, "owner", "Kitchen")
        asset = service.create_asset(collection.id, "owner", title="Kettle", value=30)
        service.upsert_membership(vault.id, "owner", "delegate")
        service.upsert_grant(vault.id, "owner", "ASSET", asset.id, "delegate", {"Edit": True})

        updated = service.update_asset(asset.id, "delegate", title="Tea kettle", value=35)
        assert updated.title == "Tea kettle"
        assert updated.value == 35
        assert updated.updated_at >= asset.updated_at

    def test_update_validates(self, service: VaultService, vault) -> None:
        """Updates go through the same validation as creation."""
        with pytest.raises(ValidationError):
            service.update_vault(vault.id, "owner", name="")

    def test_update_without_changes_returns_record(self, service: VaultService, vault) -> None:
        """Nothing to change returns the stored record unchanged."""
        assert service.update_vault(vault.id, "owner", name="Home") == vault

    def test_delegate_edits_vault_name(self, service: VaultService, vault) -> None:
        """Vault Edit follows the membership bit."""
        service.upsert_membership(vault.id, "owner", "delegate", {"Edit": True})
        assert service.update_vault(vault.id, "delegate", name="Family home").name == "Family home"


class TestMoveAsset:
    """Tests for move_asset()."""

    @pytest.fixture
    def two_collections(self, service: VaultService, vault) -> tuple[Collection, Collection, Asset]:
        c1 = service.create_collection(vault.id, "owner", "Kitchen", collection_id="c1")
        c2 = service.create_collection(vault.id, "owner", "Garage", collection_id="c2")
        a1 = service.create_asset(c1.id, "owner", title="Kettle", asset_id="a1")
        return c1, c2, a1

    def test_move_preserves_one_parent(self, service: VaultService, store, two_collections) -> None:
        """After a move the asset lists under exactly the target collection."""
        c1, c2, a1 = two_collections
        result = service.move_asset(a1.id, c2.id, "owner")
        assert result.moved is True
        assert result.asset.collection_id == c2.id
        assert result.asset.vault_id == c2.vault_id
        assert store.find(Asset, collection_id=c1.id) == []
        assert [a.id for a in store.find(Asset, collection_id=c2.id)] == [a1.id]

    def test_move_to_current_collection_is_noop(self, service: VaultService, two_collections) -> None:
        """Moving into the current parent changes nothing."""
        c1, _, a1 = two_collections
        result = service.move_asset(a1.id, c1.id, "owner")
        assert result.moved is False
        assert result.asset.collection_id == c1.id

    def test_move_needs_move_permission(self, service: VaultService, vault, two_collections) -> None:
        """A delegate with only Edit cannot move."""
        _, c2, a1 = two_collections
        service.upsert_membership(vault.id, "owner", "delegate", {"Edit": True})
        with pytest.raises(PermissionDeniedError):
            service.move_asset(a1.id, c2.id, "delegate")

    def test_move_expected_parent_conflict(self, service: VaultService, two_collections) -> None:
        """A stale expected_collection_id surfaces as Conflict."""
        c1, c2, a1 = two_collections
        service.move_asset(a1.id, c2.id, "owner")
        with pytest.raises(ConflictError):
            service.move_asset(a1.id, c1.id, "owner", expected_collection_id=c1.id)

    def test_move_to_missing_collection(self, service: VaultService, two_collections) -> None:
        """Unknown targets fail NotFound."""
        _, _, a1 = two_collections
        with pytest.raises(NotFoundError):
            service.move_asset(a1.id, "missing", "owner")

    def test_cross_vault_move_prunes_asset_grants(self, service: VaultService, store, vault, two_collections) -> None:
        """Asset grants survive only for members of the destination vault."""
        _, _, a1 = two_collections
        other = service.create_vault("owner", "Office", vault_id="v2")
        desk = service.create_collection(other.id, "owner", "Desk")
        for uid in ("delegate", "member2"):
            service.upsert_membership(vault.id, "owner", uid)
            service.upsert_grant(vault.id, "owner", "ASSET", a1.id, uid, {"Edit": True})
        service.upsert_membership(other.id, "owner", "member2")

        result = service.move_asset(a1.id, desk.id, "owner")
        assert result.asset.vault_id == other.id
        assert [g.user_id for g in result.pruned_grants] == ["delegate"]
        remaining = store.find(PermissionGrant, scope_id=a1.id)
        assert [(g.user_id, g.vault_id) for g in remaining] == [("member2", other.id)]
        assert service.resolve("member2", ResourceRef.asset(a1.id), Action.EDIT)

    def test_cross_vault_move_needs_create_on_target(self, service: VaultService, vault, two_collections) -> None:
        """Moving out of a vault needs Create on the destination collection."""
        _, _, a1 = two_collections
        other = service.create_vault("member2", "Their vault")
        target = service.create_collection(other.id, "member2", "Shelf")
        with pytest.raises(PermissionDeniedError):
            service.move_asset(a1.id, target.id, "owner")

        service.upsert_membership(other.id, "member2", "owner", {"Create": True})
        assert service.move_asset(a1.id, target.id, "owner").moved is True


class TestMoveCollection:
    """Tests for move_collection()."""

    @pytest.fixture
    def staged_move(self, service: VaultService, vault) -> tuple[Collection, list[Asset], Vault]:
        c1 = service.create_collection(vault.id, "owner", "Kitchen", collection_id="c1")
        assets = [service.create_asset(c1.id, "owner", title=f"Item {i}", asset_id=f"a{i}") for i in range(3)]
        destination = service.create_vault("owner", "Office", vault_id="v2")
        return c1, assets, destination

    def test_move_reparents_collection_and_assets(self, service: VaultService, store, staged_move) -> None:
        """The collection and every asset take the destination vault id."""
        c1, assets, destination = staged_move
        result = service.move_collection(c1.id, destination.id, "owner")
        assert result.moved is True
        assert result.source_vault_id == "v1"
        assert result.collection.vault_id == destination.id
        assert result.asset_vault_ids == {a.id: destination.id for a in assets}
        for asset in assets:
            assert store.get(Asset, asset.id).vault_id == destination.id
        assert store.find(Collection, vault_id="v1") == []

    def test_same_vault_is_noop(self, service: VaultService, staged_move) -> None:
        """Target equal to the current vault changes nothing."""
        c1, _, _ = staged_move
        result = service.move_collection(c1.id, "v1", "owner")
        assert result.moved is False
        assert result.asset_vault_ids == {}

    def test_grant_pruning_on_move(self, service: VaultService, store, staged_move) -> None:
        """X (no destination membership) loses the grant; Y (member) keeps it."""
        c1, assets, destination = staged_move
        for uid in ("delegate", "member2"):
            service.upsert_membership("v1", "owner", uid)
            service.upsert_grant("v1", "owner", "COLLECTION", c1.id, uid, {"Edit": True})
        service.upsert_grant("v1", "owner", "ASSET", assets[0].id, "delegate", {"Delete": True})
        service.upsert_membership(destination.id, "owner", "member2")

        result = service.move_collection(c1.id, destination.id, "owner")

        assert sorted((g.user_id, g.scope_type.value) for g in result.pruned_grants) == [
            ("delegate", "ASSET"),
            ("delegate", "COLLECTION"),
        ]
        assert store.find(PermissionGrant, user_id="delegate") == []
        kept = store.find(PermissionGrant, user_id="member2")
        assert len(kept) == 1
        assert kept[0].vault_id == destination.id
        assert kept[0].id == f"{destination.id}_COLLECTION_{c1.id}_member2"
        assert service.resolve("member2", ResourceRef.collection(c1.id), Action.EDIT)

    def test_move_requires_create_on_destination(self, service: VaultService, staged_move) -> None:
        """A Move grant alone does not let a delegate push a collection into a vault they cannot add to."""
        c1, _, destination = staged_move
        service.upsert_membership("v1", "owner", "delegate", {"Move": True})
        service.upsert_membership(destination.id, "owner", "delegate")
        with pytest.raises(PermissionDeniedError):
            service.move_collection(c1.id, destination.id, "delegate")

        service.upsert_membership(destination.id, "owner", "delegate", {"Create": True})
        assert service.move_collection(c1.id, destination.id, "delegate").moved is True

    def test_move_to_missing_vault(self, service: VaultService, staged_move) -> None:
        """Unknown destination vaults fail NotFound."""
        c1, _, _ = staged_move
        with pytest.raises(NotFoundError):
            service.move_collection(c1.id, "missing", "owner")

    def test_expected_vault_conflict(self, service: VaultService, staged_move) -> None:
        """A caller acting on stale parent data gets Conflict."""
        c1, _, destination = staged_move
        service.move_collection(c1.id, destination.id, "owner")
        with pytest.raises(ConflictError):
            service.move_collection(c1.id, "v1", "owner", expected_vault_id="v1")


class TestDelete:
    """Tests for delete_vault / delete_collection / delete_asset."""

    @pytest.fixture
    def populated(self, service: VaultService, vault) -> Vault:
        service.upsert_membership(vault.id, "owner", "delegate", {"Edit": True})
        service.upsert_membership(vault.id, "owner", "member2")
        for c in range(3):
            collection = service.create_collection(vault.id, "owner", f"Room {c}", collection_id=f"c{c}")
            for a in range(2):
                service.create_asset(collection.id, "owner", title=f"Thing {a}", asset_id=f"a{c}{a}")
        service.upsert_grant(vault.id, "owner", "COLLECTION", "c0", "delegate", {"Delete": True})
        service.upsert_grant(vault.id, "owner", "ASSET", "a11", "member2", {"Edit": True})
        return vault

    def test_cascade_completeness(self, service: VaultService, store, populated) -> None:
        """Nothing referencing the vault survives its deletion."""
        deletion = service.delete_vault(populated.id, "owner")
        assert (deletion.collections, deletion.assets, deletion.memberships, deletion.grants) == (3, 6, 3, 2)
        assert store.get(Vault, populated.id) is None
        assert store.find(Collection, vault_id=populated.id) == []
        assert store.find(Asset, vault_id=populated.id) == []
        assert store.find(Membership, vault_id=populated.id) == []
        assert store.find(PermissionGrant, vault_id=populated.id) == []

    def test_delete_vault_is_owner_only(self, service: VaultService, populated) -> None:
        """Delegates cannot delete the vault."""
        service.upsert_membership(populated.id, "owner", "delegate", {"Delete": True, "Edit": True})
        with pytest.raises(PermissionDeniedError):
            service.delete_vault(populated.id, "delegate")

    def test_delete_missing_vault(self, service: VaultService) -> None:
        """Deleting an unknown vault fails NotFound."""
        with pytest.raises(NotFoundError):
            service.delete_vault("missing", "owner")

    def test_missing_owner_membership_is_invariant_violation(
        self, service: VaultService, store, populated, caplog: pytest.LogCaptureFixture
    ) -> None:
        """A vault without its OWNER membership is a logged defect."""
        with store.transaction() as txn:
            txn.delete(Membership, membership_id(populated.id, "owner"))

        with caplog.at_level(logging.ERROR):
            with pytest.raises(InvariantViolationError):
                service.delete_vault(populated.id, "owner")
        assert "Invariant violation" in caplog.text
        assert store.get(Vault, populated.id) is not None

    def test_delete_collection_cascades(self, service: VaultService, store, populated) -> None:
        """A delegate with a Delete grant removes the collection, its assets and their grants."""
        deletion = service.delete_collection("c0", "delegate")
        assert (deletion.collections, deletion.assets, deletion.grants) == (1, 2, 1)
        assert store.get(Collection, "c0") is None
        assert store.find(Asset, collection_id="c0") == []
        assert store.find(PermissionGrant, scope_id="c0") == []
        assert store.get(Collection, "c1") is not None

    def test_delete_collection_denied(self, service: VaultService, populated) -> None:
        """Edit does not imply Delete."""
        with pytest.raises(PermissionDeniedError):
            service.delete_collection("c1", "delegate")

    def test_delete_asset_removes_grants(self, service: VaultService, store, populated) -> None:
        """Deleting an asset removes grants scoped to it."""
        deletion = service.delete_asset("a11", "owner")
        assert deletion.grants == 1
        assert store.get(Asset, "a11") is None
        assert store.find(PermissionGrant, scope_id="a11") == []


class TestAtomicity:
    """Failed commits leave the store intact; transient failures are retried."""

    def test_failed_commit_leaves_store_untouched(self, service: VaultService, store, vault, monkeypatch) -> None:
        """A commit that keeps failing changes nothing."""
        service.create_collection(vault.id, "owner", "Kitchen", collection_id="c1")
        calls = []

        def broken_commit(staged):
            calls.append(len(staged))
            raise StorageError("disk on fire")

        monkeypatch.setattr(store, "_commit", broken_commit)
        with pytest.raises(StorageError):
            service.delete_vault(vault.id, "owner")

        assert len(calls) == service.config.commit_retry_attempts
        monkeypatch.undo()
        assert store.get(Vault, vault.id) is not None
        assert store.get(Collection, "c1") is not None
        assert store.get(Membership, membership_id(vault.id, "owner")) is not None

    def test_transient_failure_is_retried_to_completion(
        self, service: VaultService, store, vault, monkeypatch
    ) -> None:
        """One failed commit is retried and the cascade completes."""
        service.create_collection(vault.id, "owner", "Kitchen", collection_id="c1")
        real_commit = store._commit
        failures = [StorageError("blip")]

        def flaky_commit(staged):
            if failures:
                raise failures.pop()
            real_commit(staged)

        monkeypatch.setattr(store, "_commit", flaky_commit)
        service.delete_vault(vault.id, "owner")
        assert store.get(Vault, vault.id) is None
        assert store.get(Collection, "c1") is None

    def test_permission_errors_are_not_retried(self, service: VaultService, vault, monkeypatch) -> None:
        """Domain errors propagate on the first attempt."""
        attempts = []
        original = service.hierarchy._resolve

        def counting_resolve(*args, **kwargs):
            attempts.append(1)
            return original(*args, **kwargs)

        monkeypatch.setattr(service.hierarchy, "_resolve", counting_resolve)
        with pytest.raises(PermissionDeniedError):
            service.create_collection(vault.id, "outsider", "Nope")
        assert len(attempts) == 1


class TestReadModel:
    """Tests for the per-user visible listings."""

    @pytest.fixture
    def world(self, service: VaultService, vault) -> None:
        service.create_collection(vault.id, "owner", "Kitchen", collection_id="c1")
        service.create_asset("c1", "owner", title="Kettle", asset_id="a1")
        theirs = service.create_vault("member2", "Workshop", vault_id="v2")
        service.create_collection(theirs.id, "member2", "Bench", collection_id="c2")
        service.create_asset("c2", "member2", title="Vise", asset_id="a2")
        service.upsert_membership(theirs.id, "member2", "owner")

    def test_visible_vaults(self, service: VaultService, world) -> None:
        """Owned vaults come first, shared vaults after."""
        assert [v.id for v in service.visible_vaults("owner")] == ["v1", "v2"]
        assert [v.id for v in service.owned_vaults("owner")] == ["v1"]
        assert [v.id for v in service.shared_vaults("owner")] == ["v2"]
        assert service.visible_vaults("outsider") == []

    def test_visible_collections_and_assets(self, service: VaultService, world) -> None:
        """Listings cover everything the user may View."""
        assert {c.id for c in service.visible_collections("owner")} == {"c1", "c2"}
        assert [c.id for c in service.visible_collections("member2")] == ["c2"]
        assert {a.id for a in service.visible_assets("owner")} == {"a1", "a2"}
        assert [a.id for a in service.visible_assets("owner", collection_id="c2")] == ["a2"]
        assert service.visible_assets("outsider", collection_id="c1") == []

    def test_revocation_hides_shared_vault(self, service: VaultService, world) -> None:
        """A revoked delegate no longer sees the vault or its contents."""
        service.revoke_membership("v2", "member2", "owner")
        assert [v.id for v in service.visible_vaults("owner")] == ["v1"]
        assert service.shared_vaults("owner") == []
        assert service.visible_collections("owner", vault_id="v2") == []


class TestEndToEnd:
    """The owner / delegate walkthrough."""

    def test_scenario(self, service: VaultService, store) -> None:
        """Share, scoped move grant, delegate move, vault deletion."""
        vault = service.create_vault("owner", "V")
        assert service.list_memberships(vault.id, "owner")[0].role.value == "OWNER"

        service.upsert_membership(vault.id, "owner", "delegate", {"Edit": True})
        assert service.resolve("delegate", ResourceRef.vault(vault.id), Action.EDIT)
        assert not service.resolve("delegate", ResourceRef.vault(vault.id), Action.DELETE)

        c1 = service.create_collection(vault.id, "owner", "C1")
        c2 = service.create_collection(vault.id, "owner", "C2")
        a1 = service.create_asset(c1.id, "owner", title="A1")
        with pytest.raises(PermissionDeniedError):
            service.create_collection(vault.id, "delegate", "Mine")

        service.upsert_grant(vault.id, "owner", "COLLECTION", c1.id, "delegate", {"Move": True})
        moved = service.move_asset(a1.id, c2.id, "delegate")
        assert moved.asset.collection_id == c2.id

        service.delete_vault(vault.id, "owner")
        for cls, record_id in ((Collection, c1.id), (Collection, c2.id), (Asset, a1.id), (Vault, vault.id)):
            assert store.get(cls, record_id) is None
        assert store.find(Membership, vault_id=vault.id) == []
        assert store.find(PermissionGrant, vault_id=vault.id) == []
        assert not service.resolve("delegate", ResourceRef.vault(vault.id), Action.VIEW)
