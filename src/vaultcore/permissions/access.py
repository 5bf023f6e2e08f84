"""Permission resolution for vaults, collections and assets.

``resolve()`` is the single decision point every mutating operation goes
through. It is a pure read: it looks at the vault, the caller's membership
and any scoped grants through a ``StoreView`` and answers yes or no.
"""

from __future__ import annotations

import logging
from typing import Optional, Union

from pydantic import BaseModel

from ..models import Asset, Collection, Membership, PermissionGrant, ResourceRef, Vault, grant_id, membership_id
from ..store.base import StoreView
from .constants import Action, ResourceKind, ScopeType
from .presets import PermissionSet

logger = logging.getLogger(__name__)

Resource = Union[Vault, Collection, Asset]


def locate(view: StoreView, resource: ResourceRef) -> tuple[Vault, Resource] | None:
    """Return ``(vault, record)`` for a reference, or None if either is missing."""
    record: Optional[Resource]
    if resource.kind is ResourceKind.VAULT:
        record = view.get(Vault, resource.id)
        return (record, record) if record is not None else None
    if resource.kind is ResourceKind.COLLECTION:
        record = view.get(Collection, resource.id)
    else:
        record = view.get(Asset, resource.id)
    if record is None:
        return None
    vault = view.get(Vault, record.vault_id)
    if vault is None:
        return None
    return vault, record


def active_membership(view: StoreView, vault_id: str, user_id: str) -> Membership | None:
    """The user's membership on a vault if it is ACTIVE."""
    membership = view.get(Membership, membership_id(vault_id, user_id))
    if membership is None or membership.vault_id != vault_id or membership.user_id != user_id:
        return None
    if membership.is_active:
        return membership
    return None


def find_grant(
    view: StoreView,
    vault_id: str,
    scope_type: ScopeType,
    scope_id: str,
    user_id: str,
) -> PermissionGrant | None:
    grant = view.get(PermissionGrant, grant_id(vault_id, scope_type, scope_id, user_id))
    if grant is None or (grant.vault_id, grant.scope_type, grant.scope_id, grant.user_id) != (
        vault_id,
        scope_type,
        scope_id,
        user_id,
    ):
        return None
    return grant


def _grant_scopes(record: Resource) -> list[tuple[ScopeType, str]]:
    """Grant scopes consulted for a resource, narrowest first.

    An asset is covered by grants on itself and on its parent collection.
    """
    if isinstance(record, Asset):
        return [(ScopeType.ASSET, record.id), (ScopeType.COLLECTION, record.collection_id)]
    if isinstance(record, Collection):
        return [(ScopeType.COLLECTION, record.id)]
    return []


def resolve(
    view: StoreView,
    user_id: str,
    resource: ResourceRef,
    action: Action | str,
    *,
    collection_create_grants: bool = False,
) -> bool:
    """Decide whether ``user_id`` may perform ``action`` on ``resource``.

    Checks in order (first match wins):
    1. Unknown resource or vault → deny.
    2. Vault owner → allow every action.
    3. No ACTIVE membership on the resource's vault → deny.
    4. ``Create`` on a vault (new collection) or collection (new asset) →
       membership ``Create``; with ``collection_create_grants`` a
       COLLECTION grant carrying ``Create`` also counts.
    5. ``View`` → allow.
    6. Vault itself: ``Edit`` follows the membership; ``Move`` and
       ``Delete`` are owner-only.
    7. ``Edit``/``Move``/``Delete`` on a collection or asset → a grant on
       the resource (for assets, then on the parent collection), failing
       that the membership bit.
    8. Otherwise deny.

    Args:
        view: Store or open transaction to read from.
        user_id: Caller.
        resource: Vault, collection or asset reference.
        action: One of View, Create, Edit, Move, Delete.
        collection_create_grants: Accept collection-level Create grants.

    Returns:
        True if the action is allowed.

    Example::

        resolve(store, owner_id, ResourceRef.vault(v.id), Action.DELETE)     # True
        resolve(store, delegate_id, ResourceRef.vault(v.id), Action.DELETE)  # False
    """
    action = Action.parse(action)
    located = locate(view, resource)
    if located is None:
        return False
    vault, record = located

    if vault.owner_id == user_id:
        return True

    membership = active_membership(view, vault.id, user_id)
    if membership is None:
        return False

    if action is Action.CREATE:
        if resource.kind is ResourceKind.ASSET:
            return False
        if membership.permissions.create:
            return True
        if collection_create_grants and resource.kind is ResourceKind.COLLECTION:
            grant = find_grant(view, vault.id, ScopeType.COLLECTION, resource.id, user_id)
            return grant is not None and grant.permissions.create
        return False

    if action is Action.VIEW:
        return True

    if resource.kind is ResourceKind.VAULT:
        return action is Action.EDIT and membership.permissions.edit

    for scope_type, scope_id in _grant_scopes(record):
        grant = find_grant(view, vault.id, scope_type, scope_id, user_id)
        if grant is not None and grant.permissions.allows(action):
            return True

    return membership.permissions.allows(action)


def effective_permissions(
    view: StoreView,
    user_id: str,
    resource: ResourceRef,
    *,
    collection_create_grants: bool = False,
) -> PermissionSet | None:
    """All actions the user may perform on a resource; None if they cannot even view it."""
    allowed = [
        action
        for action in Action
        if resolve(view, user_id, resource, action, collection_create_grants=collection_create_grants)
    ]
    if Action.VIEW not in allowed:
        return None
    return PermissionSet.from_actions(allowed)


class Capabilities(BaseModel):
    """UI-facing summary of what a user can do with one resource."""

    role: Optional[str] = None
    can_view: bool = False
    can_create: bool = False
    can_edit: bool = False
    can_move: bool = False
    can_delete: bool = False
    can_share: bool = False


def capabilities(
    view: StoreView,
    user_id: str,
    resource: ResourceRef,
    *,
    collection_create_grants: bool = False,
) -> Capabilities:
    """Summarize a user's rights on a resource.

    ``can_share`` (managing memberships and grants) is owner-only.
    """
    located = locate(view, resource)
    if located is None:
        return Capabilities()
    vault = located[0]

    perms = effective_permissions(view, user_id, resource, collection_create_grants=collection_create_grants)
    if perms is None:
        return Capabilities()

    is_owner = vault.owner_id == user_id
    return Capabilities(
        role="owner" if is_owner else "delegate",
        can_view=True,
        can_create=perms.create,
        can_edit=perms.edit,
        can_move=perms.move,
        can_delete=perms.delete,
        can_share=is_owner,
    )


__all__ = [
    "Capabilities",
    "active_membership",
    "capabilities",
    "effective_permissions",
    "find_grant",
    "locate",
    "resolve",
]
