"""Permission constants for vaultcore.

Provides:
- ``Action`` — the five permission keys (View, Create, Edit, Move, Delete).
- ``Role`` — membership role (OWNER / DELEGATE).
- ``MembershipStatus`` — ACTIVE / REVOKED.
- ``ScopeType`` — what a scoped grant targets (COLLECTION / ASSET).
- ``ResourceKind`` — the three levels of the containment hierarchy.
"""

from __future__ import annotations

from enum import Enum

from ..exceptions import ValidationError


class Action(str, Enum):
    """Permission keys checked by the resolver.

    Values match the keys stored on membership and grant records, so a
    permission set serializes as ``{"View": true, "Edit": false, ...}``.
    """

    VIEW = "View"
    CREATE = "Create"
    EDIT = "Edit"
    MOVE = "Move"
    DELETE = "Delete"

    @classmethod
    def parse(cls, value: str | Action) -> Action:
        """Accept ``"edit"``, ``"Edit"`` or ``Action.EDIT``."""
        if isinstance(value, Action):
            return value
        for action in cls:
            if action.value.lower() == str(value).strip().lower():
                return action
        raise ValidationError(f"Unknown action: {value!r}", action=str(value))


class Role(str, Enum):
    """Role of a membership inside a vault."""

    OWNER = "OWNER"
    DELEGATE = "DELEGATE"


class MembershipStatus(str, Enum):
    ACTIVE = "ACTIVE"
    REVOKED = "REVOKED"


class ScopeType(str, Enum):
    """Target of a scoped permission grant."""

    COLLECTION = "COLLECTION"
    ASSET = "ASSET"

    @classmethod
    def parse(cls, value: str | ScopeType) -> ScopeType:
        if isinstance(value, ScopeType):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise ValidationError(f"Unknown scope type: {value!r}", scope_type=str(value)) from None


class ResourceKind(str, Enum):
    VAULT = "vault"
    COLLECTION = "collection"
    ASSET = "asset"

    @property
    def scope_type(self) -> ScopeType | None:
        """Grant scope for this kind; vaults are covered by memberships."""
        if self is ResourceKind.COLLECTION:
            return ScopeType.COLLECTION
        if self is ResourceKind.ASSET:
            return ScopeType.ASSET
        return None


# Actions a scoped grant may carry; Create lives on memberships unless the
# collection-level create policy is enabled.
GRANTABLE_SCOPE_ACTIONS: frozenset[Action] = frozenset({Action.EDIT, Action.MOVE, Action.DELETE})


__all__ = [
    "GRANTABLE_SCOPE_ACTIONS",
    "Action",
    "MembershipStatus",
    "ResourceKind",
    "Role",
    "ScopeType",
]
