"""Permission sets and legacy role presets.

Provides:
- ``PermissionSet`` — the five-key tagged record stored on memberships and grants.
- ``LEGACY_ROLE_PRESETS`` — legacy share role → permission set.
- ``permissions_for_role()`` — resolve a legacy role string (with optional create flag).
"""

from __future__ import annotations

from typing import Any, Iterable, Mapping

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .constants import Action


class PermissionSet(BaseModel):
    """Five-key permission record.

    ``View`` is implicit for anyone holding an active membership, so it is
    forced to ``True`` on every construction and cannot be switched off.

    Example::

        PermissionSet(Edit=True).allows(Action.EDIT)    # True
        PermissionSet(Edit=True).allows(Action.DELETE)  # False
        PermissionSet(View=False).view                  # True (forced)
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    view: bool = Field(default=True, alias="View")
    create: bool = Field(default=False, alias="Create")
    edit: bool = Field(default=False, alias="Edit")
    move: bool = Field(default=False, alias="Move")
    delete: bool = Field(default=False, alias="Delete")

    @field_validator("view", mode="before")
    @classmethod
    def _force_view(cls, v: Any) -> bool:
        return True

    @classmethod
    def of(cls, *actions: Action | str) -> PermissionSet:
        """Build a set from action names: ``PermissionSet.of("Edit", Action.MOVE)``."""
        return cls.from_actions(actions)

    @classmethod
    def from_actions(cls, actions: Iterable[Action | str]) -> PermissionSet:
        wanted = {Action.parse(a) for a in actions}
        return cls(**{a.value: True for a in wanted})

    @classmethod
    def coerce(cls, value: PermissionSet | Mapping[str, Any] | Iterable[Action | str] | None) -> PermissionSet:
        """Accept a PermissionSet, a ``{"Edit": True}`` mapping or an iterable of actions."""
        if value is None:
            return cls()
        if isinstance(value, PermissionSet):
            return value
        if isinstance(value, (str, Action)):
            return cls.of(value)
        if isinstance(value, Mapping):
            flags = {Action.parse(k).value: bool(v) for k, v in value.items()}
            return cls(**flags)
        return cls.from_actions(value)

    @classmethod
    def full(cls) -> PermissionSet:
        return cls.from_actions(Action)

    def allows(self, action: Action | str) -> bool:
        return bool(getattr(self, Action.parse(action).name.lower()))

    def actions(self) -> frozenset[Action]:
        return frozenset(a for a in Action if self.allows(a))

    def without(self, *actions: Action) -> PermissionSet:
        return self.model_copy(update={a.name.lower(): False for a in actions if a is not Action.VIEW})

    def union(self, other: PermissionSet) -> PermissionSet:
        return PermissionSet.from_actions(self.actions() | other.actions())

    def to_dict(self) -> dict[str, bool]:
        return self.model_dump(by_alias=True)


# ── Legacy Role Presets ─────────────────────────────────
# Older clients stored shares as role strings. "owner" on a share never meant
# real ownership; it maps to a delegate with every permission.

LEGACY_ROLE_PRESETS: dict[str, PermissionSet] = {
    "reviewer": PermissionSet(),
    "editor": PermissionSet.of(Action.EDIT),
    "manager": PermissionSet.of(Action.EDIT, Action.MOVE, Action.CREATE),
    "owner": PermissionSet.full(),
}

_ROLE_ALIASES = {"viewer": "reviewer"}


def normalize_role(role: str | None) -> str:
    """Lower-case a legacy role and fold aliases; unknown/empty → ``reviewer``."""
    raw = (role or "").strip().lower()
    raw = _ROLE_ALIASES.get(raw, raw)
    return raw if raw in LEGACY_ROLE_PRESETS else "reviewer"


def permissions_for_role(role: str | None, can_create: bool = False) -> PermissionSet:
    """Map a legacy share role to a permission set.

    ``can_create`` is the legacy ``canCreateCollections`` flag; it only adds
    ``Create`` for editors (managers and owners already have it).

    Example::

        >>> permissions_for_role("editor", can_create=True).to_dict()
        {'View': True, 'Create': True, 'Edit': True, 'Move': False, 'Delete': False}
    """
    name = normalize_role(role)
    preset = LEGACY_ROLE_PRESETS[name]
    if name == "editor" and can_create:
        return preset.union(PermissionSet.of(Action.CREATE))
    return preset


__all__ = [
    "LEGACY_ROLE_PRESETS",
    "PermissionSet",
    "normalize_role",
    "permissions_for_role",
]
