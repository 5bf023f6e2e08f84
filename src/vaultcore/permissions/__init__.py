"""Permission model for vaults, collections and assets.

Defines:
- Action, Role, MembershipStatus, ScopeType, ResourceKind: the vocabulary
- PermissionSet: five-key permission record (View always on)
- LEGACY_ROLE_PRESETS / permissions_for_role(): legacy share roles
- resolve(): the single permission decision point
- effective_permissions() / capabilities(): summaries built on resolve()
"""

from .constants import (
    GRANTABLE_SCOPE_ACTIONS,
    Action,
    MembershipStatus,
    ResourceKind,
    Role,
    ScopeType,
)
from .presets import LEGACY_ROLE_PRESETS, PermissionSet, normalize_role, permissions_for_role
from .access import (
    Capabilities,
    active_membership,
    capabilities,
    effective_permissions,
    find_grant,
    locate,
    resolve,
)

__all__ = [
    "GRANTABLE_SCOPE_ACTIONS",
    "LEGACY_ROLE_PRESETS",
    "Action",
    "Capabilities",
    "MembershipStatus",
    "PermissionSet",
    "ResourceKind",
    "Role",
    "ScopeType",
    "active_membership",
    "capabilities",
    "effective_permissions",
    "find_grant",
    "locate",
    "normalize_role",
    "permissions_for_role",
    "resolve",
]
