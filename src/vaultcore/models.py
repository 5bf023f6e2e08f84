"""Entity records for vaultcore.

Plain pydantic records; no behaviour beyond identity and validation.
Every stored record declares its store ``KIND`` and the fields the store
indexes for parent lookups.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .permissions.constants import MembershipStatus, ResourceKind, Role, ScopeType
from .permissions.presets import PermissionSet


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid4().hex


def _id_part(value: str) -> str:
    # escape the separator and the escape char itself
    return value.replace("%", "%25").replace("_", "%5F")


def membership_id(vault_id: str, user_id: str) -> str:
    """``"{vault_id}_{user_id}"``, with ``_`` and ``%`` inside either id percent-escaped."""
    return f"{_id_part(vault_id)}_{_id_part(user_id)}"


def grant_id(vault_id: str, scope_type: ScopeType | str, scope_id: str, user_id: str) -> str:
    scope = scope_type.value if isinstance(scope_type, ScopeType) else str(scope_type)
    return "_".join(_id_part(part) for part in (vault_id, scope, scope_id, user_id))


class Record(BaseModel):
    """Base for stored records."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid", validate_assignment=True)

    KIND: ClassVar[str] = ""
    INDEXES: ClassVar[tuple[str, ...]] = ()

    id: str


class User(Record):
    """Identity reference issued by the external identity provider."""

    KIND: ClassVar[str] = "user"

    email: str = ""
    username: str = ""


class Vault(Record):
    KIND: ClassVar[str] = "vault"
    INDEXES: ClassVar[tuple[str, ...]] = ("owner_id",)

    owner_id: str = Field(alias="activeOwnerId")
    name: str = Field(min_length=1)
    is_default: bool = False
    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Collection(Record):
    KIND: ClassVar[str] = "collection"
    INDEXES: ClassVar[tuple[str, ...]] = ("vault_id",)

    vault_id: str
    name: str = Field(min_length=1)
    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Asset(Record):
    """An item inside a collection.

    ``vault_id`` is derived state: it always equals the parent collection's
    ``vault_id`` and is rewritten by every move.
    """

    KIND: ClassVar[str] = "asset"
    INDEXES: ClassVar[tuple[str, ...]] = ("collection_id", "vault_id")

    collection_id: str
    vault_id: str
    title: str = Field(min_length=1)
    value: float = Field(default=0.0, ge=0)
    description: Optional[str] = None
    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Membership(Record):
    """Vault-wide permission record for one user, keyed ``(vault_id, user_id)``."""

    KIND: ClassVar[str] = "membership"
    INDEXES: ClassVar[tuple[str, ...]] = ("vault_id", "user_id")

    vault_id: str
    user_id: str
    role: Role = Role.DELEGATE
    status: MembershipStatus = MembershipStatus.ACTIVE
    permissions: PermissionSet = Field(default_factory=PermissionSet)
    assigned_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    revoked_at: Optional[datetime] = None

    @model_validator(mode="before")
    @classmethod
    def _derive_id(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("id") and data.get("vault_id") and data.get("user_id"):
            data = {**data, "id": membership_id(data["vault_id"], data["user_id"])}
        return data

    @property
    def is_active(self) -> bool:
        return self.status == MembershipStatus.ACTIVE

    @property
    def is_owner(self) -> bool:
        return self.role == Role.OWNER


class PermissionGrant(Record):
    """Permission record scoped to exactly one collection or asset."""

    KIND: ClassVar[str] = "grant"
    INDEXES: ClassVar[tuple[str, ...]] = ("vault_id", "user_id", "scope_id")

    vault_id: str
    scope_type: ScopeType
    scope_id: str
    user_id: str
    permissions: PermissionSet = Field(default_factory=PermissionSet)
    granted_by: Optional[str] = None
    granted_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="before")
    @classmethod
    def _derive_id(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("id"):
            try:
                data = {
                    **data,
                    "id": grant_id(data["vault_id"], data["scope_type"], data["scope_id"], data["user_id"]),
                }
            except KeyError:
                pass  # field validation reports the missing key
        return data


class AuditEventType(str, Enum):
    VAULT_CREATED = "VAULT_CREATED"
    VAULT_UPDATED = "VAULT_UPDATED"
    VAULT_DELETED = "VAULT_DELETED"
    COLLECTION_CREATED = "COLLECTION_CREATED"
    COLLECTION_UPDATED = "COLLECTION_UPDATED"
    COLLECTION_MOVED = "COLLECTION_MOVED"
    COLLECTION_DELETED = "COLLECTION_DELETED"
    ASSET_CREATED = "ASSET_CREATED"
    ASSET_UPDATED = "ASSET_UPDATED"
    ASSET_MOVED = "ASSET_MOVED"
    ASSET_DELETED = "ASSET_DELETED"
    MEMBERSHIP_UPSERTED = "MEMBERSHIP_UPSERTED"
    MEMBERSHIP_REVOKED = "MEMBERSHIP_REVOKED"
    GRANT_UPSERTED = "GRANT_UPSERTED"
    GRANT_REVOKED = "GRANT_REVOKED"
    OWNERSHIP_TRANSFERRED = "OWNERSHIP_TRANSFERRED"


class AuditEvent(Record):
    """Append-only record of one mutation; outlives the vault it describes."""

    KIND: ClassVar[str] = "audit"
    INDEXES: ClassVar[tuple[str, ...]] = ("vault_id",)

    id: str = Field(default_factory=new_id)
    vault_id: str
    type: AuditEventType
    actor_id: Optional[str] = None
    payload: dict[str, Any] = Field(default_factory=dict)
    fingerprint: str = ""
    created_at: datetime = Field(default_factory=utcnow)


class ResourceRef(BaseModel):
    """Reference to a vault, collection or asset by id."""

    model_config = ConfigDict(frozen=True)

    kind: ResourceKind
    id: str

    @field_validator("id")
    @classmethod
    def _non_empty(cls, v: str) -> str:
        if not v:
            raise ValueError("resource id must not be empty")
        return v

    @classmethod
    def vault(cls, vault_id: str) -> ResourceRef:
        return cls(kind=ResourceKind.VAULT, id=vault_id)

    @classmethod
    def collection(cls, collection_id: str) -> ResourceRef:
        return cls(kind=ResourceKind.COLLECTION, id=collection_id)

    @classmethod
    def asset(cls, asset_id: str) -> ResourceRef:
        return cls(kind=ResourceKind.ASSET, id=asset_id)

    @classmethod
    def of(cls, record: Vault | Collection | Asset) -> ResourceRef:
        return cls(kind=ResourceKind(record.KIND), id=record.id)

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.id}"


RECORD_TYPES: dict[str, type[Record]] = {
    cls.KIND: cls for cls in (User, Vault, Collection, Asset, Membership, PermissionGrant, AuditEvent)
}


__all__ = [
    "RECORD_TYPES",
    "Asset",
    "AuditEvent",
    "AuditEventType",
    "Collection",
    "Membership",
    "PermissionGrant",
    "Record",
    "ResourceRef",
    "User",
    "Vault",
    "grant_id",
    "membership_id",
    "new_id",
    "utcnow",
]
