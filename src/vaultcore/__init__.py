from .permissions import Action, PermissionSet, ResourceKind, Role, ScopeType, resolve
from .models import Asset, AuditEvent, Collection, Membership, PermissionGrant, ResourceRef, User, Vault
from .config import VaultCoreConfig, LogLevel, load_config_from_env
from .exceptions import (
    VaultCoreError,
    NotFoundError,
    PermissionDeniedError,
    PreconditionFailedError,
    InvariantViolationError,
    ConflictError,
    ConfigurationError,
    StorageError,
    ValidationError,
)
from .logging import (
    safe_preview,
    redact_secrets,
    safe_log_value,
    VaultLogFormatter,
    VaultLoggerAdapter,
    setup_logging,
    get_vault_logger,
)
from .store import EntityStore, InMemoryEntityStore, build_store
from .service import VaultService

__version__ = "0.1.0"

__all__ = [
    'Action',
    'PermissionSet',
    'ResourceKind',
    'Role',
    'ScopeType',
    'resolve',
    'Asset',
    'AuditEvent',
    'Collection',
    'Membership',
    'PermissionGrant',
    'ResourceRef',
    'User',
    'Vault',
    'VaultCoreConfig',
    'LogLevel',
    'load_config_from_env',
    'VaultCoreError',
    'NotFoundError',
    'PermissionDeniedError',
    'PreconditionFailedError',
    'InvariantViolationError',
    'ConflictError',
    'ConfigurationError',
    'StorageError',
    'ValidationError',
    'safe_preview',
    'redact_secrets',
    'safe_log_value',
    'VaultLogFormatter',
    'VaultLoggerAdapter',
    'setup_logging',
    'get_vault_logger',
    'EntityStore',
    'InMemoryEntityStore',
    'build_store',
    'VaultService',
]
