"""Shared fixtures: an in-memory service with a handful of known users."""

from __future__ import annotations

import pytest

from vaultcore import InMemoryEntityStore, Vault, VaultCoreConfig, VaultService

USERS = ("owner", "delegate", "member2", "outsider")


@pytest.fixture
def store() -> InMemoryEntityStore:
    return InMemoryEntityStore()


@pytest.fixture
def config() -> VaultCoreConfig:
    return VaultCoreConfig()


@pytest.fixture
def service(store: InMemoryEntityStore, config: VaultCoreConfig) -> VaultService:
    svc = VaultService(store=store, config=config)
    for uid in USERS:
        svc.register_user(uid, email=f"{uid}@example.com", username=uid)
    return svc


@pytest.fixture
def vault(service: VaultService) -> Vault:
    return service.create_vault("owner", "Home", vault_id="v1")
