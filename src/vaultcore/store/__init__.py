"""Entity store backends.

- ``InMemoryEntityStore`` — process-local, lock-serialized transactions.
- ``RedisEntityStore`` — shared Redis, WATCH/MULTI/EXEC transactions
  (requires the ``redis`` extra).
- ``build_store()`` — choose a backend from VaultCoreConfig.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

from .base import EntityStore, StoreTransaction, StoreView
from .memory import InMemoryEntityStore

if TYPE_CHECKING:
    from ..config import VaultCoreConfig

logger = logging.getLogger(__name__)


def build_store(config: Optional[VaultCoreConfig] = None) -> EntityStore:
    """Redis store when ``config.redis_url`` is set, in-memory otherwise."""
    if config is None or not config.redis_url:
        logger.debug("Using in-memory entity store")
        return InMemoryEntityStore()

    from ..exceptions import ConfigurationError

    try:
        from .redis_store import RedisEntityStore
    except ImportError as e:
        raise ConfigurationError(
            "REDIS_URL is set but the redis package is not installed (pip install 'vaultcore[redis]')"
        ) from e

    logger.info("Using Redis entity store (prefix=%s)", config.store_prefix)
    return RedisEntityStore.from_url(config.redis_url, prefix=config.store_prefix)


__all__ = [
    "EntityStore",
    "InMemoryEntityStore",
    "StoreTransaction",
    "StoreView",
    "build_store",
]
