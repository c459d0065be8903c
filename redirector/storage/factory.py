"""Config store factory — backend selection and initialization.

Backend selection (config.storage.backend):
  - "sqlite" (default) → SQLiteStore at config.storage.path
  - "memory"           → MemoryStore (state is lost on restart)

SQLiteStore.initialize() raises RuntimeError on an incompatible schema
version; the lifespan lets it propagate so startup is refused.
"""

from __future__ import annotations

from redirector.storage.protocol import ConfigStore
from redirector.utils.logger import get_logger

logger = get_logger(__name__)


async def create_store(config: object) -> ConfigStore:
    """Create and initialize the configured store.

    Args:
        config: Application Config object (redirector.config.Config).

    Returns:
        Initialized ConfigStore ready for use.
    """
    storage = getattr(config, "storage", None)
    backend = getattr(storage, "backend", "sqlite")

    if backend == "memory":
        from redirector.storage.memory import MemoryStore

        logger.info("config_store_selected", backend="MemoryStore")
        return MemoryStore()

    from redirector.storage.sqlite_store import SQLiteStore

    db_path = getattr(storage, "path", "~/.redirector/state.db")
    store = SQLiteStore(db_path=db_path)
    await store.initialize()
    logger.info(
        "config_store_selected",
        backend="SQLiteStore",
        db_path=db_path,
        fresh_install=store.created,
    )
    return store
