import logging

import gconf

from access_core.db.db_connection import make_and_open_connection_pool
from access_core.db.memory_store import TinyTokenStore
from access_core.db.migration import migrate
from access_core.db.token_store import TokenStore, PostgresTokenStore

log = logging.getLogger(__name__)


async def init_token_store() -> TokenStore:
    backend = gconf.get("db.backend", default="postgres")
    if backend == "postgres":
        migrate()
        await make_and_open_connection_pool()
        log.info("database initialized")
        return PostgresTokenStore()
    if backend == "tinydb":
        return TinyTokenStore(gconf.get("db.tinydb_path", default=""))
    raise ValueError(f"unknown db backend {backend!r}, expected 'postgres' or 'tinydb'")


async def shutdown_token_store(store: TokenStore):
    await store.close()
    log.info("database shut down")
