from contextlib import asynccontextmanager
from typing import AsyncGenerator

import gconf
from psycopg import AsyncConnection
from psycopg.conninfo import make_conninfo
from psycopg_pool import AsyncConnectionPool

# noinspection PyTypeChecker
connection_pool: AsyncConnectionPool = None


def make_conninfo_from_config() -> str:
    db = gconf.get("db")
    return make_conninfo(
        host=db["host"],
        port=db["port"],
        dbname=db["dbname"],
        user=db["user"],
        password=db["password"],
    )


async def make_and_open_connection_pool() -> AsyncConnectionPool:
    global connection_pool
    connection_pool = AsyncConnectionPool(
        conninfo=make_conninfo_from_config(),
        min_size=gconf.get("db.pool.min_size", default=2),
        max_size=gconf.get("db.pool.max_size", default=10),
        timeout=gconf.get("db.pool.timeout", default=10),
        open=False,
    )
    await connection_pool.open()
    return connection_pool


async def close_connection_pool() -> None:
    global connection_pool
    if connection_pool is not None:
        await connection_pool.close()
        connection_pool = None


def get_connection_pool() -> AsyncConnectionPool:
    if connection_pool is None:
        raise RuntimeError("No connection pool available")
    return connection_pool


@asynccontextmanager
async def db_conn() -> AsyncGenerator[AsyncConnection, None]:
    db_pool = get_connection_pool()
    async with db_pool.connection() as conn:
        yield conn
