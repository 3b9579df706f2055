"""
Utility methods for database operations
"""
import logging

from psycopg import AsyncConnection

log = logging.getLogger(__name__)


async def truncate_all_tables(conn: AsyncConnection) -> None:
    """Truncate all tables - useful for tests"""
    async with conn.cursor() as cur:
        await cur.execute("TRUNCATE TABLE early_access_tokens")
    log.debug("All tables truncated")


async def ping(conn: AsyncConnection) -> None:
    async with conn.cursor() as cur:
        await cur.execute("SELECT 1")
