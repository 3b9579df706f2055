"""
Database access methods for early access tokens
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from psycopg import AsyncConnection
from psycopg.rows import class_row
from psycopg.types.json import Jsonb

from access_core.data_model.token import TokenRecord, TokenFilter, StatusFilter, TokenStats

_STATUS_CONDITIONS = {
    StatusFilter.ACTIVE: (
        "is_active AND current_redemptions < max_redemptions"
        " AND (expires_at IS NULL OR expires_at > %(now)s)"
    ),
    StatusFilter.REDEEMED: "current_redemptions > 0",
    StatusFilter.EXHAUSTED: "current_redemptions >= max_redemptions",
    StatusFilter.EXPIRED: "expires_at IS NOT NULL AND expires_at <= %(now)s",
    StatusFilter.INACTIVE: "NOT is_active",
}


async def get_by_code(conn: AsyncConnection, code: str) -> Optional[TokenRecord]:
    """Get token by code"""
    async with conn.cursor(row_factory=class_row(TokenRecord)) as cur:
        await cur.execute("SELECT * FROM early_access_tokens WHERE code = %s", (code,))
        return await cur.fetchone()


async def exists(conn: AsyncConnection, code: str) -> bool:
    """Check whether a token with this code exists"""
    async with conn.cursor() as cur:
        await cur.execute("SELECT 1 FROM early_access_tokens WHERE code = %s", (code,))
        return await cur.fetchone() is not None


async def insert(conn: AsyncConnection, token: TokenRecord) -> TokenRecord:
    """Insert a new token, raises psycopg.errors.UniqueViolation on duplicate codes"""
    async with conn.cursor(row_factory=class_row(TokenRecord)) as cur:
        await cur.execute(
            """
            INSERT INTO early_access_tokens
                (id, code, created_by, created_at, max_redemptions, expires_at, is_active, metadata)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING *
            """,
            (
                token.id,
                token.code,
                token.created_by,
                token.created_at,
                token.max_redemptions,
                token.expires_at,
                token.is_active,
                Jsonb(token.metadata),
            ),
        )
        return await cur.fetchone()


async def redeem_if_eligible(
    conn: AsyncConnection,
    code: str,
    identity: str,
    now: datetime,
    metadata_patch: Dict[str, Any],
) -> Optional[TokenRecord]:
    """
    Redeem the token for identity in a single guarded update.
    Returns None if the token does not exist or is not eligible for this identity.
    Concurrent updates of the same row wait for each other and re-check the guard.
    """
    async with conn.cursor(row_factory=class_row(TokenRecord)) as cur:
        await cur.execute(
            """
            UPDATE early_access_tokens SET
                current_redemptions = current_redemptions + 1,
                redeemed_users = array_append(redeemed_users, %(identity)s::text),
                redeemed_by = COALESCE(redeemed_by, %(identity)s::text),
                redeemed_at = COALESCE(redeemed_at, %(now)s),
                metadata = metadata || %(metadata)s
            WHERE code = %(code)s
                AND is_active
                AND current_redemptions < max_redemptions
                AND (expires_at IS NULL OR expires_at > %(now)s)
                AND NOT (%(identity)s::text = ANY(redeemed_users))
            RETURNING *
            """,
            {
                "code": code,
                "identity": identity,
                "now": now,
                "metadata": Jsonb(metadata_patch),
            },
        )
        return await cur.fetchone()


async def set_active(conn: AsyncConnection, code: str, is_active: bool) -> bool:
    """Set the active flag, returns False if no token has this code"""
    async with conn.cursor() as cur:
        await cur.execute(
            "UPDATE early_access_tokens SET is_active = %s WHERE code = %s RETURNING id",
            (is_active, code),
        )
        return await cur.fetchone() is not None


async def query(conn: AsyncConnection, token_filter: TokenFilter, now: datetime) -> List[TokenRecord]:
    """Get tokens matching the filter, newest first"""
    conditions = []
    params = {"now": now, "limit": token_filter.limit, "offset": token_filter.offset}
    if token_filter.status is not None:
        conditions.append(_STATUS_CONDITIONS[token_filter.status])
    if token_filter.created_by is not None:
        conditions.append("created_by = %(created_by)s")
        params["created_by"] = token_filter.created_by
    where = f"WHERE {' AND '.join(conditions)}" if conditions else ""

    async with conn.cursor(row_factory=class_row(TokenRecord)) as cur:
        await cur.execute(
            f"""
            SELECT * FROM early_access_tokens
            {where}
            ORDER BY created_at DESC
            LIMIT %(limit)s OFFSET %(offset)s
            """,
            params,
        )
        return await cur.fetchall()


async def stats(conn: AsyncConnection, now: datetime) -> TokenStats:
    """Raw counts over all tokens"""
    async with conn.cursor(row_factory=class_row(TokenStats)) as cur:
        await cur.execute(
            f"""
            SELECT
                COUNT(*) AS total_created,
                COALESCE(SUM(current_redemptions), 0) AS total_redeemed,
                COALESCE(SUM(max_redemptions), 0) AS total_available,
                COUNT(*) FILTER (WHERE {_STATUS_CONDITIONS[StatusFilter.ACTIVE]}) AS total_active,
                COUNT(*) FILTER (WHERE {_STATUS_CONDITIONS[StatusFilter.EXPIRED]}) AS total_expired
            FROM early_access_tokens
            """,
            {"now": now},
        )
        return await cur.fetchone()
