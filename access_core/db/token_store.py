import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional

import psycopg
from psycopg import errors
from psycopg_pool import PoolTimeout

from access_core.data_model.token import TokenRecord, TokenFilter, TokenStats, InvalidReason
from access_core.db import db_connection, tokens, util
from access_core.service.exceptions import DuplicateCode, StorageUnavailable, not_redeemable
from access_core.util.misc import format_error

log = logging.getLogger(__name__)


class TokenStore(ABC):
    @abstractmethod
    async def insert(self, token: TokenRecord) -> TokenRecord:
        """Persist a new token, raises DuplicateCode if the code is taken."""

    @abstractmethod
    async def get_by_code(self, code: str) -> Optional[TokenRecord]:
        ...

    @abstractmethod
    async def exists(self, code: str) -> bool:
        ...

    @abstractmethod
    async def atomic_redeem(
        self, code: str, identity: str, now: datetime, metadata_patch: Dict[str, Any]
    ) -> TokenRecord:
        """
        Check eligibility and record the redemption as one atomic step.
        Raises a TokenNotRedeemable subclass if the token cannot be redeemed by identity.
        """

    @abstractmethod
    async def set_active(self, code: str, is_active: bool) -> None:
        """Raises TokenNotFound if no token has this code."""

    @abstractmethod
    async def list(self, token_filter: TokenFilter, now: datetime) -> List[TokenRecord]:
        """Tokens matching the filter, newest first."""

    @abstractmethod
    async def stats(self, now: datetime) -> TokenStats:
        ...

    async def ping(self) -> None:
        """Raises StorageUnavailable if the store cannot be reached."""

    async def close(self) -> None:
        pass


def redemption_ineligibility(
    token: Optional[TokenRecord], identity: str, now: datetime
) -> Optional[InvalidReason]:
    if token is None:
        return InvalidReason.NOT_FOUND
    if not token.is_active:
        return InvalidReason.INACTIVE
    if identity in token.redeemed_users:
        return InvalidReason.ALREADY_REDEEMED
    return token.ineligibility_at(now)


class PostgresTokenStore(TokenStore):
    async def insert(self, token: TokenRecord) -> TokenRecord:
        try:
            async with self._conn() as conn:
                return await tokens.insert(conn, token)
        except errors.UniqueViolation as e:
            raise DuplicateCode(f"code {token.code[:6]}... already exists") from e

    async def get_by_code(self, code: str) -> Optional[TokenRecord]:
        async with self._conn() as conn:
            return await tokens.get_by_code(conn, code)

    async def exists(self, code: str) -> bool:
        async with self._conn() as conn:
            return await tokens.exists(conn, code)

    async def atomic_redeem(
        self, code: str, identity: str, now: datetime, metadata_patch: Dict[str, Any]
    ) -> TokenRecord:
        async with self._conn() as conn:
            token = await tokens.redeem_if_eligible(conn, code, identity, now, metadata_patch)
            if token is not None:
                return token
            # the update did not match, read the current row to tell the caller why
            current = await tokens.get_by_code(conn, code)

        reason = redemption_ineligibility(current, identity, now)
        # a token inserted after the update ran did not exist for this redemption
        raise not_redeemable(code, reason or InvalidReason.NOT_FOUND)

    async def set_active(self, code: str, is_active: bool) -> None:
        async with self._conn() as conn:
            found = await tokens.set_active(conn, code, is_active)
        if not found:
            raise not_redeemable(code, InvalidReason.NOT_FOUND)

    async def list(self, token_filter: TokenFilter, now: datetime) -> List[TokenRecord]:
        async with self._conn() as conn:
            return await tokens.query(conn, token_filter, now)

    async def stats(self, now: datetime) -> TokenStats:
        async with self._conn() as conn:
            return await tokens.stats(conn, now)

    async def ping(self) -> None:
        async with self._conn() as conn:
            await util.ping(conn)

    async def close(self) -> None:
        await db_connection.close_connection_pool()

    @asynccontextmanager
    async def _conn(self):
        try:
            async with db_connection.db_conn() as conn:
                yield conn
        except (psycopg.OperationalError, PoolTimeout) as e:
            log.error(f"token storage unavailable: {format_error(e)}")
            raise StorageUnavailable(format_error(e)) from e
