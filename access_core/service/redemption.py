import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from access_core.data_model.token import (
    TokenRecord,
    TokenFilter,
    TokenStats,
    TokenValidation,
    StatusFilter,
    InvalidReason,
    utc_now,
    MAX_IDENTITY_LENGTH,
)
from access_core.db.token_store import TokenStore
from access_core.service import code_codec
from access_core.service.exceptions import DuplicateCode, InvalidFormat
from access_core.util.signals import on_tokens_created, on_token_redeemed, on_token_deactivated

log = logging.getLogger(__name__)

GENERATE_ATTEMPTS_COMPLEX = 10
GENERATE_ATTEMPTS_SIMPLE = 50


class RedemptionCoordinator:
    """
    Issues, validates and redeems early access tokens against a token store.

    Codes are checked for a valid format before the store is touched.
    Redemption itself is delegated to the store as one atomic operation,
    so concurrent redeemers of a shared code never exceed its quota.
    """

    def __init__(self, store: TokenStore, clock: Callable[[], datetime] = utc_now):
        self.store = store
        self.clock = clock

    async def create_token(
        self,
        code: str,
        max_redemptions: int = 1,
        created_by: str = None,
        expires_at: datetime = None,
        metadata: Dict[str, Any] = None,
    ) -> TokenRecord:
        if not code_codec.validate_format(code):
            raise InvalidFormat(code)
        if max_redemptions < 1:
            raise ValueError(f"max_redemptions must be at least 1, got {max_redemptions}")
        _check_identity_length(created_by, "created_by")

        token = TokenRecord.create(
            code,
            max_redemptions=max_redemptions,
            created_by=created_by,
            expires_at=expires_at,
            metadata=metadata,
        )
        token = await self.store.insert(token)
        log.info(f"created {token}")
        on_tokens_created.send([token])
        return token

    async def generate_token(
        self,
        max_redemptions: int = 1,
        simple_format: bool = False,
        custom_prefix: str = None,
        created_by: str = None,
        expires_at: datetime = None,
        metadata: Dict[str, Any] = None,
    ) -> TokenRecord:
        """Generate a code that does not exist yet and store a token for it."""
        simple = simple_format or max_redemptions > 1
        max_attempts = GENERATE_ATTEMPTS_SIMPLE if simple else GENERATE_ATTEMPTS_COMPLEX
        for _ in range(max_attempts):
            code = code_codec.generate_code(simple=simple, custom_prefix=custom_prefix)
            if not await self.store.exists(code):
                break
        else:
            raise code_codec.ExhaustedRetries(f"no unused code found after {max_attempts} attempts")

        return await self.create_token(
            code,
            max_redemptions=max_redemptions,
            created_by=created_by,
            expires_at=expires_at,
            metadata=metadata,
        )

    async def create_token_batch(
        self,
        count: int,
        max_redemptions: int = 1,
        simple_format: bool = False,
        start_sequence: int = None,
        custom_prefix: str = None,
        created_by: str = None,
        expires_at: datetime = None,
        metadata: Dict[str, Any] = None,
    ) -> List[TokenRecord]:
        """
        Generate up to ``count`` tokens. Shared tokens always use the simple format.

        Codes that already exist in the store are skipped, not retried, so the
        result can hold fewer than ``count`` tokens. Callers must check its length.
        """
        if max_redemptions < 1:
            raise ValueError(f"max_redemptions must be at least 1, got {max_redemptions}")
        _check_identity_length(created_by, "created_by")
        simple = simple_format or max_redemptions > 1
        codes = code_codec.generate_batch(
            count,
            start_sequence=start_sequence,
            simple=simple,
            custom_prefix=custom_prefix,
        )

        created = []
        for code in codes:
            if await self.store.exists(code):
                log.debug(f"skipping existing code {code[:6]}...")
                continue
            token = TokenRecord.create(
                code,
                max_redemptions=max_redemptions,
                created_by=created_by,
                expires_at=expires_at,
                metadata=metadata,
            )
            try:
                created.append(await self.store.insert(token))
            except DuplicateCode:
                log.debug(f"skipping code {code[:6]}... that was inserted concurrently")

        if len(created) < count:
            log.warning(f"created only {len(created)} of {count} requested tokens")
        else:
            log.info(f"created {len(created)} tokens with max {max_redemptions} redemptions each")
        on_tokens_created.send(created)
        return created

    async def validate_token(self, code: str) -> TokenValidation:
        if not code_codec.validate_format(code):
            result = TokenValidation(valid=False, reason=InvalidReason.BAD_FORMAT)
        else:
            token = await self.store.get_by_code(code)
            if token is None:
                result = TokenValidation(valid=False, reason=InvalidReason.NOT_FOUND)
            elif reason := token.ineligibility_at(self.clock()):
                result = TokenValidation(valid=False, reason=reason)
            else:
                result = TokenValidation(valid=True, token=token)

        log.info(f"token validation: {code[:6]}... - {'VALID' if result.valid else result.reason.value}")
        return result

    async def redeem_token(self, code: str, identity: str, metadata: Dict[str, Any] = None) -> TokenRecord:
        """
        Redeem one unit of the token's quota for identity.

        Raises InvalidFormat without touching the store, and ValueError for an empty
        or overlong identity. Otherwise the store checks and updates the token
        atomically and raises TokenNotFound, TokenInactive, AlreadyRedeemed,
        TokenExpired or TokenExhausted if it cannot be redeemed.
        """
        if not code_codec.validate_format(code):
            raise InvalidFormat(code)
        if not identity:
            raise ValueError("identity must not be empty")
        _check_identity_length(identity, "identity")

        token = await self.store.atomic_redeem(code, identity, self.clock(), metadata or {})
        log.info(f"redeemed {token} for {identity}")
        on_token_redeemed.send(token, identity=identity)
        return token

    async def deactivate_token(self, code: str) -> None:
        await self.store.set_active(code, False)
        log.info(f"deactivated token {code[:6]}...")
        on_token_deactivated.send(code)

    async def token_exists(self, code: str) -> bool:
        return await self.store.exists(code)

    async def get_token(self, code: str) -> Optional[TokenRecord]:
        return await self.store.get_by_code(code)

    async def query_tokens(
        self,
        status: StatusFilter = None,
        created_by: str = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[TokenRecord]:
        token_filter = TokenFilter(status=status, created_by=created_by, limit=limit, offset=offset)
        return await self.store.list(token_filter, self.clock())

    async def token_stats(self) -> TokenStats:
        return await self.store.stats(self.clock())

    async def check_store(self) -> None:
        await self.store.ping()


def _check_identity_length(value: Optional[str], name: str):
    if value is not None and len(value) > MAX_IDENTITY_LENGTH:
        raise ValueError(f"{name} must not be longer than {MAX_IDENTITY_LENGTH} characters, got {len(value)}")
