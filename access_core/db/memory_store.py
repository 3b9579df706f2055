import json
import logging
import threading
import time
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from tinydb import TinyDB, where
from tinydb.storages import MemoryStorage
from tinydb.table import Table

from access_core.data_model.token import TokenRecord, TokenFilter, TokenStats, StatusFilter, InvalidReason
from access_core.db.token_store import TokenStore, redemption_ineligibility
from access_core.service.exceptions import DuplicateCode, not_redeemable

log = logging.getLogger(__name__)


class TinyTokenStore(TokenStore):
    """
    Token store on top of tinydb, either in memory or in a JSON file.
    Meant for development and tests. All operations are serialized by one lock,
    which also makes the redemption check and update atomic.
    """

    def __init__(self, path: str = None):
        if path:
            file = Path(path)
            if file.is_dir():
                raise Exception(f"{file} is a directory, should be a file or not existing")
            self._db = TinyDB(str(file), create_dirs=True, sort_keys=True, indent=2)
            log.info(f"using tinydb token store at {file}")
        else:
            self._db = TinyDB(storage=MemoryStorage)
            log.info("using in-memory tinydb token store")
        self._lock = threading.RLock()

    async def insert(self, token: TokenRecord) -> TokenRecord:
        with self._tokens() as tokens:
            if tokens.contains(where("code") == token.code):
                raise DuplicateCode(f"code {token.code[:6]}... already exists")
            tokens.insert(_to_document(token))
        return token

    async def get_by_code(self, code: str) -> Optional[TokenRecord]:
        with self._tokens() as tokens:
            return _get(tokens, code)

    async def exists(self, code: str) -> bool:
        with self._tokens() as tokens:
            return tokens.contains(where("code") == code)

    async def atomic_redeem(
        self, code: str, identity: str, now: datetime, metadata_patch: Dict[str, Any]
    ) -> TokenRecord:
        with self._tokens() as tokens:
            token = _get(tokens, code)
            if reason := redemption_ineligibility(token, identity, now):
                raise not_redeemable(code, reason)

            redeemed = token.model_copy(
                update={
                    "current_redemptions": token.current_redemptions + 1,
                    "redeemed_users": [*token.redeemed_users, identity],
                    "redeemed_by": token.redeemed_by or identity,
                    "redeemed_at": token.redeemed_at or now,
                    "metadata": {**token.metadata, **metadata_patch},
                }
            )
            tokens.update(_to_document(redeemed), where("code") == code)
        return redeemed

    async def set_active(self, code: str, is_active: bool) -> None:
        with self._tokens() as tokens:
            updated_ids = tokens.update({"is_active": is_active}, where("code") == code)
        if not updated_ids:
            raise not_redeemable(code, InvalidReason.NOT_FOUND)

    async def list(self, token_filter: TokenFilter, now: datetime) -> List[TokenRecord]:
        with self._tokens() as tokens:
            all_tokens = [_from_document(d) for d in tokens.all()]

        matching = [
            t for t in all_tokens
            if (token_filter.status is None or t.matches_status(token_filter.status, now))
            and (token_filter.created_by is None or t.created_by == token_filter.created_by)
        ]
        matching.sort(key=lambda t: t.created_at, reverse=True)
        return matching[token_filter.offset:token_filter.offset + token_filter.limit]

    async def stats(self, now: datetime) -> TokenStats:
        with self._tokens() as tokens:
            all_tokens = [_from_document(d) for d in tokens.all()]

        return TokenStats(
            total_created=len(all_tokens),
            total_redeemed=sum(t.current_redemptions for t in all_tokens),
            total_available=sum(t.max_redemptions for t in all_tokens),
            total_active=sum(1 for t in all_tokens if t.matches_status(StatusFilter.ACTIVE, now)),
            total_expired=sum(1 for t in all_tokens if t.matches_status(StatusFilter.EXPIRED, now)),
        )

    async def ping(self) -> None:
        with self._tokens():
            pass

    async def close(self) -> None:
        with self._lock:
            self._db.close()

    @contextmanager
    def _tokens(self) -> Table:
        start_time = time.monotonic()
        with self._lock:
            wait_time = time.monotonic()
            yield self._db.table("early_access_tokens")
            end_time = time.monotonic()
        if end_time - start_time > 1:
            log.debug(
                f"waiting for token store lock for {wait_time - start_time :.3f}s, "
                f"operation took {end_time - wait_time :.3f}s"
            )


def _get(tokens: Table, code: str) -> Optional[TokenRecord]:
    if document := tokens.get(where("code") == code):
        return _from_document(document)
    return None


def _to_document(token: TokenRecord) -> dict:
    return json.loads(token.model_dump_json())


def _from_document(document: dict) -> TokenRecord:
    return TokenRecord.model_validate(dict(document))
