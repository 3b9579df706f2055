import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


class InvalidReason(str, Enum):
    BAD_FORMAT = "bad-format"
    NOT_FOUND = "not-found"
    INACTIVE = "inactive"
    EXPIRED = "expired"
    EXHAUSTED = "exhausted"
    ALREADY_REDEEMED = "already-redeemed"


class TokenStatus(str, Enum):
    ACTIVE = "active"
    EXHAUSTED = "exhausted"
    EXPIRED = "expired"
    INACTIVE = "inactive"


class StatusFilter(str, Enum):
    ACTIVE = "active"
    REDEEMED = "redeemed"
    EXHAUSTED = "exhausted"
    EXPIRED = "expired"
    INACTIVE = "inactive"


# length of the VARCHAR columns holding identities
MAX_IDENTITY_LENGTH = 255


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TokenRecord(BaseModel):
    id: str
    code: str
    created_by: Optional[str] = None
    created_at: datetime
    max_redemptions: int = Field(1, ge=1)
    current_redemptions: int = Field(0, ge=0)
    redeemed_users: List[str] = []
    redeemed_by: Optional[str] = None
    redeemed_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    is_active: bool = True
    metadata: Dict[str, Any] = {}

    @field_validator("created_at", "redeemed_at", "expires_at")
    @classmethod
    def assume_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    def __str__(self):
        return f"TokenRecord[{self.code[:6]}..., {self.current_redemptions}/{self.max_redemptions}]"

    @classmethod
    def create(
        cls,
        code: str,
        max_redemptions: int = 1,
        created_by: str = None,
        expires_at: datetime = None,
        metadata: Dict[str, Any] = None,
    ) -> "TokenRecord":
        return TokenRecord(
            id=str(uuid.uuid4()),
            code=code,
            created_by=created_by,
            created_at=utc_now(),
            max_redemptions=max_redemptions,
            expires_at=expires_at,
            metadata=metadata or {},
        )

    @property
    def is_shared(self) -> bool:
        return self.max_redemptions > 1

    def is_expired_at(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    def is_exhausted(self) -> bool:
        return self.current_redemptions >= self.max_redemptions

    def ineligibility_at(self, now: datetime) -> Optional[InvalidReason]:
        """
        Why this token cannot be redeemed at ``now``, or None if it can.
        Inactive wins over everything else, expiry is checked before exhaustion.
        """
        if not self.is_active:
            return InvalidReason.INACTIVE
        if self.is_expired_at(now):
            return InvalidReason.EXPIRED
        if self.is_exhausted():
            return InvalidReason.EXHAUSTED
        return None

    def status_at(self, now: datetime) -> TokenStatus:
        reason = self.ineligibility_at(now)
        if reason is None:
            return TokenStatus.ACTIVE
        return TokenStatus(reason.value)

    def matches_status(self, status_filter: StatusFilter, now: datetime) -> bool:
        if status_filter == StatusFilter.ACTIVE:
            return self.ineligibility_at(now) is None
        if status_filter == StatusFilter.REDEEMED:
            return self.current_redemptions > 0
        if status_filter == StatusFilter.EXHAUSTED:
            return self.is_exhausted()
        if status_filter == StatusFilter.EXPIRED:
            return self.is_expired_at(now)
        if status_filter == StatusFilter.INACTIVE:
            return not self.is_active
        raise ValueError(status_filter)


class TokenFilter(BaseModel):
    status: Optional[StatusFilter] = None
    created_by: Optional[str] = None
    limit: int = Field(50, ge=1)
    offset: int = Field(0, ge=0)


class TokenStats(BaseModel):
    total_created: int
    total_redeemed: int
    total_available: int
    total_active: int
    total_expired: int


class TokenValidation(BaseModel):
    valid: bool
    token: Optional[TokenRecord] = None
    reason: Optional[InvalidReason] = None


class TokenRedemption(BaseModel):
    redeemed: bool
    token: Optional[TokenRecord] = None
    reason: Optional[InvalidReason] = None
