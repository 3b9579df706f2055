from datetime import datetime
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator

from access_core.data_model.token import MAX_IDENTITY_LENGTH


class ValidateTokenRequest(BaseModel):
    code: str

    @field_validator("code")
    @classmethod
    def strip_code(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("code must not be empty")
        return v


class RedeemTokenRequest(ValidateTokenRequest):
    identity: str = Field(..., min_length=1, max_length=MAX_IDENTITY_LENGTH)
    metadata: Dict[str, Any] = {}


class _GenerateTokensBase(BaseModel):
    count: int = Field(1, ge=1)
    custom_prefix: Optional[str] = Field(None, min_length=2, max_length=20, pattern=r"^[A-Za-z0-9]+$")
    created_by: Optional[str] = Field(None, max_length=MAX_IDENTITY_LENGTH)
    expires_at: Optional[datetime] = None
    metadata: Dict[str, Any] = {}


class UniqueTokensRequest(_GenerateTokensBase):
    kind: Literal["unique"]
    start_sequence: Optional[int] = Field(None, ge=0)
    simple_format: bool = False


class SharedTokensRequest(_GenerateTokensBase):
    kind: Literal["shared"]
    # filled from config when missing
    max_redemptions: Optional[int] = Field(None, ge=2)


GenerateTokensRequest = Annotated[
    Union[UniqueTokensRequest, SharedTokensRequest],
    Field(discriminator="kind"),
]
