import logging

from fastapi import APIRouter, Depends, Response, status

from access_core.data_model.token import TokenValidation, TokenRedemption, InvalidReason
from access_core.data_model.token_requests import ValidateTokenRequest, RedeemTokenRequest
from access_core.service.exceptions import TokenNotRedeemable
from access_core.service.redemption import RedemptionCoordinator
from access_core.web.dependencies import get_coordinator, rate_limited

log = logging.getLogger(__name__)

router = APIRouter(
    prefix="/tokens",
    dependencies=[Depends(rate_limited)],
)

_STATUS_BY_REASON = {
    InvalidReason.BAD_FORMAT: status.HTTP_400_BAD_REQUEST,
    InvalidReason.NOT_FOUND: status.HTTP_404_NOT_FOUND,
}


@router.post("/validate", response_model=TokenValidation)
async def validate_token(
    body: ValidateTokenRequest,
    coordinator: RedemptionCoordinator = Depends(get_coordinator),
):
    return await coordinator.validate_token(body.code)


@router.post("/redeem", response_model=TokenRedemption)
async def redeem_token(
    body: RedeemTokenRequest,
    response: Response,
    coordinator: RedemptionCoordinator = Depends(get_coordinator),
):
    try:
        token = await coordinator.redeem_token(body.code, body.identity, body.metadata)
    except TokenNotRedeemable as e:
        log.info(e)
        response.status_code = _STATUS_BY_REASON.get(e.reason, status.HTTP_409_CONFLICT)
        return TokenRedemption(redeemed=False, reason=e.reason)
    return TokenRedemption(redeemed=True, token=token)
