import logging
from math import ceil

import gconf
from fastapi import HTTPException, Request, status

from access_core.service.rate_limit import FixedWindowRateLimiter, RateLimitExceeded
from access_core.service.redemption import RedemptionCoordinator

log = logging.getLogger(__name__)


def get_coordinator(request: Request) -> RedemptionCoordinator:
    return request.app.state.coordinator


def client_address(request: Request) -> str:
    """
    The address requests are counted against. X-Forwarded-For is only trusted when the
    peer is one of the configured proxies, or when no peer address is known at all.
    """
    peer = request.client.host if request.client else None
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for and (peer is None or peer in gconf.get("rate_limit.trusted_proxies", default=[])):
        return forwarded_for.split(",")[0].strip()
    return peer or "unknown"


async def rate_limited(request: Request):
    limiter: FixedWindowRateLimiter = request.app.state.rate_limiter
    try:
        limiter.hit(client_address(request))
    except RateLimitExceeded as e:
        log.info(e)
        raise HTTPException(
            status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many requests. Please try again later.",
            headers={"Retry-After": str(ceil(e.retry_after))},
        ) from e
