import logging
from typing import List, Optional

import gconf
from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import Response

from access_core.data_model.token import TokenRecord, TokenStats, StatusFilter
from access_core.data_model.token_requests import GenerateTokensRequest, SharedTokensRequest
from access_core.service.code_codec import ExhaustedRetries
from access_core.service.exceptions import TokenNotFound
from access_core.service.redemption import RedemptionCoordinator
from access_core.web.dependencies import get_coordinator

log = logging.getLogger(__name__)

router = APIRouter(
    prefix="/tokens",
)


@router.post("", response_model=List[TokenRecord], status_code=status.HTTP_201_CREATED)
async def generate_tokens(
    body: GenerateTokensRequest,
    coordinator: RedemptionCoordinator = Depends(get_coordinator),
):
    max_batch_size = gconf.get("tokens.max_batch_size")
    if body.count > max_batch_size:
        raise HTTPException(
            status.HTTP_400_BAD_REQUEST,
            detail=f"count must not exceed {max_batch_size}",
        )

    if isinstance(body, SharedTokensRequest):
        options = dict(
            max_redemptions=body.max_redemptions or gconf.get("tokens.shared_default_max_redemptions"),
            simple_format=True,
        )
    else:
        options = dict(
            max_redemptions=1,
            simple_format=body.simple_format,
            start_sequence=body.start_sequence,
        )

    try:
        tokens = await coordinator.create_token_batch(
            body.count,
            custom_prefix=body.custom_prefix,
            created_by=body.created_by,
            expires_at=body.expires_at,
            metadata=body.metadata,
            **options,
        )
    except ExhaustedRetries as e:
        log.warning(e)
        raise HTTPException(status.HTTP_409_CONFLICT, detail=str(e)) from e
    except ValueError as e:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, detail=str(e)) from e

    log.info(f"generated {len(tokens)} {body.kind} tokens")
    return tokens


@router.get("", response_model=List[TokenRecord])
async def list_tokens(
    status_filter: Optional[StatusFilter] = Query(None, alias="status"),
    created_by: Optional[str] = None,
    limit: Optional[int] = Query(None, ge=1),
    offset: int = Query(0, ge=0),
    coordinator: RedemptionCoordinator = Depends(get_coordinator),
):
    return await coordinator.query_tokens(
        status=status_filter,
        created_by=created_by,
        limit=limit or gconf.get("tokens.default_query_limit"),
        offset=offset,
    )


@router.get("/stats", response_model=TokenStats)
async def token_stats(coordinator: RedemptionCoordinator = Depends(get_coordinator)):
    return await coordinator.token_stats()


@router.get("/{code}", response_model=TokenRecord)
async def get_token(code: str, coordinator: RedemptionCoordinator = Depends(get_coordinator)):
    if token := await coordinator.get_token(code):
        return token
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND)


@router.delete("/{code}", status_code=status.HTTP_204_NO_CONTENT, response_class=Response)
async def deactivate_token(code: str, coordinator: RedemptionCoordinator = Depends(get_coordinator)):
    try:
        await coordinator.deactivate_token(code)
    except TokenNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND) from e
