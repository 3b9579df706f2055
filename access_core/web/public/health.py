import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from access_core.service.redemption import RedemptionCoordinator
from access_core.web.dependencies import get_coordinator

log = logging.getLogger(__name__)

router = APIRouter(
    prefix="/health",
)


class Health(BaseModel):
    status: str
    token_store: str


@router.get("", response_model=Health)
async def health(coordinator: RedemptionCoordinator = Depends(get_coordinator)):
    # StorageUnavailable turns into a 503 through the app's exception handler
    await coordinator.check_store()
    return Health(status="ok", token_store=type(coordinator.store).__name__)
