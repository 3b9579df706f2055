from fastapi import APIRouter

from . import tokens

router = APIRouter(
    prefix="/management",
    tags=["/management"],
)

router.include_router(tokens.router)
